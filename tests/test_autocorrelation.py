"""
Unit tests for Moran's I and Lagrange Multiplier diagnostics.
"""
import unittest

import numpy as np
import geopandas as gpd
from shapely.geometry import box

from regional_spatial_analysis.core.exceptions import IsolateError, ValidationError
from regional_spatial_analysis.data.dataset import SpatialDataset
from regional_spatial_analysis.models.schemas import AutocorrelationConfig, RegressionSpecification
from regional_spatial_analysis.models.spatial.autocorrelation import AutocorrelationTester, lm_diagnostics

from spatial_fixtures import abc_frame, rook_weights, simulated_dataset, square_grid


class TestMoran(unittest.TestCase):
    """Tests for AutocorrelationTester.moran."""

    def setUp(self):
        """Set up the A-B-C matrix and a 6x6 grid matrix."""
        self.abc = SpatialDataset.from_geodataframe(abc_frame(), 'unit_id')
        self.abc_w = rook_weights(self.abc)

        self.grid = SpatialDataset.from_geodataframe(square_grid(6, 6), 'unit_id')
        self.grid_w = rook_weights(self.grid)
        self.config = AutocorrelationConfig(permutations=199, seed=7, chunk_size=64)

    def test_abc_manual_value(self):
        """Isolate C contributes no lag term; I = (3 / 2) * 4 / 14."""
        result = AutocorrelationTester(self.abc_w, self.config).moran(self.abc.column('x'))

        self.assertAlmostEqual(result.I, 1.5 * 4.0 / 14.0, places=12)
        self.assertAlmostEqual(result.expected, -0.5)
        self.assertAlmostEqual(result.variance_norm, 0.5)

    def test_constant_variable(self):
        result = AutocorrelationTester(self.grid_w, self.config).moran(np.full(36, 3.2))

        self.assertEqual(result.I, 0.0)
        self.assertTrue(result.constant)
        self.assertIsNone(result.p_norm)
        self.assertIsNone(result.p_sim)
        self.assertEqual(result.permutations, 0)

    def test_small_magnitude_values_not_treated_as_constant(self):
        """Rescaling x leaves I unchanged."""
        x = np.arange(36.0)
        tester = AutocorrelationTester(self.grid_w, self.config)

        base = tester.moran(x)
        scaled = tester.moran(1e-10 * x)

        self.assertFalse(scaled.constant)
        self.assertAlmostEqual(scaled.I, base.I, places=10)
        self.assertAlmostEqual(scaled.z_norm, base.z_norm, places=8)

    def test_permutation_p_value_range_and_reproducibility(self):
        rng = np.random.default_rng(0)
        x = rng.normal(size=36)
        tester = AutocorrelationTester(self.grid_w, self.config)

        first = tester.moran(x)
        second = tester.moran(x)

        self.assertGreater(first.p_sim, 0.0)
        self.assertLessEqual(first.p_sim, 1.0)
        self.assertEqual(first.p_sim, second.p_sim)
        self.assertEqual(first.mean_sim, second.mean_sim)
        self.assertEqual(first.permutations, 199)

    def test_chunk_size_does_not_change_draws(self):
        x = np.random.default_rng(3).normal(size=36)
        small = AutocorrelationTester(self.grid_w, AutocorrelationConfig(permutations=99, seed=1, chunk_size=7))
        large = AutocorrelationTester(self.grid_w, AutocorrelationConfig(permutations=99, seed=1, chunk_size=500))

        self.assertAlmostEqual(small.moran(x).mean_sim, large.moran(x).mean_sim, places=12)

    def test_gradient_is_positively_autocorrelated(self):
        x = self.grid.column('col').astype(float)
        result = AutocorrelationTester(self.grid_w, self.config).moran(x)

        self.assertGreater(result.I, 0.5)
        self.assertLess(result.p_norm, 0.01)
        self.assertAlmostEqual(result.p_sim, 1.0 / 200.0)

    def test_no_links_raises(self):
        gdf = gpd.GeoDataFrame(
            {'unit_id': ['a', 'b', 'c'], 'geometry': [box(0, 0, 1, 1), box(3, 3, 4, 4), box(6, 6, 7, 7)]},
            geometry='geometry'
        )
        dataset = SpatialDataset.from_geodataframe(gdf, 'unit_id')
        w = rook_weights(dataset)

        with self.assertRaises(IsolateError):
            AutocorrelationTester(w).moran(np.array([1.0, 2.0, 3.0]))

    def test_length_mismatch(self):
        with self.assertRaises(ValidationError):
            AutocorrelationTester(self.abc_w).moran(np.ones(4))

    def test_moran_by_column(self):
        tester = AutocorrelationTester(self.grid_w, AutocorrelationConfig(permutations=0))
        results = tester.moran_by_column(self.grid, ['row', 'col'])

        self.assertEqual(set(results), {'row', 'col'})
        self.assertIsNone(results['row'].p_sim)
        self.assertAlmostEqual(results['row'].I, results['col'].I)


class TestLMDiagnostics(unittest.TestCase):
    """Tests for lm_diagnostics."""

    def test_lag_process_detected(self):
        dataset, w = simulated_dataset(nrows=10, ncols=10, rho=0.7, seed=11)
        y, X, _ = dataset.design(RegressionSpecification(response='y', predictors=['x1', 'x2']))

        results = lm_diagnostics(y, X, w)

        for key in ('lm_error', 'lm_lag', 'rlm_error', 'rlm_lag'):
            self.assertGreaterEqual(results[key]['statistic'], 0.0)
            self.assertTrue(0.0 <= results[key]['p_value'] <= 1.0)
        self.assertTrue(results['lm_lag']['is_significant'])
        self.assertIn(results['recommended_model'], ('lag', 'sac'))

    def test_design_without_intercept_rejected(self):
        dataset, w = simulated_dataset(nrows=5, ncols=5, rho=0.3, seed=2)
        y, X, _ = dataset.design(RegressionSpecification(response='y', predictors=['x1', 'x2']))

        with self.assertRaises(ValidationError) as ctx:
            lm_diagnostics(y, X[:, 1:], w)
        self.assertEqual(ctx.exception.stage, 'diagnostics')

        with self.assertRaises(ValidationError):
            lm_diagnostics(y, X[:, :1], w)


if __name__ == '__main__':
    unittest.main()
