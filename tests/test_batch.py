"""
Unit tests for batch estimation over many specifications.
"""
import json
import unittest
from unittest import mock

from regional_spatial_analysis.data.dataset import SpatialDataset
from regional_spatial_analysis.models.schemas import (
    AnalysisConfig, GWRConfig, ModelKind, ParallelConfig, RegressionConfig, RegressionSpecification
)
from regional_spatial_analysis.analysis.batch import BatchFailure, SpecificationBatch
from regional_spatial_analysis.models.spatial.impacts import ImpactCalculator
from regional_spatial_analysis.computation.numerical import LogDeterminant

from spatial_fixtures import simulated_dataset


class TestSpecificationBatch(unittest.TestCase):
    """Failure isolation across specifications."""

    def setUp(self):
        """Set up a dataset with one good, one incomplete and one collinear specification."""
        dataset, self.w = simulated_dataset(nrows=6, ncols=6, rho=0.3, seed=4)
        gdf = dataset.to_geodataframe()
        gdf['x3'] = 3.0 * gdf['x2']
        self.dataset = SpatialDataset.from_geodataframe(gdf, 'unit_id')

        self.specs = [
            RegressionSpecification(response='y', predictors=['x1', 'x2']),
            RegressionSpecification(response='y', predictors=['x1', 'missing_col']),
            RegressionSpecification(response='y', predictors=['x2', 'x3'], name='collinear'),
        ]
        self.config = AnalysisConfig(
            regression=RegressionConfig(impact_draws=100, trace_powers=30, trace_samples=10),
            gwr=GWRConfig(bandwidth=20)
        )

    def test_failures_do_not_abort(self):
        batch = SpecificationBatch(self.dataset, self.w, self.config).run(
            self.specs, [ModelKind.OLS, ModelKind.LAG]
        )

        self.assertEqual(len(batch.results), 2)
        self.assertEqual({r.kind for r in batch.results}, {ModelKind.OLS, ModelKind.LAG})
        self.assertEqual(len(batch.failures), 4)

        by_spec = {(f.specification, f.kind): f for f in batch.failures}
        missing = by_spec[('y ~ x1 + missing_col', 'ols')]
        self.assertEqual(missing.error_type, 'MissingDataError')
        self.assertIsNotNone(missing.stage)
        self.assertEqual(by_spec[('collinear', 'lag')].error_type, 'SingularMatrixError')
        self.assertEqual(by_spec[('collinear', 'lag')].stage, 'regression')

    def test_results_grouped_and_serializable(self):
        batch = SpecificationBatch(self.dataset, self.w, self.config).run(self.specs[:1])

        grouped = batch.by_specification()
        self.assertEqual(set(grouped['y ~ x1 + x2']), {'ols', 'lag', 'sac'})
        records = batch.to_records()
        self.assertEqual(len(records), 3)
        json.dumps(records)

    def test_gwr_failures_isolated(self):
        batch = SpecificationBatch(self.dataset, self.w, self.config).run(
            self.specs[:2], [ModelKind.OLS], include_gwr=True
        )

        self.assertIn('y ~ x1 + x2', batch.gwr)
        kinds = {(f.specification, f.kind) for f in batch.failures}
        self.assertIn(('y ~ x1 + missing_col', 'gwr'), kinds)

    def test_thread_pool(self):
        config = AnalysisConfig(
            regression=RegressionConfig(impact_draws=0, trace_powers=10),
            parallel=ParallelConfig(max_workers=2, executor='thread')
        )
        batch = SpecificationBatch(self.dataset, self.w, config).run(self.specs, [ModelKind.OLS])

        self.assertEqual(len(batch.results), 1)
        self.assertEqual(len(batch.failures), 2)
        self.assertIsInstance(batch.failures[0], BatchFailure)

    def test_spatial_caches_built_once(self):
        """Workers share the log-determinant and trace caches built before submission."""
        config = AnalysisConfig(
            regression=RegressionConfig(impact_draws=0, trace_powers=10, trace_samples=5),
            parallel=ParallelConfig(max_workers=2, executor='thread')
        )
        module = 'regional_spatial_analysis.models.spatial.regression'
        with mock.patch(f"{module}.LogDeterminant", wraps=LogDeterminant) as logdet, \
                mock.patch(f"{module}.ImpactCalculator", wraps=ImpactCalculator) as impacts:
            batch = SpecificationBatch(self.dataset, self.w, config).run(
                [self.specs[0], self.specs[0]], [ModelKind.LAG]
            )

        self.assertEqual(len(batch.results), 2)
        self.assertEqual(logdet.call_count, 1)
        self.assertEqual(impacts.call_count, 1)

    def test_ols_only_batch_skips_spatial_caches(self):
        module = 'regional_spatial_analysis.models.spatial.regression'
        with mock.patch(f"{module}.LogDeterminant", wraps=LogDeterminant) as logdet:
            SpecificationBatch(self.dataset, self.w, self.config).run(self.specs[:1], [ModelKind.OLS])

        logdet.assert_not_called()


if __name__ == '__main__':
    unittest.main()
