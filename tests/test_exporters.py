"""
Unit tests for result exporters.
"""
import os
import json
import tempfile
import unittest

import numpy as np
import pandas as pd

from regional_spatial_analysis.core.exceptions import ValidationError
from regional_spatial_analysis.models.gwr.engine import LocalRegressionEngine
from regional_spatial_analysis.models.schemas import GWRConfig, ModelKind, RegressionConfig, RegressionSpecification
from regional_spatial_analysis.models.spatial.autocorrelation import AutocorrelationTester
from regional_spatial_analysis.models.spatial.regression import GlobalSpatialRegressionEngine
from regional_spatial_analysis.reporting.exporters import (
    NumpyEncoder, export_gwr_table, export_weight_triples, load_weights,
    save_model_results, save_moran_results, save_weights, weights_from_dict
)

from spatial_fixtures import simulated_dataset


class TestExporters(unittest.TestCase):
    """Tests for weight, model and GWR exports."""

    def setUp(self):
        """Set up a grid dataset and a temporary directory."""
        self.dataset, self.w = simulated_dataset(5, 5, rho=0.3, seed=3)
        self.spec = RegressionSpecification(response='y', predictors=['x1', 'x2'])
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def path(self, name):
        return os.path.join(self.tmp.name, name)

    def test_weights_round_trip(self):
        path = save_weights(self.w, self.path('nested/weights.json'))
        restored = load_weights(path)

        self.assertEqual(restored.ids, self.w.ids)
        self.assertEqual(restored.style, self.w.style)
        self.assertEqual(restored.zero_policy, self.w.zero_policy)
        np.testing.assert_allclose(restored.to_dense(), self.w.to_dense())

    def test_weights_document_requires_keys(self):
        with self.assertRaises(ValidationError):
            weights_from_dict({'ids': ['a'], 'triples': []})

    def test_weight_triples_csv(self):
        path = export_weight_triples(self.w, self.path('triples.csv'))
        triples = pd.read_csv(path)

        self.assertEqual(list(triples.columns), ['row_id', 'col_id', 'weight'])
        self.assertEqual(len(triples), self.w.sparse.nnz)
        np.testing.assert_allclose(triples.groupby('row_id')['weight'].sum(), 1.0)

    def test_model_and_moran_results(self):
        config = RegressionConfig(impact_draws=100, trace_powers=40, trace_samples=20)
        engine = GlobalSpatialRegressionEngine(self.w, config)
        results = [engine.fit(self.dataset, self.spec, kind) for kind in (ModelKind.OLS, ModelKind.LAG)]
        failure = {'specification': 'other', 'kind': 'sac', 'error_type': 'SingularMatrixError'}

        path = save_model_results(results + [failure], self.path('models.json'))
        with open(path) as f:
            records = json.load(f)
        self.assertEqual([r['kind'] for r in records[:2]], ['ols', 'lag'])
        self.assertEqual(records[2]['error_type'], 'SingularMatrixError')
        self.assertEqual(len(records[1]['impacts']), 2)

        moran = AutocorrelationTester(self.w).moran(self.dataset.column('y'), permutations=99, seed=1)
        path = save_moran_results({'y': moran}, self.path('moran.json'))
        with open(path) as f:
            payload = json.load(f)
        self.assertAlmostEqual(payload['y']['I'], moran.I)
        self.assertEqual(payload['y']['permutations'], 99)

    def test_gwr_table(self):
        result = LocalRegressionEngine(GWRConfig(bandwidth=15)).fit(self.dataset, self.spec)
        path = export_gwr_table(result, self.path('gwr.csv'))

        table = pd.read_csv(path)
        self.assertEqual(len(table), self.dataset.n)
        self.assertIn('se_x1', table.columns)
        with open(self.path('gwr_summary.json')) as f:
            summary = json.load(f)
        self.assertEqual(summary['n_units'], 25)
        self.assertEqual(summary['bandwidth'], 15.0)

    def test_numpy_encoder(self):
        payload = {'a': np.int64(3), 'b': np.float32(0.5), 'c': np.arange(3), 'd': np.bool_(True)}
        self.assertEqual(
            json.loads(json.dumps(payload, cls=NumpyEncoder)),
            {'a': 3, 'b': 0.5, 'c': [0, 1, 2], 'd': True}
        )


if __name__ == '__main__':
    unittest.main()
