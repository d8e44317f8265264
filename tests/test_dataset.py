"""
Unit tests for the immutable input dataset and loaders.
"""
import os
import tempfile
import unittest

import numpy as np
import pandas as pd
import geopandas as gpd

from regional_spatial_analysis.core.exceptions import MissingDataError, ValidationError
from regional_spatial_analysis.data.dataset import INTERCEPT, SpatialDataset
from regional_spatial_analysis.data.loaders import load_dataset
from regional_spatial_analysis.models.schemas import RegressionSpecification

from spatial_fixtures import abc_frame, square_grid


class TestSpatialDataset(unittest.TestCase):
    """Tests for SpatialDataset."""

    def setUp(self):
        """Set up the A-B-C frame."""
        self.frame = abc_frame()
        self.dataset = SpatialDataset.from_geodataframe(self.frame, 'unit_id', weight_column='pop')

    def test_snapshot_is_independent(self):
        self.frame.loc[0, 'x'] = 100.0
        self.assertEqual(self.dataset.column('x')[0], 1.0)

        values = self.dataset.column('x')
        self.assertTrue(values.flags.writeable)
        values[0] = 50.0
        self.assertEqual(self.dataset.column('x')[0], 1.0)

    def test_centroids_read_only(self):
        coords = self.dataset.centroids()
        np.testing.assert_allclose(coords[0], [0.5, 0.5])
        with self.assertRaises(ValueError):
            coords[0, 0] = 9.0

    def test_duplicate_ids(self):
        frame = abc_frame()
        frame.loc[2, 'unit_id'] = 'A'
        with self.assertRaises(ValidationError) as ctx:
            SpatialDataset.from_geodataframe(frame, 'unit_id')
        self.assertIn('A', ctx.exception.unit_ids)

    def test_not_a_geodataframe(self):
        with self.assertRaises(ValidationError):
            SpatialDataset.from_geodataframe(pd.DataFrame({'unit_id': [1]}), 'unit_id')

    def test_design(self):
        y, X, names = self.dataset.design(RegressionSpecification(response='x', predictors=['pop']))
        self.assertEqual(names, [INTERCEPT, 'pop'])
        np.testing.assert_array_equal(X[:, 0], 1.0)
        np.testing.assert_array_equal(y, [1.0, 2.0, 6.0])

    def test_design_missing_values(self):
        frame = abc_frame()
        frame.loc[1, 'x'] = np.nan
        dataset = SpatialDataset.from_geodataframe(frame, 'unit_id')
        spec = RegressionSpecification(response='x', predictors=['pop'])

        with self.assertRaises(MissingDataError) as ctx:
            dataset.design(spec)
        self.assertEqual(ctx.exception.unit_ids, ('B',))
        self.assertEqual(ctx.exception.model, spec.label)

    def test_with_attributes_returns_new_snapshot(self):
        attributes = pd.DataFrame({'z': [7.0, 8.0, 9.0]}, index=['A', 'B', 'C'])
        updated = self.dataset.with_attributes(attributes)

        np.testing.assert_array_equal(updated.column('z'), [7.0, 8.0, 9.0])
        with self.assertRaises(MissingDataError):
            self.dataset.column('z')

        with self.assertRaises(MissingDataError):
            self.dataset.with_attributes(attributes.loc[['A']])

    def test_units(self):
        units = list(self.dataset.units())
        self.assertEqual([u.unit_id for u in units], ['A', 'B', 'C'])
        self.assertEqual(units[2].values['x'], 6.0)
        self.assertEqual(units[1].weight, 3.0)
        with self.assertRaises(TypeError):
            units[0].values['x'] = 0.0


class TestLoaders(unittest.TestCase):
    """Tests for load_dataset."""

    def test_geojson_with_attribute_table(self):
        grid = square_grid(2, 2)
        with tempfile.TemporaryDirectory() as tmp:
            geo_path = os.path.join(tmp, 'units.geojson')
            csv_path = os.path.join(tmp, 'attributes.csv')
            grid[['unit_id', 'geometry']].to_file(geo_path, driver='GeoJSON')
            pd.DataFrame({'unit_id': grid['unit_id'], 'income': [1.0, 2.0, 3.0, 4.0]}).to_csv(csv_path, index=False)

            dataset = load_dataset(geo_path, 'unit_id', attributes_path=csv_path)

        self.assertEqual(dataset.n, 4)
        np.testing.assert_array_equal(dataset.column('income'), [1.0, 2.0, 3.0, 4.0])
        self.assertIsInstance(dataset.to_geodataframe(), gpd.GeoDataFrame)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_dataset('does/not/exist.geojson', 'unit_id')


if __name__ == '__main__':
    unittest.main()
