"""
Unit tests for adjacency graph construction.
"""
import unittest

import numpy as np
import geopandas as gpd
from shapely.geometry import Point, Polygon, box

from regional_spatial_analysis.core.exceptions import GeometryError, ValidationError
from regional_spatial_analysis.data.dataset import SpatialDataset
from regional_spatial_analysis.models.schemas import ContiguityConfig, ContiguityRule
from regional_spatial_analysis.models.spatial.graph import AdjacencyGraph, GeometryGraphBuilder

from spatial_fixtures import abc_frame, square_grid


class TestContiguity(unittest.TestCase):
    """Tests for polygon contiguity rules."""

    def setUp(self):
        """Set up a 5x5 grid of unit squares."""
        self.dataset = SpatialDataset.from_geodataframe(square_grid(5, 5), 'unit_id')

    def test_rook_grid_cardinalities(self):
        """Interior units get 4 neighbors, edges 3 and corners 2."""
        graph = GeometryGraphBuilder(ContiguityConfig(rule='rook')).build(self.dataset)

        for r in range(5):
            for c in range(5):
                on_edge = (r in (0, 4)) + (c in (0, 4))
                expected = {0: 4, 1: 3, 2: 2}[on_edge]
                self.assertEqual(graph.cardinalities[f"r{r}c{c}"], expected, f"unit r{r}c{c}")

    def test_queen_grid_cardinalities(self):
        """Queen contiguity also links diagonal squares sharing a corner."""
        graph = GeometryGraphBuilder(ContiguityConfig(rule='queen')).build(self.dataset)

        self.assertEqual(graph.cardinalities['r2c2'], 8)
        self.assertEqual(graph.cardinalities['r0c2'], 5)
        self.assertEqual(graph.cardinalities['r0c0'], 3)
        self.assertIn('r1c1', graph.neighbors['r0c0'])

    def test_no_self_loops_and_symmetric(self):
        for rule in ('rook', 'queen'):
            graph = GeometryGraphBuilder(ContiguityConfig(rule=rule)).build(self.dataset)
            self.assertFalse(graph.directed)
            for unit, nbrs in graph.neighbors.items():
                self.assertNotIn(unit, nbrs)
                for other in nbrs:
                    self.assertIn(unit, graph.neighbors[other])

    def test_snap_tolerance_bridges_gap(self):
        """A small gap between squares is closed by the snap tolerance."""
        gdf = gpd.GeoDataFrame(
            {'unit_id': ['a', 'b'], 'geometry': [box(0, 0, 1, 1), box(1.001, 0, 2, 1)]},
            geometry='geometry'
        )
        dataset = SpatialDataset.from_geodataframe(gdf, 'unit_id')

        strict = GeometryGraphBuilder(ContiguityConfig(rule='rook')).build(dataset)
        snapped = GeometryGraphBuilder(ContiguityConfig(rule='rook', snap_tolerance=0.01)).build(dataset)

        self.assertEqual(strict.isolates, ('a', 'b'))
        self.assertEqual(snapped.neighbors['a'], frozenset({'b'}))

    def test_snap_tolerance_keeps_vertex_touch_out_of_rook(self):
        """Triangles meeting at one acute vertex share no edge after snapping."""
        gdf = gpd.GeoDataFrame(
            {
                'unit_id': ['a', 'b'],
                'geometry': [
                    Polygon([(0, 0), (1, 0), (1, -0.5)]),
                    Polygon([(0, 0), (1, 0.176), (1, 0.5)]),
                ],
            },
            geometry='geometry'
        )
        dataset = SpatialDataset.from_geodataframe(gdf, 'unit_id')

        rook = GeometryGraphBuilder(ContiguityConfig(rule='rook', snap_tolerance=0.01)).build(dataset)
        queen = GeometryGraphBuilder(ContiguityConfig(rule='queen', snap_tolerance=0.01)).build(dataset)

        self.assertEqual(rook.isolates, ('a', 'b'))
        self.assertEqual(queen.neighbors['a'], frozenset({'b'}))

    def test_isolate_is_flagged_not_rejected(self):
        dataset = SpatialDataset.from_geodataframe(abc_frame(), 'unit_id')
        graph = GeometryGraphBuilder(ContiguityConfig(rule='queen')).build(dataset)

        self.assertEqual(graph.isolates, ('C',))
        summary = graph.summary()
        self.assertEqual(summary.n_units, 3)
        self.assertEqual(summary.n_isolates, 1)
        self.assertEqual(summary.n_links, 2)
        self.assertEqual(summary.min_neighbors, 0)
        self.assertEqual(summary.max_neighbors, 1)

    def test_non_polygon_geometry_raises(self):
        gdf = gpd.GeoDataFrame(
            {'unit_id': ['a', 'b', 'c'], 'geometry': [box(0, 0, 1, 1), Point(3, 3), box(1, 0, 2, 1)]},
            geometry='geometry'
        )
        dataset = SpatialDataset.from_geodataframe(gdf, 'unit_id')

        with self.assertRaises(GeometryError) as ctx:
            GeometryGraphBuilder(ContiguityConfig(rule='queen')).build(dataset)

        self.assertEqual(ctx.exception.unit_ids, ('b',))
        self.assertEqual(ctx.exception.stage, 'graph')

    def test_to_libpysal(self):
        graph = GeometryGraphBuilder(ContiguityConfig(rule='rook')).build(self.dataset)
        w = graph.to_libpysal()

        self.assertEqual(w.n, 25)
        self.assertEqual(w.cardinalities['r2c2'], 4)


class TestDistanceRules(unittest.TestCase):
    """Tests for centroid-based neighbor rules."""

    def setUp(self):
        """Set up units along a line with uneven spacing."""
        xs = [0.0, 1.0, 2.0, 10.0]
        gdf = gpd.GeoDataFrame(
            {'unit_id': list('abcd'), 'geometry': [box(x, 0, x + 0.5, 0.5) for x in xs]},
            geometry='geometry'
        )
        self.dataset = SpatialDataset.from_geodataframe(gdf, 'unit_id')

    def test_knn_symmetrized(self):
        graph = GeometryGraphBuilder(ContiguityConfig(rule='knn', k=1)).build(self.dataset)

        self.assertFalse(graph.directed)
        # d's nearest unit is c, so c gains d through symmetrization
        self.assertIn('d', graph.neighbors['c'])
        self.assertIn('c', graph.neighbors['d'])

    def test_knn_directed(self):
        graph = GeometryGraphBuilder(ContiguityConfig(rule='knn', k=1, symmetrize_knn=False)).build(self.dataset)

        self.assertTrue(graph.directed)
        self.assertEqual(graph.neighbors['d'], frozenset({'c'}))
        self.assertNotIn('d', graph.neighbors['c'])
        for nbrs in graph.neighbors.values():
            self.assertEqual(len(nbrs), 1)

    def test_knn_too_large(self):
        with self.assertRaises(ValidationError):
            GeometryGraphBuilder(ContiguityConfig(rule='knn', k=4)).build(self.dataset)

    def test_distance_band(self):
        config = ContiguityConfig(rule='distance', distance_threshold=1.5)
        graph = GeometryGraphBuilder(config).build(self.dataset)

        self.assertEqual(graph.neighbors['b'], frozenset({'a', 'c'}))
        self.assertEqual(graph.isolates, ('d',))

    def test_distance_rule_requires_threshold(self):
        with self.assertRaises(ValueError):
            ContiguityConfig(rule=ContiguityRule.DISTANCE)


class TestAdjacencyGraph(unittest.TestCase):
    """Tests for AdjacencyGraph invariants."""

    def test_self_loop_rejected(self):
        with self.assertRaises(ValidationError):
            AdjacencyGraph(
                ids=('a', 'b'),
                neighbors={'a': frozenset({'a'}), 'b': frozenset()},
                rule=ContiguityRule.QUEEN
            )

    def test_asymmetric_undirected_rejected(self):
        with self.assertRaises(ValidationError):
            AdjacencyGraph(
                ids=('a', 'b'),
                neighbors={'a': frozenset({'b'}), 'b': frozenset()},
                rule=ContiguityRule.QUEEN
            )

    def test_neighbors_read_only(self):
        graph = AdjacencyGraph.from_index_sets(('a', 'b'), [{1}, {0}], ContiguityRule.ROOK)
        with self.assertRaises(TypeError):
            graph.neighbors['c'] = frozenset()
        self.assertEqual(graph.edges(), [(0, 1), (1, 0)])
        self.assertTrue(np.array_equal(sorted(graph.cardinalities.values()), [1, 1]))


if __name__ == '__main__':
    unittest.main()
