"""
Neighbor graph construction for Regional Spatial Analysis.

This module provides the GeometryGraphBuilder class, which derives an
AdjacencyGraph from unit polygons (queen / rook contiguity) or from unit
centroids (k-nearest neighbors / distance band).
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

import numpy as np
import shapely
import libpysal.weights as weights
from shapely.geometry import MultiPolygon, Polygon
from shapely.strtree import STRtree

from ...core.decorators import performance_tracker, stage_errors
from ...core.exceptions import GeometryError, ValidationError
from ...data.dataset import SpatialDataset
from ..schemas import ContiguityConfig, ContiguityRule, DistanceMetric

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class GraphSummary:
    """Diagnostic counts reported after graph construction."""
    n_units: int
    n_links: int
    n_isolates: int
    isolates: Tuple[Any, ...]
    mean_neighbors: float
    median_neighbors: float
    min_neighbors: int
    max_neighbors: int


@dataclass(frozen=True)
class AdjacencyGraph:
    """
    Neighbor relation between spatial units.

    Attributes:
        ids (tuple): Unit identifiers in dataset order.
        neighbors (Mapping): Read-only map of unit id to its neighbor ids.
        rule (ContiguityRule): Rule that produced the graph.
        directed (bool): True only for unsymmetrized k-nearest-neighbor graphs.
    """
    ids: Tuple[Any, ...]
    neighbors: Mapping[Any, FrozenSet[Any]]
    rule: ContiguityRule
    directed: bool = False
    _index: Mapping[Any, int] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        for unit, nbrs in self.neighbors.items():
            if unit in nbrs:
                raise ValidationError("Adjacency graph contains a self loop", stage='graph', unit_ids=[unit])

        if not self.directed:
            asymmetric = [
                unit for unit, nbrs in self.neighbors.items()
                if any(unit not in self.neighbors[j] for j in nbrs)
            ]
            if asymmetric:
                raise ValidationError(
                    "Undirected adjacency graph is not symmetric", stage='graph', unit_ids=asymmetric
                )

        object.__setattr__(self, 'neighbors', MappingProxyType(dict(self.neighbors)))
        object.__setattr__(self, '_index', MappingProxyType({u: i for i, u in enumerate(self.ids)}))

    @classmethod
    def from_index_sets(
        cls,
        ids: Tuple[Any, ...],
        index_sets: List[Set[int]],
        rule: ContiguityRule,
        directed: bool = False
    ) -> 'AdjacencyGraph':
        """Build from positional neighbor sets."""
        neighbors = {
            ids[i]: frozenset(ids[j] for j in nbrs if j != i)
            for i, nbrs in enumerate(index_sets)
        }
        return cls(ids=tuple(ids), neighbors=neighbors, rule=rule, directed=directed)

    @property
    def n(self) -> int:
        return len(self.ids)

    def index_of(self, unit_id: Any) -> int:
        return self._index[unit_id]

    @property
    def cardinalities(self) -> Dict[Any, int]:
        return {u: len(self.neighbors[u]) for u in self.ids}

    @property
    def isolates(self) -> Tuple[Any, ...]:
        return tuple(u for u in self.ids if not self.neighbors[u])

    def edges(self) -> List[Tuple[int, int]]:
        """Positional (row, col) pairs of every directed link."""
        pairs = []
        for i, unit in enumerate(self.ids):
            for nbr in self.neighbors[unit]:
                pairs.append((i, self._index[nbr]))
        return sorted(pairs)

    def summary(self) -> GraphSummary:
        counts = np.array([len(self.neighbors[u]) for u in self.ids])
        isolates = self.isolates
        return GraphSummary(
            n_units=self.n,
            n_links=int(counts.sum()),
            n_isolates=len(isolates),
            isolates=isolates,
            mean_neighbors=float(counts.mean()) if counts.size else 0.0,
            median_neighbors=float(np.median(counts)) if counts.size else 0.0,
            min_neighbors=int(counts.min()) if counts.size else 0,
            max_neighbors=int(counts.max()) if counts.size else 0,
        )

    def to_libpysal(self) -> weights.W:
        """Binary libpysal W with the same neighbor structure."""
        neighbors = {u: sorted(self.neighbors[u], key=self._index.get) for u in self.ids}
        return weights.W(neighbors, id_order=list(self.ids), silence_warnings=True)


def _shared_edge_length(a, b, tolerance: float) -> float:
    """
    Length of boundary line shared by a and b.

    With a tolerance each polygon is first snapped onto the other, so nearly
    coincident edges become exactly shared. Units meeting at a single vertex
    share only points and score zero regardless of the angle between edges.
    """
    if tolerance <= 0:
        return a.boundary.intersection(b.boundary).length
    return max(
        shapely.snap(a, b, tolerance).boundary.intersection(b.boundary).length,
        shapely.snap(b, a, tolerance).boundary.intersection(a.boundary).length,
    )


class GeometryGraphBuilder:
    """
    Derive neighbor relations from unit geometries.

    Topology defects in real boundary data (slivers, gaps) are expected:
    units that end up without neighbors are reported as isolates rather than
    treated as errors.
    """

    def __init__(self, config: Optional[ContiguityConfig] = None):
        self.config = config or ContiguityConfig()

    @stage_errors('graph')
    @performance_tracker()
    def build(self, dataset: SpatialDataset) -> AdjacencyGraph:
        """
        Build the adjacency graph for a dataset.

        Raises:
            GeometryError: If any geometry is null, empty or not polygonal.
        """
        cfg = self.config
        logger.info(f"Building {cfg.rule.value} adjacency graph for {dataset.n} units")

        if cfg.rule in (ContiguityRule.QUEEN, ContiguityRule.ROOK):
            geoms = self._validated_geometries(dataset)
            index_sets = self._contiguity(geoms, rook=cfg.rule == ContiguityRule.ROOK)
            graph = AdjacencyGraph.from_index_sets(dataset.ids, index_sets, cfg.rule)
        else:
            coords = np.asarray(dataset.centroids(), dtype=float)
            bad = np.flatnonzero(~np.isfinite(coords).all(axis=1))
            if bad.size:
                raise GeometryError(
                    "Units without a valid centroid", unit_ids=[dataset.ids[i] for i in bad]
                )
            index_sets, directed = self._distance_neighbors(coords)
            graph = AdjacencyGraph.from_index_sets(dataset.ids, index_sets, cfg.rule, directed=directed)

        summary = graph.summary()
        logger.info(
            f"Adjacency graph: {summary.n_links} links, {summary.n_isolates} isolates, "
            f"mean neighbors {summary.mean_neighbors:.2f}, median {summary.median_neighbors:.1f}"
        )
        if summary.n_isolates:
            logger.warning(f"{summary.n_isolates} isolate(s): {list(summary.isolates)[:20]}")
        return graph

    def _validated_geometries(self, dataset: SpatialDataset) -> List[Any]:
        geoms = list(dataset.geometries)
        malformed = []
        for i, geom in enumerate(geoms):
            if geom is None or geom.is_empty or not isinstance(geom, (Polygon, MultiPolygon)):
                malformed.append(dataset.ids[i])
            elif not geom.is_valid:
                repaired = geom.buffer(0)
                if repaired.is_empty:
                    malformed.append(dataset.ids[i])
                else:
                    logger.warning(f"Repaired invalid geometry for unit {dataset.ids[i]}")
                    geoms[i] = repaired

        if malformed:
            raise GeometryError("Malformed, empty or non-polygonal geometries", unit_ids=malformed)
        return geoms

    def _contiguity(self, geoms: List[Any], rook: bool) -> List[Set[int]]:
        """Pairwise boundary tests restricted to STRtree candidates."""
        tolerance = self.config.snap_tolerance
        tree = STRtree(geoms)

        if tolerance > 0:
            left, right = tree.query(geoms, predicate='dwithin', distance=tolerance)
        else:
            left, right = tree.query(geoms, predicate='intersects')

        mask = left < right
        left, right = left[mask], right[mask]
        logger.debug(f"STRtree returned {len(left)} candidate pairs")

        index_sets: List[Set[int]] = [set() for _ in geoms]
        for i, j in zip(left.tolist(), right.tolist()):
            if rook:
                if _shared_edge_length(geoms[i], geoms[j], tolerance) <= 0.0:
                    continue
            index_sets[i].add(j)
            index_sets[j].add(i)
        return index_sets

    def _distance_neighbors(self, coords: np.ndarray) -> Tuple[List[Set[int]], bool]:
        cfg = self.config
        metric_kwargs: Dict[str, Any] = {}
        if cfg.metric == DistanceMetric.GREAT_CIRCLE:
            metric_kwargs = {'distance_metric': 'arc', 'radius': EARTH_RADIUS_KM}

        ids = list(range(len(coords)))
        if cfg.rule == ContiguityRule.KNN:
            if cfg.k >= len(coords):
                raise ValidationError(
                    f"k={cfg.k} must be smaller than the number of units ({len(coords)})", stage='graph'
                )
            w = weights.KNN.from_array(coords, k=cfg.k, ids=ids, **metric_kwargs)
        else:
            w = weights.DistanceBand.from_array(
                coords, threshold=cfg.distance_threshold, binary=True, ids=ids,
                silence_warnings=True, **metric_kwargs
            )

        index_sets = [set(w.neighbors[i]) - {i} for i in ids]

        directed = False
        if cfg.rule == ContiguityRule.KNN:
            if cfg.symmetrize_knn:
                for i in ids:
                    for j in list(index_sets[i]):
                        index_sets[j].add(i)
            else:
                directed = True
        return index_sets, directed
