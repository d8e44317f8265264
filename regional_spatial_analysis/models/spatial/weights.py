"""
Spatial weight matrix module for Regional Spatial Analysis.

This module provides the SpatialWeightMatrix container and the
WeightMatrixFactory that turns an AdjacencyGraph into a sparse weight
matrix.
"""
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import sparse
import libpysal.weights as weights

from ...core.decorators import stage_errors
from ...core.exceptions import IsolateError, ValidationError
from ..schemas import WeightsConfig, WeightStyle
from .graph import AdjacencyGraph

logger = logging.getLogger(__name__)


class SpatialWeightMatrix:
    """
    Read-only sparse spatial weight matrix.

    The matrix is shared by every downstream analysis, so its buffers are
    frozen after construction. The diagonal is always zero.

    Attributes:
        ids (tuple): Unit identifiers indexing rows and columns.
        style (WeightStyle): Binary or row-standardized.
        zero_policy (bool): Whether all-zero (isolate) rows are allowed.
    """

    def __init__(
        self,
        ids: Sequence[Any],
        matrix: sparse.spmatrix,
        style: WeightStyle,
        zero_policy: bool
    ):
        csr = sparse.csr_matrix(matrix, dtype=float, copy=True)
        if csr.shape != (len(ids), len(ids)):
            raise ValidationError(
                f"Matrix shape {csr.shape} does not match {len(ids)} ids", stage='weights'
            )
        csr = sparse.csr_matrix(csr - sparse.diags(csr.diagonal()))
        csr.eliminate_zeros()
        csr.sort_indices()
        for buf in (csr.data, csr.indices, csr.indptr):
            buf.setflags(write=False)

        self.ids = tuple(ids)
        self._sparse = csr
        self.style = WeightStyle(style)
        self.zero_policy = zero_policy
        self._index = {u: i for i, u in enumerate(self.ids)}

    @property
    def n(self) -> int:
        return len(self.ids)

    @property
    def sparse(self) -> sparse.csr_matrix:
        return self._sparse

    @property
    def s0(self) -> float:
        """Sum of all weights."""
        return float(self._sparse.sum())

    @property
    def s1(self) -> float:
        sym = self._sparse + self._sparse.T
        return float(0.5 * sym.multiply(sym).sum())

    @property
    def s2(self) -> float:
        row = np.asarray(self._sparse.sum(axis=1)).ravel()
        col = np.asarray(self._sparse.sum(axis=0)).ravel()
        return float(((row + col) ** 2).sum())

    def row_sums(self) -> np.ndarray:
        return np.asarray(self._sparse.sum(axis=1)).ravel()

    @property
    def isolates(self) -> Tuple[Any, ...]:
        counts = np.diff(self._sparse.indptr)
        return tuple(self.ids[i] for i in np.flatnonzero(counts == 0))

    def index_of(self, unit_id: Any) -> int:
        return self._index[unit_id]

    def lag(self, x: np.ndarray) -> np.ndarray:
        """Spatial lag Wx; isolate rows yield zero."""
        x = np.asarray(x, dtype=float)
        if x.shape[0] != self.n:
            raise ValidationError(f"Expected {self.n} values, got {x.shape[0]}", stage='weights')
        return self._sparse @ x

    def to_dense(self) -> np.ndarray:
        return self._sparse.toarray()

    def to_triples(self) -> pd.DataFrame:
        """Long form (row_id, col_id, weight) of every non-zero entry."""
        coo = self._sparse.tocoo()
        return pd.DataFrame({
            'row_id': [self.ids[i] for i in coo.row],
            'col_id': [self.ids[j] for j in coo.col],
            'weight': coo.data.astype(float),
        })

    @classmethod
    def from_triples(
        cls,
        triples: pd.DataFrame,
        ids: Sequence[Any],
        style: WeightStyle,
        zero_policy: bool
    ) -> 'SpatialWeightMatrix':
        """Rebuild a matrix from its long form without recomputing the graph."""
        index = {u: i for i, u in enumerate(ids)}
        unknown = sorted(
            {str(u) for u in triples['row_id'] if u not in index}
            | {str(u) for u in triples['col_id'] if u not in index}
        )
        if unknown:
            raise ValidationError("Triples reference unknown unit ids", stage='weights', unit_ids=unknown)

        rows = np.array([index[u] for u in triples['row_id']], dtype=int)
        cols = np.array([index[u] for u in triples['col_id']], dtype=int)
        data = triples['weight'].to_numpy(dtype=float)
        matrix = sparse.coo_matrix((data, (rows, cols)), shape=(len(ids), len(ids)))
        w = cls(ids, matrix, style, zero_policy)

        if not zero_policy and w.isolates:
            raise IsolateError("Isolates present while zero policy is disabled", stage='weights', unit_ids=w.isolates)
        return w

    def to_libpysal(self) -> weights.W:
        """libpysal W view for interoperability with the PySAL ecosystem."""
        neighbors: Dict[Any, list] = {}
        values: Dict[Any, list] = {}
        for i, unit in enumerate(self.ids):
            start, stop = self._sparse.indptr[i], self._sparse.indptr[i + 1]
            neighbors[unit] = [self.ids[j] for j in self._sparse.indices[start:stop]]
            values[unit] = self._sparse.data[start:stop].tolist()
        return weights.W(neighbors, values, id_order=list(self.ids), silence_warnings=True)

    def __repr__(self) -> str:
        return (
            f"SpatialWeightMatrix(n={self.n}, nnz={self._sparse.nnz}, "
            f"style='{self.style.value}', zero_policy={self.zero_policy})"
        )


class WeightMatrixFactory:
    """Convert adjacency (and optional auxiliary weights) into a weight matrix."""

    def __init__(self, config: Optional[WeightsConfig] = None):
        self.config = config or WeightsConfig()

    @stage_errors('weights')
    def build(
        self,
        graph: AdjacencyGraph,
        auxiliary: Optional[np.ndarray] = None
    ) -> SpatialWeightMatrix:
        """
        Build the weight matrix.

        Raw weights are 1 per link, or ``a_i * a_j`` with auxiliary weights.

        Raises:
            IsolateError: If a row sums to zero while zero policy is disabled.
            ValidationError: If auxiliary weights are malformed.
        """
        cfg = self.config
        n = graph.n
        logger.info(f"Creating {cfg.style.value} weights for {n} units (zero_policy={cfg.zero_policy})")

        edges = graph.edges()
        rows = np.array([e[0] for e in edges], dtype=int)
        cols = np.array([e[1] for e in edges], dtype=int)
        data = np.ones(len(edges), dtype=float)

        if auxiliary is not None:
            aux = np.asarray(auxiliary, dtype=float)
            if aux.shape != (n,):
                raise ValidationError(f"Expected {n} auxiliary weights, got shape {aux.shape}")
            bad = np.flatnonzero(~np.isfinite(aux) | (aux < 0))
            if bad.size:
                raise ValidationError(
                    "Auxiliary weights must be finite and non-negative",
                    unit_ids=[graph.ids[i] for i in bad]
                )
            data = aux[rows] * aux[cols]

        raw = sparse.csr_matrix((data, (rows, cols)), shape=(n, n))
        row_sums = np.asarray(raw.sum(axis=1)).ravel()
        zero_rows = np.flatnonzero(row_sums == 0)

        if zero_rows.size and not cfg.zero_policy:
            offending = [graph.ids[i] for i in zero_rows]
            logger.error(f"{len(offending)} unit(s) without neighbors: {offending[:20]}")
            raise IsolateError("Units without neighbors while zero policy is disabled", unit_ids=offending)

        if cfg.style == WeightStyle.ROW_STANDARDIZED:
            scale = np.zeros(n)
            nonzero = row_sums > 0
            scale[nonzero] = 1.0 / row_sums[nonzero]
            matrix = sparse.diags(scale) @ raw
        else:
            matrix = raw

        w = SpatialWeightMatrix(graph.ids, matrix, cfg.style, cfg.zero_policy)
        logger.info(f"Weight matrix built: nnz={w.sparse.nnz}, S0={w.s0:.4f}, zero rows={zero_rows.size}")
        return w
