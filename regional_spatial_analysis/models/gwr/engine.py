"""
Geographically weighted regression engine for Regional Spatial Analysis.

This module provides the LocalRegressionEngine class, which fits one
kernel-weighted least squares regression per spatial unit, and the
GWRResult record holding the local coefficient surface.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ...core.decorators import performance_context, stage_errors
from ...core.exceptions import SingularMatrixError, ValidationError
from ...computation.numerical import weighted_least_squares
from ...computation.parallel import chunked, parallel_map, resolve_workers
from ...data.dataset import SpatialDataset
from ..schemas import BandwidthMode, GWRConfig, KernelKind, ParallelConfig, RegressionSpecification
from .bandwidth import BandwidthSelection, BandwidthSelector
from .kernels import KernelWeighter, distances_from

logger = logging.getLogger(__name__)


@dataclass
class GWRResult:
    """
    Local coefficient surface and diagnostics.

    Per-unit arrays are NaN for failed units; ``failures`` holds the error
    message of each failed unit and ``None`` elsewhere. Global diagnostics
    are computed over successful units only.
    """
    ids: Tuple[Any, ...]
    names: List[str]
    params: np.ndarray
    std_errors: np.ndarray
    local_r2: np.ndarray
    influence: np.ndarray
    fitted: np.ndarray
    residuals: np.ndarray
    failures: List[Optional[str]]
    bandwidth: float
    kernel: KernelKind
    mode: BandwidthMode
    tr_S: float
    tr_StS: float
    rss: float
    sigma2: float
    aicc: float
    r2: float
    selection: Optional[BandwidthSelection] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def n(self) -> int:
        return len(self.ids)

    @property
    def succeeded(self) -> np.ndarray:
        return np.array([f is None for f in self.failures])

    @property
    def failed_units(self) -> List[Any]:
        return [u for u, f in zip(self.ids, self.failures) if f is not None]

    @property
    def enp(self) -> float:
        """Effective number of parameters."""
        return self.tr_S

    def to_frame(self) -> pd.DataFrame:
        """Coefficient table: one row per unit."""
        df = pd.DataFrame(self.params, columns=self.names, index=pd.Index(self.ids, name='unit_id'))
        for j, name in enumerate(self.names):
            df[f'se_{name}'] = self.std_errors[:, j]
        df['local_r2'] = self.local_r2
        df['influence'] = self.influence
        df['fitted'] = self.fitted
        df['residual'] = self.residuals
        df['failure'] = self.failures
        return df

    def summary(self) -> Dict[str, Any]:
        return {
            'n_units': self.n,
            'n_failed': len(self.failed_units),
            'bandwidth': self.bandwidth,
            'kernel': self.kernel.value,
            'bandwidth_mode': self.mode.value,
            'tr_S': self.tr_S,
            'tr_StS': self.tr_StS,
            'enp': self.enp,
            'rss': self.rss,
            'sigma2': self.sigma2,
            'aicc': self.aicc,
            'r2': self.r2,
        }


def _fit_chunk(task) -> List[Dict[str, Any]]:
    """Local fits for a chunk of focal units."""
    indices, y, X, weighter, bandwidth, condition_threshold = task
    out = []
    for i in indices:
        d = distances_from(weighter.coords, i, weighter.metric)
        w = weighter.weights(i, bandwidth, d=d)
        try:
            beta, A_inv = weighted_least_squares(X, y, w, condition_threshold, context=f"unit {i}")
        except SingularMatrixError as e:
            out.append({'index': i, 'error': f"{type(e).__name__}: {e.message}"})
            continue

        C = A_inv @ (X.T * w)
        hat_row = X[i] @ C
        resid = y - X @ beta
        y_bar = np.sum(w * y) / np.sum(w)
        tss = float(np.sum(w * (y - y_bar) ** 2))
        local_r2 = 1.0 - float(np.sum(w * resid ** 2)) / tss if tss > 0 else 0.0

        out.append({
            'index': i,
            'error': None,
            'beta': beta,
            'ccT': np.sum(C ** 2, axis=1),
            'influence': float(hat_row[i]),
            'hat_ss': float(hat_row @ hat_row),
            'local_r2': local_r2,
            'fitted': float(X[i] @ beta),
        })
    return out


class LocalRegressionEngine:
    """
    Geographically weighted regression.

    Unit fits are independent: a unit whose local design is singular or
    ill-conditioned is marked failed and the run continues.
    """

    def __init__(self, config: Optional[GWRConfig] = None, parallel: Optional[ParallelConfig] = None):
        self.config = config or GWRConfig()
        self.parallel = parallel or ParallelConfig()

    def weighter(self, coords: np.ndarray) -> KernelWeighter:
        cfg = self.config
        return KernelWeighter(coords, kernel=cfg.kernel, mode=cfg.bandwidth_mode, metric=cfg.metric)

    @stage_errors('gwr')
    def fit(
        self,
        dataset: SpatialDataset,
        spec: RegressionSpecification,
        bandwidth: Optional[float] = None
    ) -> GWRResult:
        """
        Fit GWR for a specification.

        The bandwidth is taken from the argument, then the configuration,
        and is otherwise selected by cross-validation.
        """
        y, X, names = dataset.design(spec)
        weighter = self.weighter(dataset.centroids())

        selection = None
        if bandwidth is None:
            bandwidth = self.config.bandwidth
        if bandwidth is None:
            selection = BandwidthSelector(self.config, self.parallel).select(y, X, weighter)
            bandwidth = selection.bandwidth

        result = self.fit_arrays(y, X, names, weighter, bandwidth, ids=dataset.ids)
        result.selection = selection
        result.metadata['specification'] = spec.label
        return result

    @stage_errors('gwr')
    def fit_arrays(
        self,
        y: np.ndarray,
        X: np.ndarray,
        names: Sequence[str],
        weighter: KernelWeighter,
        bandwidth: float,
        ids: Optional[Sequence[Any]] = None
    ) -> GWRResult:
        """Fit every unit at a given bandwidth."""
        y = np.asarray(y, dtype=float)
        X = np.asarray(X, dtype=float)
        n, k = X.shape
        if y.shape != (n,) or weighter.n != n:
            raise ValidationError(f"Inconsistent shapes: y={y.shape}, X={X.shape}, coords={weighter.n}")
        if weighter.mode == BandwidthMode.ADAPTIVE:
            bandwidth = float(int(round(bandwidth)))
        weighter.check_bandwidth(bandwidth)
        ids = tuple(ids) if ids is not None else tuple(range(n))

        logger.info(
            f"Fitting GWR for {n} units: {weighter.kernel.value} kernel, "
            f"{weighter.mode.value} bandwidth {bandwidth:g}"
        )

        workers = resolve_workers(self.parallel.max_workers, n)
        tasks = [
            (chunk, y, X, weighter, bandwidth, self.config.condition_threshold)
            for chunk in chunked(list(range(n)), workers)
        ]
        with performance_context("GWR unit fits", level="info"):
            chunks = parallel_map(_fit_chunk, tasks, max_workers=workers, executor=self.parallel.executor)

        params = np.full((n, k), np.nan)
        ccT = np.full((n, k), np.nan)
        local_r2 = np.full(n, np.nan)
        influence = np.full(n, np.nan)
        fitted = np.full(n, np.nan)
        hat_ss = np.full(n, np.nan)
        failures: List[Optional[str]] = [None] * n

        for record in (r for chunk in chunks for r in chunk):
            i = record['index']
            if record['error'] is not None:
                failures[i] = record['error']
                continue
            params[i] = record['beta']
            ccT[i] = record['ccT']
            local_r2[i] = record['local_r2']
            influence[i] = record['influence']
            fitted[i] = record['fitted']
            hat_ss[i] = record['hat_ss']

        ok = np.array([f is None for f in failures])
        n_failed = int((~ok).sum())
        if n_failed:
            logger.warning(f"{n_failed} unit(s) failed: {[ids[i] for i in np.flatnonzero(~ok)][:20]}")

        residuals = y - fitted
        n_ok = int(ok.sum())
        tr_S = float(influence[ok].sum())
        tr_StS = float(hat_ss[ok].sum())
        rss = float(np.sum(residuals[ok] ** 2))

        dof = n_ok - 2.0 * tr_S + tr_StS
        sigma2 = rss / dof if dof > 0 else float('nan')
        std_errors = np.sqrt(sigma2 * ccT) if np.isfinite(sigma2) else np.full((n, k), np.nan)

        if n_ok > 0 and rss > 0 and n_ok - 2.0 - tr_S > 0:
            sigma_ml = np.sqrt(rss / n_ok)
            aicc = (2.0 * n_ok * np.log(sigma_ml) + n_ok * np.log(2.0 * np.pi)
                    + n_ok * (n_ok + tr_S) / (n_ok - 2.0 - tr_S))
        else:
            aicc = float('nan')

        y_ok = y[ok]
        tss = float(np.sum((y_ok - y_ok.mean()) ** 2)) if n_ok else 0.0
        r2 = 1.0 - rss / tss if tss > 0 else float('nan')

        logger.info(f"GWR fitted: tr(S)={tr_S:.3f}, AICc={aicc:.3f}, R2={r2:.4f}, failed={n_failed}")
        return GWRResult(
            ids=ids,
            names=list(names),
            params=params,
            std_errors=std_errors,
            local_r2=local_r2,
            influence=influence,
            fitted=fitted,
            residuals=residuals,
            failures=failures,
            bandwidth=float(bandwidth),
            kernel=weighter.kernel,
            mode=weighter.mode,
            tr_S=tr_S,
            tr_StS=tr_StS,
            rss=rss,
            sigma2=float(sigma2),
            aicc=float(aicc),
            r2=float(r2),
        )
