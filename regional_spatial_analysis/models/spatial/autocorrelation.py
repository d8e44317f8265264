"""
Spatial autocorrelation tests for Regional Spatial Analysis.

This module provides Moran's I with analytic and permutation inference,
and Lagrange Multiplier diagnostics for spatial dependence in OLS
residuals.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
from scipy import stats
import spreg

from ...core.decorators import stage_errors
from ...core.exceptions import IsolateError, SingularMatrixError, ValidationError
from ..schemas import AutocorrelationConfig, ModelKind
from .weights import SpatialWeightMatrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MoranResult:
    """
    Global Moran's I and its inference.

    Analytic and permutation fields are ``None`` when the variable is
    constant, in which case ``I`` is exactly zero.
    """
    I: float
    n: int
    expected: float
    constant: bool
    variance_norm: Optional[float] = None
    z_norm: Optional[float] = None
    p_norm: Optional[float] = None
    permutations: int = 0
    p_sim: Optional[float] = None
    mean_sim: Optional[float] = None
    std_sim: Optional[float] = None
    z_sim: Optional[float] = None
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


class AutocorrelationTester:
    """Moran's I over a shared weight matrix."""

    def __init__(self, weights: SpatialWeightMatrix, config: Optional[AutocorrelationConfig] = None):
        self.weights = weights
        self.config = config or AutocorrelationConfig()

    def _statistic(self, z: np.ndarray, s0: float, ss: float) -> float:
        return float((len(z) / s0) * (z @ self.weights.lag(z)) / ss)

    @stage_errors('autocorrelation')
    def moran(
        self,
        x: np.ndarray,
        permutations: Optional[int] = None,
        seed: Optional[int] = None
    ) -> MoranResult:
        """
        Moran's I for variable x.

        Args:
            x: One value per unit, in weight-matrix order.
            permutations: Number of random permutations (config default if None).
            seed: Seed for the permutation generator (config default if None).

        Raises:
            ValidationError: If x does not match the matrix or is non-finite.
            IsolateError: If the matrix has no links at all.
        """
        x = np.asarray(x, dtype=float)
        n = self.weights.n
        nsim = self.config.permutations if permutations is None else permutations
        seed = self.config.seed if seed is None else seed

        if x.shape != (n,):
            raise ValidationError(f"Expected {n} values, got shape {x.shape}")
        if not np.all(np.isfinite(x)):
            raise ValidationError("Variable contains missing or non-finite values")

        s0 = self.weights.s0
        if s0 == 0:
            raise IsolateError("Weight matrix has no links", unit_ids=self.weights.isolates)

        expected = -1.0 / (n - 1)
        z = x - x.mean()
        ss = float(z @ z)

        # Constant up to rounding, relative to the magnitude of x
        if ss == 0.0 or np.ptp(x) <= 1e-12 * np.abs(x).max():
            logger.info("Variable is constant; Moran's I reported as 0")
            return MoranResult(I=0.0, n=n, expected=expected, constant=True, seed=seed)

        I = self._statistic(z, s0, ss)

        s1, s2 = self.weights.s1, self.weights.s2
        variance = (n * n * s1 - n * s2 + 3 * s0 * s0) / ((n * n - 1) * s0 * s0) - expected ** 2
        if variance > 0:
            z_norm = (I - expected) / np.sqrt(variance)
            p_norm = float(2.0 * stats.norm.sf(abs(z_norm)))
        else:
            z_norm, p_norm = None, None

        result = dict(
            I=I, n=n, expected=expected, constant=False,
            variance_norm=float(variance),
            z_norm=None if z_norm is None else float(z_norm),
            p_norm=p_norm, permutations=nsim, seed=seed
        )

        if nsim > 0:
            sims = self._permute(z, ss, s0, nsim, seed)
            larger = int(np.sum(sims >= I))
            std_sim = float(sims.std())
            result.update(
                p_sim=(larger + 1.0) / (nsim + 1.0),
                mean_sim=float(sims.mean()),
                std_sim=std_sim,
                z_sim=float((I - sims.mean()) / std_sim) if std_sim > 0 else None,
            )

        logger.info(f"Moran's I = {I:.4f} (p_norm={p_norm}, p_sim={result.get('p_sim')})")
        return MoranResult(**result)

    def _permute(self, z: np.ndarray, ss: float, s0: float, nsim: int, seed: Optional[int]) -> np.ndarray:
        """Moran's I for nsim uniform random permutations, evaluated in chunks."""
        rng = np.random.default_rng(seed)
        n = len(z)
        W = self.weights.sparse
        chunk = self.config.chunk_size
        sims = np.empty(nsim)

        for start in range(0, nsim, chunk):
            stop = min(start + chunk, nsim)
            Z = np.column_stack([rng.permutation(z) for _ in range(stop - start)])
            sims[start:stop] = (n / s0) * np.einsum('ij,ij->j', Z, W @ Z) / ss

        return sims

    def moran_by_column(self, dataset, columns, permutations: Optional[int] = None) -> Dict[str, MoranResult]:
        """Moran's I for several dataset columns with the same seed."""
        return {col: self.moran(dataset.column(col), permutations=permutations) for col in columns}


@stage_errors('diagnostics')
def lm_diagnostics(
    y: np.ndarray,
    X: np.ndarray,
    weights: SpatialWeightMatrix,
    alpha: float = 0.05
) -> Dict[str, Any]:
    """
    Lagrange Multiplier tests for spatial dependence in OLS residuals.

    Returns LM-error, LM-lag and their robust forms (chi-squared, 1 df) and a
    recommended model kind.

    Args:
        y: Response vector.
        X: Design matrix whose first column is the intercept; spreg adds its
            own constant, so that column is dropped before the fit.
        weights: Weight matrix in the order of y.
        alpha: Significance level for the recommendation.
    """
    y = np.asarray(y, dtype=float)
    X = np.asarray(X, dtype=float)
    if X.ndim != 2 or X.shape[0] != weights.n or y.shape != (weights.n,):
        raise ValidationError(f"Expected {weights.n} observations, got y={y.shape}, X={X.shape}")
    if X.shape[1] < 2 or not np.allclose(X[:, 0], 1.0):
        raise ValidationError("Design must hold an intercept column followed by at least one predictor")
    if weights.s0 == 0:
        raise IsolateError("Weight matrix has no links", unit_ids=weights.isolates)

    rank = np.linalg.matrix_rank(X)
    if rank < X.shape[1]:
        raise SingularMatrixError(f"Design matrix is rank deficient (rank {rank} < {X.shape[1]})")

    ols = spreg.OLS(
        y.reshape(-1, 1), X[:, 1:], w=weights.to_libpysal(),
        spat_diag=True, nonspat_diag=False, name_y='y'
    )

    def _entry(test) -> Dict[str, Any]:
        value, p = float(test[0]), float(test[1])
        return {'statistic': value, 'p_value': p, 'is_significant': p < alpha}

    results = {
        'lm_error': _entry(ols.lm_error),
        'lm_lag': _entry(ols.lm_lag),
        'rlm_error': _entry(ols.rlm_error),
        'rlm_lag': _entry(ols.rlm_lag),
    }

    err_sig = results['lm_error']['is_significant']
    lag_sig = results['lm_lag']['is_significant']
    if err_sig and lag_sig:
        r_err = results['rlm_error']['is_significant']
        r_lag = results['rlm_lag']['is_significant']
        if r_lag and not r_err:
            recommended = ModelKind.LAG
        else:
            recommended = ModelKind.SAC
    elif lag_sig:
        recommended = ModelKind.LAG
    elif err_sig:
        recommended = ModelKind.SAC
    else:
        recommended = ModelKind.OLS

    results['recommended_model'] = recommended.value
    logger.info(
        f"LM diagnostics: LM-error p={results['lm_error']['p_value']:.4f}, "
        f"LM-lag p={results['lm_lag']['p_value']:.4f}, recommended={recommended.value}"
    )
    return results
