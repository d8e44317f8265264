"""
Global spatial regression models for Regional Spatial Analysis.

This module provides the GlobalSpatialRegressionEngine class, which fits
OLS, spatial lag (LAG) and combined lag and error (SAC) models on a shared
weight matrix by (concentrated) maximum likelihood and derives impact
decompositions for the spatial kinds.
"""
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import statsmodels.api as sm
from scipy import optimize, stats

from ...core.decorators import performance_tracker, stage_errors
from ...core.exceptions import (
    ConvergenceError, SingularMatrixError, SpatialAnalysisError, ValidationError
)
from ...computation.numerical import LogDeterminant, numerical_hessian
from ...data.dataset import INTERCEPT, SpatialDataset
from ..schemas import GlobalModelResult, ModelKind, RegressionConfig, RegressionSpecification
from .impacts import ImpactCalculator
from .weights import SpatialWeightMatrix

logger = logging.getLogger(__name__)

LOG_2PI = np.log(2.0 * np.pi)


def _covariance(hessian: np.ndarray, label: str) -> np.ndarray:
    """Inverse of the observed information (negative Hessian)."""
    try:
        cov = np.linalg.inv(-hessian)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError("Information matrix is singular", model=label, original_error=e) from e

    diag = np.diag(cov)
    if not np.all(np.isfinite(diag)) or np.any(diag <= 0):
        raise SingularMatrixError("Information matrix is not positive definite", model=label)
    return cov


def _stationary(func, opt, bounds, gtol: float = 1e-4) -> bool:
    """
    Accept an L-BFGS-B line-search stop when the projected gradient vanishes.

    Iteration-budget exhaustion (status 1) is never accepted.
    """
    if opt.status == 1 or not np.isfinite(opt.fun):
        return False
    x = np.asarray(opt.x, dtype=float)
    grad = optimize.approx_fprime(x, func, 1e-7)
    lower = np.array([b[0] for b in bounds])
    upper = np.array([b[1] for b in bounds])
    # Gradient components pushing against an active bound do not count
    grad[(x <= lower + 1e-9) & (grad > 0)] = 0.0
    grad[(x >= upper - 1e-9) & (grad < 0)] = 0.0
    stationary = bool(np.max(np.abs(grad)) < gtol * max(1.0, abs(opt.fun)))
    if stationary:
        logger.warning(f"Optimizer stopped early ({opt.message}) at a stationary point; accepting")
    return stationary


def _check_rank(X: np.ndarray, names: Sequence[str], label: str) -> None:
    rank = np.linalg.matrix_rank(X)
    if rank < X.shape[1]:
        raise SingularMatrixError(
            f"Design matrix is rank deficient (rank {rank} < {X.shape[1]} columns: {', '.join(names)})",
            model=label
        )
    if X.shape[0] <= X.shape[1]:
        raise ValidationError(f"Need more observations ({X.shape[0]}) than parameters ({X.shape[1]})", model=label)


class GlobalSpatialRegressionEngine:
    """
    OLS, LAG and SAC estimation over one weight matrix.

    Attributes:
        weights (SpatialWeightMatrix): Shared read-only weight matrix.
        config (RegressionConfig): Optimizer and impact settings.
    """

    def __init__(self, weights: SpatialWeightMatrix, config: Optional[RegressionConfig] = None):
        self.weights = weights
        self.config = config or RegressionConfig()
        self._logdet: Optional[LogDeterminant] = None
        self._impacts: Optional[ImpactCalculator] = None

    @property
    def logdet(self) -> LogDeterminant:
        if self._logdet is None:
            self._logdet = LogDeterminant(self.weights.sparse, method=self.config.logdet_method.value)
        return self._logdet

    @property
    def impact_calculator(self) -> ImpactCalculator:
        if self._impacts is None:
            cfg = self.config
            self._impacts = ImpactCalculator(
                self.weights.sparse, powers=cfg.trace_powers, samples=cfg.trace_samples, seed=cfg.seed
            )
        return self._impacts

    @stage_errors('regression')
    def fit(
        self,
        dataset: SpatialDataset,
        spec: RegressionSpecification,
        kind: ModelKind = ModelKind.OLS
    ) -> GlobalModelResult:
        """
        Fit one model kind for a specification.

        Raises:
            MissingDataError: If a named column is absent or incomplete.
            SingularMatrixError: If the design or information matrix is singular.
            ConvergenceError: If the likelihood optimizer fails.
        """
        kind = ModelKind(kind)
        label = f"{kind.value}: {spec.label}"
        try:
            if tuple(dataset.ids) != tuple(self.weights.ids):
                raise ValidationError("Dataset units do not match the weight matrix ids")

            y, X, names = dataset.design(spec)
            aux = None
            if kind == ModelKind.OLS and self.config.use_auxiliary_weights:
                aux = dataset.auxiliary_weights()
            return self.fit_arrays(y, X, names, spec, kind, aux)
        except SpatialAnalysisError as e:
            if e.model is None or e.model == spec.label:
                e.model = label
            raise

    def fit_all(
        self,
        dataset: SpatialDataset,
        spec: RegressionSpecification,
        kinds: Optional[Sequence[ModelKind]] = None
    ) -> Dict[ModelKind, GlobalModelResult]:
        """Fit several kinds for one specification; the first failure propagates."""
        kinds = kinds or self.config.kinds
        return {ModelKind(k): self.fit(dataset, spec, k) for k in kinds}

    @performance_tracker()
    def fit_arrays(
        self,
        y: np.ndarray,
        X: np.ndarray,
        names: List[str],
        spec: RegressionSpecification,
        kind: ModelKind,
        aux: Optional[np.ndarray] = None
    ) -> GlobalModelResult:
        """Fit from prepared arrays. X must include the intercept column."""
        label = f"{kind.value}: {spec.label}"
        if len(y) != self.weights.n:
            raise ValidationError(f"Expected {self.weights.n} observations, got {len(y)}", model=label)
        _check_rank(X, names, label)

        logger.info(f"Estimating {kind.value.upper()} model for {spec.label} (n={len(y)}, k={X.shape[1]})")

        if kind == ModelKind.OLS:
            result = self._fit_ols(y, X, names, spec, aux)
        elif kind == ModelKind.LAG:
            result = self._fit_lag(y, X, names, spec, label)
        else:
            result = self._fit_sac(y, X, names, spec, label)

        logger.info(
            f"{kind.value.upper()} model for {spec.label}: logL={result.log_likelihood:.4f}, "
            f"AIC={result.aic:.4f}"
            + (f", rho={result.rho:.4f}" if result.rho is not None else "")
            + (f", lambda={result.lam:.4f}" if result.lam is not None else "")
        )
        return result

    def _fit_ols(
        self,
        y: np.ndarray,
        X: np.ndarray,
        names: List[str],
        spec: RegressionSpecification,
        aux: Optional[np.ndarray]
    ) -> GlobalModelResult:
        if aux is not None:
            model = sm.WLS(y, X, weights=aux)
        else:
            model = sm.OLS(y, X)
        fitted = model.fit()

        return GlobalModelResult(
            kind=ModelKind.OLS,
            specification=spec,
            coefficients=dict(zip(names, fitted.params.tolist())),
            std_errors=dict(zip(names, fitted.bse.tolist())),
            z_values=dict(zip(names, fitted.tvalues.tolist())),
            p_values=dict(zip(names, fitted.pvalues.tolist())),
            log_likelihood=float(fitted.llf),
            aic=float(fitted.aic),
            sigma2=float(fitted.ssr / len(y)),
            n_obs=int(fitted.nobs),
            metadata={
                'r_squared': float(fitted.rsquared),
                'adj_r_squared': float(fitted.rsquared_adj),
                'weighted': aux is not None,
            }
        )

    def _fit_lag(
        self,
        y: np.ndarray,
        X: np.ndarray,
        names: List[str],
        spec: RegressionSpecification,
        label: str
    ) -> GlobalModelResult:
        n, k = X.shape
        W = self.weights.sparse
        logdet = self.logdet
        lower, upper = logdet.bounds()
        Wy = W @ y

        # beta(rho) = b0 - rho * bL, residuals e0 - rho * eL
        b0, *_ = np.linalg.lstsq(X, y, rcond=None)
        bL, *_ = np.linalg.lstsq(X, Wy, rcond=None)
        e0 = y - X @ b0
        eL = Wy - X @ bL

        def neg_concentrated(rho: float) -> float:
            e = e0 - rho * eL
            sigma2 = float(e @ e) / n
            return -(-0.5 * n * (LOG_2PI + 1.0 + np.log(sigma2)) + logdet(rho))

        opt = optimize.minimize_scalar(
            neg_concentrated, bounds=(lower, upper), method='bounded',
            options={'maxiter': self.config.max_iter, 'xatol': self.config.tolerance}
        )
        iterations = int(getattr(opt, 'nit', opt.nfev))
        if not opt.success:
            raise ConvergenceError(
                f"Lag likelihood optimization failed after {iterations} iterations: {opt.message}", model=label
            )

        rho = float(opt.x)
        beta = b0 - rho * bL
        e = e0 - rho * eL
        sigma2 = float(e @ e) / n

        def loglik(theta: np.ndarray) -> float:
            b, r, log_s2 = theta[:k], theta[k], theta[k + 1]
            resid = y - r * Wy - X @ b
            s2 = np.exp(log_s2)
            return -0.5 * n * (LOG_2PI + log_s2) + logdet(r) - float(resid @ resid) / (2.0 * s2)

        theta = np.concatenate([beta, [rho, np.log(sigma2)]])
        cov = _covariance(numerical_hessian(loglik, theta), label)[: k + 1, : k + 1]
        log_likelihood = loglik(theta)

        return self._spatial_result(
            ModelKind.LAG, spec, names, beta, cov, rho, None, sigma2,
            log_likelihood, n, iterations, (lower, upper)
        )

    def _fit_sac(
        self,
        y: np.ndarray,
        X: np.ndarray,
        names: List[str],
        spec: RegressionSpecification,
        label: str
    ) -> GlobalModelResult:
        n, k = X.shape
        W = self.weights.sparse
        logdet = self.logdet
        lower, upper = logdet.bounds()
        Wy = W @ y
        WX = W @ X

        def profile(rho: float, lam: float):
            y_l = y - rho * Wy
            y_b = y_l - lam * (W @ y_l)
            X_b = X - lam * WX
            b, *_ = np.linalg.lstsq(X_b, y_b, rcond=None)
            e = y_b - X_b @ b
            return b, float(e @ e) / n

        def neg_concentrated(params: np.ndarray) -> float:
            rho, lam = params
            _, sigma2 = profile(rho, lam)
            return -(-0.5 * n * (LOG_2PI + 1.0 + np.log(sigma2)) + logdet(rho) + logdet(lam))

        opt = optimize.minimize(
            neg_concentrated, x0=np.zeros(2), method='L-BFGS-B',
            bounds=[(lower, upper), (lower, upper)],
            options={'maxiter': self.config.max_iter, 'ftol': self.config.tolerance}
        )
        iterations = int(opt.nit)
        if not opt.success and not _stationary(neg_concentrated, opt, [(lower, upper)] * 2):
            raise ConvergenceError(
                f"SAC likelihood optimization failed after {iterations} iterations: {opt.message}", model=label
            )

        rho, lam = float(opt.x[0]), float(opt.x[1])
        beta, sigma2 = profile(rho, lam)

        def loglik(theta: np.ndarray) -> float:
            b, r, lm, log_s2 = theta[:k], theta[k], theta[k + 1], theta[k + 2]
            u = y - r * Wy - X @ b
            resid = u - lm * (W @ u)
            s2 = np.exp(log_s2)
            return (-0.5 * n * (LOG_2PI + log_s2) + logdet(r) + logdet(lm)
                    - float(resid @ resid) / (2.0 * s2))

        theta = np.concatenate([beta, [rho, lam, np.log(sigma2)]])
        cov = _covariance(numerical_hessian(loglik, theta), label)[: k + 2, : k + 2]
        log_likelihood = loglik(theta)

        return self._spatial_result(
            ModelKind.SAC, spec, names, beta, cov, rho, lam, sigma2,
            log_likelihood, n, iterations, (lower, upper)
        )

    def _spatial_result(
        self,
        kind: ModelKind,
        spec: RegressionSpecification,
        names: List[str],
        beta: np.ndarray,
        cov: np.ndarray,
        rho: float,
        lam: Optional[float],
        sigma2: float,
        log_likelihood: float,
        n: int,
        iterations: int,
        bounds
    ) -> GlobalModelResult:
        k = len(beta)
        se = np.sqrt(np.diag(cov))
        z = np.concatenate([beta, [rho] + ([lam] if lam is not None else [])]) / se
        p = 2.0 * stats.norm.sf(np.abs(z))
        n_params = k + (2 if lam is not None else 1)

        cfg = self.config
        slope_idx = [j for j, name in enumerate(names) if name != INTERCEPT]
        impact_idx = slope_idx + [k]
        impacts = self.impact_calculator.estimate(
            names=[names[j] for j in slope_idx],
            beta=beta[slope_idx],
            rho=rho,
            cov=cov[np.ix_(impact_idx, impact_idx)],
            draws=cfg.impact_draws,
            confidence_level=cfg.confidence_level,
            bounds=bounds,
            seed=cfg.seed
        )

        return GlobalModelResult(
            kind=kind,
            specification=spec,
            coefficients=dict(zip(names, beta.tolist())),
            std_errors=dict(zip(names, se[:k].tolist())),
            z_values=dict(zip(names, z[:k].tolist())),
            p_values=dict(zip(names, p[:k].tolist())),
            rho=rho,
            rho_std_err=float(se[k]),
            lam=lam,
            lam_std_err=float(se[k + 1]) if lam is not None else None,
            log_likelihood=float(log_likelihood),
            aic=float(-2.0 * log_likelihood + 2.0 * n_params),
            sigma2=float(sigma2),
            n_obs=n,
            iterations=iterations,
            impacts=impacts,
            metadata={
                'rho_p_value': float(p[k]),
                'lam_p_value': float(p[k + 1]) if lam is not None else None,
                'logdet_method': cfg.logdet_method.value,
                'parameter_bounds': list(bounds),
            }
        )
