"""
Numerical stability utilities for Regional Spatial Analysis.
"""
import logging
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse import linalg as spla

from ..core.exceptions import SingularMatrixError

logger = logging.getLogger(__name__)


def condition_number(A: np.ndarray) -> float:
    """2-norm condition number; infinite for singular or non-finite input."""
    if not np.all(np.isfinite(A)):
        return float('inf')
    try:
        svd_values = np.linalg.svd(A, compute_uv=False)
    except np.linalg.LinAlgError:
        return float('inf')
    if svd_values[-1] <= 0:
        return float('inf')
    return float(svd_values[0] / svd_values[-1])


def guarded_inverse(
    A: np.ndarray,
    condition_threshold: float = 1e10,
    context: Optional[str] = None
) -> np.ndarray:
    """
    Invert a small symmetric system after checking its conditioning.

    Raises:
        SingularMatrixError: If the condition number exceeds the threshold.
    """
    cond = condition_number(A)
    if cond > condition_threshold:
        raise SingularMatrixError(
            f"Matrix is singular or ill-conditioned (condition number = {cond:.3e})",
            model=context
        )
    return np.linalg.inv(A)


def weighted_least_squares(
    X: np.ndarray,
    y: np.ndarray,
    w: np.ndarray,
    condition_threshold: float = 1e10,
    context: Optional[str] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Guarded WLS with diagonal weights w, returning (coefficients, (X'WX)^-1)."""
    XtW = X.T * w
    A_inv = guarded_inverse(XtW @ X, condition_threshold, context)
    return A_inv @ (XtW @ y), A_inv


def numerical_hessian(
    func: Callable[[np.ndarray], float],
    theta: np.ndarray,
    step: float = 1e-4
) -> np.ndarray:
    """
    Central-difference Hessian of a scalar function.

    The step is scaled by the magnitude of each parameter.
    """
    theta = np.asarray(theta, dtype=float)
    k = theta.size
    h = step * np.maximum(np.abs(theta), 1.0)
    H = np.zeros((k, k))
    f0 = func(theta)

    for i in range(k):
        ei = np.zeros(k)
        ei[i] = h[i]
        f_plus = func(theta + ei)
        f_minus = func(theta - ei)
        H[i, i] = (f_plus - 2.0 * f0 + f_minus) / (h[i] ** 2)
        for j in range(i + 1, k):
            ej = np.zeros(k)
            ej[j] = h[j]
            f_pp = func(theta + ei + ej)
            f_pm = func(theta + ei - ej)
            f_mp = func(theta - ei + ej)
            f_mm = func(theta - ei - ej)
            H[i, j] = H[j, i] = (f_pp - f_pm - f_mp + f_mm) / (4.0 * h[i] * h[j])

    return H


class LogDeterminant:
    """
    ``ln|I - a W|`` evaluator for a fixed weight matrix.

    The ``eigen`` method computes the eigenvalues of W once and evaluates
    every parameter in O(n). The ``lu`` method factorizes the sparse matrix
    for every call and suits larger inputs.
    """

    def __init__(self, W: sparse.spmatrix, method: str = 'eigen'):
        self.W = sparse.csc_matrix(W)
        self.n = self.W.shape[0]
        self.method = method
        self.eigenvalues: Optional[np.ndarray] = None

        if method == 'eigen':
            self.eigenvalues = np.linalg.eigvals(self.W.toarray())
        elif method != 'lu':
            raise ValueError(f"Unknown log-determinant method: {method}")

    def bounds(self, margin: float = 1e-6) -> Tuple[float, float]:
        """Open interval of admissible autoregressive parameters."""
        if self.eigenvalues is None:
            return -0.99, 0.99

        real = self.eigenvalues.real
        lam_min, lam_max = real.min(), real.max()
        lower = 1.0 / lam_min + margin if lam_min < 0 else -0.99
        upper = 1.0 / lam_max - margin if lam_max > 0 else 0.99
        return float(lower), float(upper)

    def __call__(self, a: float) -> float:
        if self.eigenvalues is not None:
            return float(np.sum(np.log(1.0 - a * self.eigenvalues + 0j)).real)

        A = sparse.identity(self.n, format='csc') - a * self.W
        try:
            lu = spla.splu(A)
        except RuntimeError as e:
            raise SingularMatrixError(f"I - {a:.4f} W is singular", original_error=e) from e
        return float(np.sum(np.log(np.abs(lu.U.diagonal()))))
