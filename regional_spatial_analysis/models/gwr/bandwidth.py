"""
Bandwidth selection for geographically weighted regression.

This module provides the BandwidthSelector class, which minimizes the
leave-one-out cross-validation score over a bounded bandwidth range using
golden-section or grid search.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from ...core.decorators import performance_tracker, stage_errors
from ...core.exceptions import ConvergenceError, SingularMatrixError, ValidationError
from ...computation.numerical import weighted_least_squares
from ...computation.parallel import chunked, parallel_map, resolve_workers
from ..schemas import BandwidthMode, GWRConfig, ParallelConfig, SearchMethod
from .kernels import KernelWeighter

logger = logging.getLogger(__name__)

GOLDEN_DELTA = 0.38197


@dataclass(frozen=True)
class BandwidthSelection:
    """Outcome of a bandwidth search."""
    bandwidth: float
    score: float
    iterations: int
    method: SearchMethod
    mode: BandwidthMode
    history: List[Tuple[float, float]] = field(default_factory=list)


def _cv_chunk(task) -> Tuple[float, int]:
    """Squared leave-one-out errors for a chunk of focal units."""
    indices, y, X, weighter, bandwidth, condition_threshold = task
    sse = 0.0
    valid = 0
    for i in indices:
        w = weighter.weights(i, bandwidth, exclude_focal=True)
        try:
            beta, _ = weighted_least_squares(X, y, w, condition_threshold)
        except SingularMatrixError:
            continue
        sse += float(y[i] - X[i] @ beta) ** 2
        valid += 1
    return sse, valid


class BandwidthSelector:
    """
    Leave-one-out cross-validation bandwidth search.

    Units whose leave-one-out design is singular are skipped. When fewer
    than ``min_valid_fraction`` of the units can be fitted, the bandwidth is
    treated as invalid and scores infinity. Otherwise the summed squared
    error is rescaled to the full unit count so that scores stay comparable
    between bandwidths with different numbers of skipped units.
    """

    def __init__(self, config: Optional[GWRConfig] = None, parallel: Optional[ParallelConfig] = None):
        self.config = config or GWRConfig()
        self.parallel = parallel or ParallelConfig()

    def cv_score(self, y: np.ndarray, X: np.ndarray, weighter: KernelWeighter, bandwidth: float) -> float:
        """CV score for one bandwidth (infinite if too few units are valid)."""
        n = len(y)
        workers = resolve_workers(self.parallel.max_workers, n)
        tasks = [
            (chunk, y, X, weighter, bandwidth, self.config.condition_threshold)
            for chunk in chunked(list(range(n)), workers)
        ]
        results = parallel_map(_cv_chunk, tasks, max_workers=workers, executor=self.parallel.executor)

        sse = sum(r[0] for r in results)
        valid = sum(r[1] for r in results)
        if valid == 0 or valid / n < self.config.min_valid_fraction:
            logger.debug(f"Bandwidth {bandwidth}: only {valid}/{n} units valid")
            return float('inf')

        score = sse * n / valid
        logger.debug(f"Bandwidth {bandwidth}: CV={score:.6f} ({valid}/{n} valid)")
        return score

    def _search_bounds(self, weighter: KernelWeighter, search_range: Tuple[float, float]) -> Tuple[float, float]:
        lower, upper = float(search_range[0]), float(search_range[1])
        if weighter.mode == BandwidthMode.ADAPTIVE:
            lower = max(1.0, float(np.ceil(lower)))
            upper = min(float(weighter.n - 1), float(np.floor(upper)))
        if upper < lower:
            raise ValidationError(
                f"Empty bandwidth search range [{lower}, {upper}] for {weighter.n} units", stage='bandwidth'
            )
        return lower, upper

    @stage_errors('bandwidth')
    @performance_tracker()
    def select(
        self,
        y: np.ndarray,
        X: np.ndarray,
        weighter: KernelWeighter,
        search_range: Optional[Tuple[float, float]] = None
    ) -> BandwidthSelection:
        """
        Search the bandwidth minimizing the CV score.

        Args:
            y: Response vector.
            X: Design matrix including the intercept.
            weighter: Kernel weighter for the unit coordinates.
            search_range: (lower, upper) bounds; config default if None.

        Raises:
            ConvergenceError: If no bandwidth in range is valid or the
                golden-section search runs out of iterations.
        """
        cfg = self.config
        lower, upper = self._search_bounds(weighter, search_range or cfg.search_range)
        adaptive = weighter.mode == BandwidthMode.ADAPTIVE
        logger.info(
            f"Selecting {weighter.mode.value} {weighter.kernel.value} bandwidth in "
            f"[{lower:g}, {upper:g}] by {cfg.search_method.value} search"
        )

        cache: Dict[float, float] = {}

        def score(h: float) -> float:
            if adaptive:
                h = float(int(round(h)))
            if h not in cache:
                cache[h] = self.cv_score(y, X, weighter, h)
            return cache[h]

        if cfg.search_method == SearchMethod.GRID:
            candidates = np.linspace(lower, upper, cfg.grid_points)
            if adaptive:
                candidates = np.unique(np.round(candidates))
            for h in candidates:
                score(float(h))
            iterations = len(candidates)
        else:
            iterations = self._golden(score, lower, upper, adaptive)

        history = sorted(cache.items())
        best_h, best_score = min(history, key=lambda item: item[1])
        if not np.isfinite(best_score):
            raise ConvergenceError(
                f"No bandwidth in [{lower:g}, {upper:g}] fits at least "
                f"{cfg.min_valid_fraction:.0%} of units"
            )

        logger.info(f"Selected bandwidth {best_h:g} (CV={best_score:.6f}, {iterations} iterations)")
        return BandwidthSelection(
            bandwidth=best_h,
            score=best_score,
            iterations=iterations,
            method=cfg.search_method,
            mode=weighter.mode,
            history=history
        )

    def _golden(self, score, lower: float, upper: float, adaptive: bool) -> int:
        """
        Golden-section search; returns the number of iterations used.

        Converges when the bracket is narrower than ``tolerance`` times the
        initial range (or two neighbor counts in adaptive mode).
        """
        cfg = self.config
        a, c = lower, upper
        width = max(upper - lower, np.finfo(float).eps)
        min_width = 2.0 if adaptive else cfg.tolerance * width

        b = a + GOLDEN_DELTA * (c - a)
        d = c - GOLDEN_DELTA * (c - a)
        score_b, score_d = score(b), score(d)

        iterations = 0
        while c - a > min_width:
            if iterations >= cfg.max_iter:
                raise ConvergenceError(
                    f"Golden-section search did not converge within {cfg.max_iter} iterations "
                    f"(bracket [{a:g}, {c:g}])"
                )
            iterations += 1

            # Invalid bandwidths sit at the small end, so an all-invalid pair moves up
            if np.isinf(score_b) and np.isinf(score_d):
                shrink_upper = False
            else:
                shrink_upper = score_b <= score_d

            if shrink_upper:
                c, d, score_d = d, b, score_b
                b = a + GOLDEN_DELTA * (c - a)
                score_b = score(b)
            else:
                a, b, score_b = b, d, score_d
                d = c - GOLDEN_DELTA * (c - a)
                score_d = score(d)

        if adaptive:
            for h in range(int(np.floor(a)), int(np.ceil(c)) + 1):
                if lower <= h <= upper:
                    score(float(h))
        else:
            score(0.5 * (a + c))
        return iterations
