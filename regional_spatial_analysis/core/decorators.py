"""
Common decorators for Regional Spatial Analysis.
"""
import time
import logging
import functools
from typing import Any, Callable, Optional, TypeVar, cast

from .exceptions import SpatialAnalysisError, ComputationError

F = TypeVar('F', bound=Callable[..., Any])
logger = logging.getLogger(__name__)


def stage_errors(stage: str) -> Callable[[F], F]:
    """
    Tag errors raised inside a pipeline stage.

    Package errors are re-raised with their stage filled in when missing.
    Anything else is wrapped in a ComputationError that keeps the original
    exception, so callers only ever see the package hierarchy.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except SpatialAnalysisError as e:
                if e.stage is None:
                    e.stage = stage
                raise
            except Exception as e:
                logger.error(f"Error in {func.__module__}.{func.__name__}: {str(e)}", exc_info=True)
                raise ComputationError(
                    f"Error in {func.__name__}: {str(e)}",
                    stage=stage,
                    original_error=e
                ) from e
        return cast(F, wrapper)
    return decorator


def performance_tracker(name: Optional[str] = None, level: str = "debug") -> Callable[[F], F]:
    """Track function execution time."""
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            func_name = name or func.__name__
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
                elapsed = time.time() - start_time
                log_method = getattr(logger, level.lower(), logger.debug)
                log_method(f"{func_name} completed in {elapsed:.3f} seconds")
                return result
            except Exception as e:
                elapsed = time.time() - start_time
                logger.debug(f"{func_name} failed after {elapsed:.3f} seconds: {str(e)}")
                raise

        return cast(F, wrapper)
    return decorator


class performance_context:
    """Context manager for performance tracking."""

    def __init__(self, name: str, level: str = "debug"):
        self.name = name
        self.level = level
        self.start_time = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> 'performance_context':
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.elapsed = time.time() - self.start_time
        log_method = getattr(logger, self.level.lower(), logger.debug)

        if exc_type:
            log_method(f"{self.name} failed after {self.elapsed:.3f} seconds: {str(exc_val)}")
        else:
            log_method(f"{self.name} completed in {self.elapsed:.3f} seconds")
