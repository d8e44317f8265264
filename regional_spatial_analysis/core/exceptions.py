"""
Custom exception classes for Regional Spatial Analysis.
"""
from typing import Any, Dict, Iterable, Optional


class SpatialAnalysisError(Exception):
    """
    Base exception for all Regional Spatial Analysis errors.

    Attributes:
        message (str): Error message.
        stage (str, optional): Pipeline stage that raised the error.
        unit_ids (tuple): Identifiers of the spatial units involved.
        model (str, optional): Model or specification identifier.
        original_error (Exception, optional): Exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        unit_ids: Optional[Iterable[Any]] = None,
        model: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.stage = stage
        self.unit_ids = tuple(unit_ids) if unit_ids is not None else ()
        self.model = model
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.model:
            parts.append(f"model={self.model}")
        if self.unit_ids:
            shown = ", ".join(str(u) for u in self.unit_ids[:10])
            if len(self.unit_ids) > 10:
                shown += f", ... ({len(self.unit_ids)} total)"
            parts.append(f"units=[{shown}]")
        text = " | ".join(parts)
        if self.original_error:
            return f"{text} (Original error: {str(self.original_error)})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used when errors are logged or aggregated."""
        return {
            'error_type': type(self).__name__,
            'message': self.message,
            'stage': self.stage,
            'unit_ids': [str(u) for u in self.unit_ids],
            'model': self.model,
            'original_error': repr(self.original_error) if self.original_error else None,
        }


class ConfigurationError(SpatialAnalysisError):
    """Error in configuration settings."""
    pass


class ValidationError(SpatialAnalysisError):
    """Error in input validation."""
    pass


class GeometryError(SpatialAnalysisError):
    """Malformed, empty or non-polygonal unit geometry."""
    pass


class IsolateError(SpatialAnalysisError):
    """Unit without neighbors encountered while isolates are not allowed."""
    pass


class MissingDataError(SpatialAnalysisError):
    """A response or predictor value is absent at fit time."""
    pass


class SingularMatrixError(SpatialAnalysisError):
    """Collinear, rank-deficient or ill-conditioned system."""
    pass


class ConvergenceError(SpatialAnalysisError):
    """Iterative estimation or search exceeded its budget without converging."""
    pass


class ComputationError(SpatialAnalysisError):
    """Unexpected failure inside a computation stage."""
    pass
