"""
Core module for Regional Spatial Analysis.
"""
from .config import Config, config, initialize_config, DEFAULT_CONFIG
from .decorators import stage_errors, performance_tracker, performance_context
from .exceptions import (
    SpatialAnalysisError, ConfigurationError, ValidationError, GeometryError,
    IsolateError, MissingDataError, SingularMatrixError, ConvergenceError,
    ComputationError
)
from .logging_setup import setup_logging, setup_logging_from_config, JsonFormatter

__all__ = [
    'Config', 'config', 'initialize_config', 'DEFAULT_CONFIG',
    'stage_errors', 'performance_tracker', 'performance_context',
    'SpatialAnalysisError', 'ConfigurationError', 'ValidationError', 'GeometryError',
    'IsolateError', 'MissingDataError', 'SingularMatrixError', 'ConvergenceError',
    'ComputationError',
    'setup_logging', 'setup_logging_from_config', 'JsonFormatter'
]
