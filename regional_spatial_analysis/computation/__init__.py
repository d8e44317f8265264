"""
Computation module for Regional Spatial Analysis.
"""
from .parallel import parallel_map, chunked, resolve_workers
from .numerical import (
    condition_number, guarded_inverse, weighted_least_squares,
    numerical_hessian, LogDeterminant
)

__all__ = [
    'parallel_map', 'chunked', 'resolve_workers',
    'condition_number', 'guarded_inverse', 'weighted_least_squares',
    'numerical_hessian', 'LogDeterminant'
]
