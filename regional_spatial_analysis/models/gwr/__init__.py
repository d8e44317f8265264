"""
Geographically weighted regression for Regional Spatial Analysis.
"""
from .kernels import KernelWeighter, distances_from, kernel_function
from .bandwidth import BandwidthSelector, BandwidthSelection
from .engine import LocalRegressionEngine, GWRResult

__all__ = [
    'KernelWeighter', 'distances_from', 'kernel_function',
    'BandwidthSelector', 'BandwidthSelection',
    'LocalRegressionEngine', 'GWRResult'
]
