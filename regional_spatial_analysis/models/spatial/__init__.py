"""
Spatial models for Regional Spatial Analysis.
"""
from .graph import AdjacencyGraph, GeometryGraphBuilder, GraphSummary
from .weights import SpatialWeightMatrix, WeightMatrixFactory
from .autocorrelation import AutocorrelationTester, MoranResult, lm_diagnostics
from .impacts import ImpactCalculator, power_traces, total_multiplier
from .regression import GlobalSpatialRegressionEngine

__all__ = [
    'AdjacencyGraph', 'GeometryGraphBuilder', 'GraphSummary',
    'SpatialWeightMatrix', 'WeightMatrixFactory',
    'AutocorrelationTester', 'MoranResult', 'lm_diagnostics',
    'ImpactCalculator', 'power_traces', 'total_multiplier',
    'GlobalSpatialRegressionEngine'
]
