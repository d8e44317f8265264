"""
Regional Spatial Analysis.

Spatial weights, autocorrelation tests, global spatial regression and
geographically weighted regression for administrative units.
"""
from .core import (
    config, initialize_config, setup_logging, SpatialAnalysisError,
    GeometryError, IsolateError, MissingDataError, SingularMatrixError, ConvergenceError
)
from .models.schemas import AnalysisConfig, RegressionSpecification, GlobalModelResult, ModelKind
from .data import SpatialDataset, load_dataset
from .models.spatial import (
    GeometryGraphBuilder, AdjacencyGraph, WeightMatrixFactory, SpatialWeightMatrix,
    AutocorrelationTester, MoranResult, GlobalSpatialRegressionEngine
)
from .models.gwr import KernelWeighter, BandwidthSelector, LocalRegressionEngine, GWRResult
from .analysis import SpecificationBatch

__version__ = '0.1.0'

__all__ = [
    'config', 'initialize_config', 'setup_logging', 'SpatialAnalysisError',
    'GeometryError', 'IsolateError', 'MissingDataError', 'SingularMatrixError', 'ConvergenceError',
    'AnalysisConfig', 'RegressionSpecification', 'GlobalModelResult', 'ModelKind',
    'SpatialDataset', 'load_dataset',
    'GeometryGraphBuilder', 'AdjacencyGraph', 'WeightMatrixFactory', 'SpatialWeightMatrix',
    'AutocorrelationTester', 'MoranResult', 'GlobalSpatialRegressionEngine',
    'KernelWeighter', 'BandwidthSelector', 'LocalRegressionEngine', 'GWRResult',
    'SpecificationBatch'
]
