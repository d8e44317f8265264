"""
Models module for Regional Spatial Analysis.

Estimators live in the ``spatial`` and ``gwr`` subpackages; this module
only re-exports the configuration and result schemas.
"""
from .schemas import (
    ContiguityRule, DistanceMetric, WeightStyle, KernelKind, BandwidthMode,
    SearchMethod, LogdetMethod, ModelKind,
    ContiguityConfig, WeightsConfig, AutocorrelationConfig, GWRConfig,
    RegressionConfig, ParallelConfig, AnalysisConfig,
    RegressionSpecification, EffectEstimate, ImpactEstimate, GlobalModelResult
)

__all__ = [
    'ContiguityRule', 'DistanceMetric', 'WeightStyle', 'KernelKind', 'BandwidthMode',
    'SearchMethod', 'LogdetMethod', 'ModelKind',
    'ContiguityConfig', 'WeightsConfig', 'AutocorrelationConfig', 'GWRConfig',
    'RegressionConfig', 'ParallelConfig', 'AnalysisConfig',
    'RegressionSpecification', 'EffectEstimate', 'ImpactEstimate', 'GlobalModelResult'
]
