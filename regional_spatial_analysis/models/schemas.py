"""
Pydantic schemas for configuration and results in Regional Spatial Analysis.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.config import Config
from ..core.exceptions import ConfigurationError


class ContiguityRule(str, Enum):
    QUEEN = 'queen'
    ROOK = 'rook'
    KNN = 'knn'
    DISTANCE = 'distance'


class DistanceMetric(str, Enum):
    PLANAR = 'planar'
    GREAT_CIRCLE = 'great_circle'


class WeightStyle(str, Enum):
    BINARY = 'binary'
    ROW_STANDARDIZED = 'row_standardized'


class KernelKind(str, Enum):
    GAUSSIAN = 'gaussian'
    BISQUARE = 'bisquare'


class BandwidthMode(str, Enum):
    FIXED = 'fixed'
    ADAPTIVE = 'adaptive'


class SearchMethod(str, Enum):
    GOLDEN = 'golden'
    GRID = 'grid'


class LogdetMethod(str, Enum):
    EIGEN = 'eigen'
    LU = 'lu'


class ModelKind(str, Enum):
    OLS = 'ols'
    LAG = 'lag'
    SAC = 'sac'


class ContiguityConfig(BaseModel):
    """Neighbor rule used to build the adjacency graph."""
    rule: ContiguityRule = ContiguityRule.QUEEN
    k: int = Field(4, ge=1)
    distance_threshold: Optional[float] = Field(None, gt=0)
    snap_tolerance: float = Field(0.0, ge=0)
    symmetrize_knn: bool = True
    metric: DistanceMetric = DistanceMetric.PLANAR

    model_config = ConfigDict(validate_assignment=True, frozen=True)

    @model_validator(mode='after')
    def check_threshold(self) -> 'ContiguityConfig':
        """Distance bands need a threshold."""
        if self.rule == ContiguityRule.DISTANCE and self.distance_threshold is None:
            raise ValueError("distance_threshold is required for the distance rule")
        return self


class WeightsConfig(BaseModel):
    """Weight matrix style and isolate policy."""
    style: WeightStyle = WeightStyle.ROW_STANDARDIZED
    zero_policy: bool = True
    auxiliary_weights: bool = False

    model_config = ConfigDict(frozen=True)


class AutocorrelationConfig(BaseModel):
    """Moran's I permutation settings."""
    permutations: int = Field(999, ge=0)
    seed: Optional[int] = 12345
    chunk_size: int = Field(250, ge=1)

    model_config = ConfigDict(frozen=True)


class GWRConfig(BaseModel):
    """Kernel, bandwidth search and numerical guards for local regression."""
    kernel: KernelKind = KernelKind.BISQUARE
    bandwidth_mode: BandwidthMode = BandwidthMode.ADAPTIVE
    bandwidth: Optional[float] = Field(None, gt=0)
    search_range: Tuple[float, float] = (10, 200)
    search_method: SearchMethod = SearchMethod.GOLDEN
    grid_points: int = Field(20, ge=2)
    max_iter: int = Field(200, ge=1)
    tolerance: float = Field(1.0e-5, gt=0)
    min_valid_fraction: float = Field(0.9, gt=0, le=1)
    condition_threshold: float = Field(1.0e10, gt=1)
    metric: DistanceMetric = DistanceMetric.PLANAR

    model_config = ConfigDict(frozen=True)

    @field_validator('search_range')
    @classmethod
    def check_range(cls, v):
        """Validate lower < upper and both positive."""
        lower, upper = v
        if lower <= 0 or upper <= lower:
            raise ValueError("search_range must satisfy 0 < lower < upper")
        return v


class RegressionConfig(BaseModel):
    """Maximum likelihood and impact simulation settings."""
    kinds: List[ModelKind] = Field(default_factory=lambda: [ModelKind.OLS, ModelKind.LAG, ModelKind.SAC])
    use_auxiliary_weights: bool = False
    max_iter: int = Field(500, ge=1)
    tolerance: float = Field(1.0e-8, gt=0)
    logdet_method: LogdetMethod = LogdetMethod.EIGEN
    impact_draws: int = Field(2000, ge=0)
    trace_powers: int = Field(100, ge=3)
    trace_samples: int = Field(50, ge=1)
    confidence_level: float = Field(0.95, gt=0, lt=1)
    seed: Optional[int] = 12345

    model_config = ConfigDict(frozen=True)


class ParallelConfig(BaseModel):
    """Worker pool settings."""
    max_workers: int = Field(1, ge=1)
    executor: str = 'process'

    model_config = ConfigDict(frozen=True)

    @field_validator('executor')
    @classmethod
    def check_executor(cls, v):
        """Validate executor kind."""
        if v not in ('process', 'thread'):
            raise ValueError("executor must be 'process' or 'thread'")
        return v


class AnalysisConfig(BaseModel):
    """Validated view over every configuration section used by the pipeline."""
    contiguity: ContiguityConfig = Field(default_factory=ContiguityConfig)
    weights: WeightsConfig = Field(default_factory=WeightsConfig)
    autocorrelation: AutocorrelationConfig = Field(default_factory=AutocorrelationConfig)
    gwr: GWRConfig = Field(default_factory=GWRConfig)
    regression: RegressionConfig = Field(default_factory=RegressionConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_config(cls, cfg: Config) -> 'AnalysisConfig':
        """Build from a Config instance, reporting invalid sections as ConfigurationError."""
        sections = {
            name: cfg.get(name) or {}
            for name in ('contiguity', 'weights', 'autocorrelation', 'gwr', 'regression', 'parallel')
        }
        try:
            return cls(**sections)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", stage='configuration', original_error=e) from e


class RegressionSpecification(BaseModel):
    """A response variable and an ordered, deduplicated list of predictors."""
    response: str
    predictors: List[str]
    name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator('predictors')
    @classmethod
    def dedupe_predictors(cls, v):
        """Drop repeated predictors, keeping first occurrence order."""
        seen = []
        for p in v:
            if p not in seen:
                seen.append(p)
        if not seen:
            raise ValueError("At least one predictor is required")
        return seen

    @model_validator(mode='after')
    def check_response(self) -> 'RegressionSpecification':
        """The response cannot also be a predictor."""
        if self.response in self.predictors:
            raise ValueError(f"Response '{self.response}' cannot be a predictor")
        return self

    @property
    def label(self) -> str:
        return self.name or f"{self.response} ~ {' + '.join(self.predictors)}"


class EffectEstimate(BaseModel):
    """Point estimate with simulated spread and percentile bounds."""
    estimate: float
    std_error: Optional[float] = None
    lower: Optional[float] = None
    upper: Optional[float] = None


class ImpactEstimate(BaseModel):
    """Direct, indirect and total effect of one predictor."""
    variable: str
    direct: EffectEstimate
    indirect: EffectEstimate
    total: EffectEstimate


class GlobalModelResult(BaseModel):
    """
    Result record shared by every global model kind.

    ``rho`` is present for LAG and SAC, ``lam`` only for SAC, and ``impacts``
    only for the two spatial kinds.
    """
    kind: ModelKind
    specification: RegressionSpecification
    coefficients: Dict[str, float]
    std_errors: Dict[str, float]
    z_values: Dict[str, float]
    p_values: Dict[str, float]
    rho: Optional[float] = None
    rho_std_err: Optional[float] = None
    lam: Optional[float] = None
    lam_std_err: Optional[float] = None
    log_likelihood: float
    aic: float
    sigma2: float
    n_obs: int
    iterations: Optional[int] = None
    impacts: Optional[List[ImpactEstimate]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def check_kind_fields(self) -> 'GlobalModelResult':
        """Enforce kind-specific fields."""
        if self.kind == ModelKind.OLS:
            if self.rho is not None or self.lam is not None or self.impacts is not None:
                raise ValueError("OLS results carry no spatial parameters or impacts")
        elif self.kind == ModelKind.LAG:
            if self.rho is None or self.lam is not None:
                raise ValueError("LAG results carry rho and no lambda")
        elif self.kind == ModelKind.SAC:
            if self.rho is None or self.lam is None:
                raise ValueError("SAC results carry both rho and lambda")
        return self

    def impact_table(self) -> Dict[str, Dict[str, float]]:
        """Flatten impacts to ``{variable: {'direct': ..., 'indirect': ..., 'total': ...}}``."""
        if not self.impacts:
            return {}
        return {
            imp.variable: {
                'direct': imp.direct.estimate,
                'indirect': imp.indirect.estimate,
                'total': imp.total.estimate,
            }
            for imp in self.impacts
        }
