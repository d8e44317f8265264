"""
Batch estimation over many regression specifications.

Every (specification, model kind) pair is fitted against the same
read-only weight matrix. Failures are recorded per pair and never abort
the batch.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from ..core.decorators import performance_context
from ..core.exceptions import SpatialAnalysisError
from ..computation.parallel import parallel_map
from ..data.dataset import SpatialDataset
from ..models.schemas import (
    AnalysisConfig, GlobalModelResult, ModelKind, RegressionSpecification
)
from ..models.gwr.engine import GWRResult, LocalRegressionEngine
from ..models.spatial.regression import GlobalSpatialRegressionEngine
from ..models.spatial.weights import SpatialWeightMatrix

logger = logging.getLogger(__name__)

GWR_KIND = 'gwr'


class BatchFailure(BaseModel):
    """A (specification, kind) pair that could not be fitted."""
    specification: str
    kind: str
    stage: Optional[str] = None
    error_type: str
    message: str
    unit_ids: List[str] = []

    @classmethod
    def from_error(cls, spec: RegressionSpecification, kind: str, error: SpatialAnalysisError) -> 'BatchFailure':
        return cls(
            specification=spec.label,
            kind=kind,
            stage=error.stage,
            error_type=type(error).__name__,
            message=error.message,
            unit_ids=[str(u) for u in error.unit_ids],
        )


@dataclass
class BatchResult:
    """Fitted models, GWR surfaces and failures of one batch run."""
    results: List[GlobalModelResult] = field(default_factory=list)
    gwr: Dict[str, GWRResult] = field(default_factory=dict)
    failures: List[BatchFailure] = field(default_factory=list)

    def by_specification(self) -> Dict[str, Dict[str, GlobalModelResult]]:
        grouped: Dict[str, Dict[str, GlobalModelResult]] = {}
        for result in self.results:
            grouped.setdefault(result.specification.label, {})[result.kind.value] = result
        return grouped

    def to_records(self) -> List[Dict[str, Any]]:
        """JSON-ready records: one per fitted model, then one per failure."""
        records = [r.model_dump(mode='json') for r in self.results]
        records.extend({'failure': True, **f.model_dump(mode='json')} for f in self.failures)
        return records


def _run_specification(task) -> Dict[str, Any]:
    """Fit every requested kind for one specification, isolating failures."""
    regression, gwr_engine, dataset, spec, kinds = task
    outcome: Dict[str, Any] = {'results': [], 'gwr': None, 'failures': []}

    for kind in kinds:
        try:
            outcome['results'].append(regression.fit(dataset, spec, kind))
        except SpatialAnalysisError as e:
            logger.warning(f"{kind.value.upper()} failed for {spec.label}: {e}")
            outcome['failures'].append(BatchFailure.from_error(spec, kind.value, e))

    if gwr_engine is not None:
        try:
            outcome['gwr'] = gwr_engine.fit(dataset, spec)
        except SpatialAnalysisError as e:
            logger.warning(f"GWR failed for {spec.label}: {e}")
            outcome['failures'].append(BatchFailure.from_error(spec, GWR_KIND, e))

    return outcome


class SpecificationBatch:
    """
    Worker-pool execution of many specifications on one dataset.

    Attributes:
        dataset (SpatialDataset): Shared input snapshot.
        weights (SpatialWeightMatrix): Shared weight matrix.
        config (AnalysisConfig): Validated analysis settings.
    """

    def __init__(
        self,
        dataset: SpatialDataset,
        weights: SpatialWeightMatrix,
        config: Optional[AnalysisConfig] = None
    ):
        self.dataset = dataset
        self.weights = weights
        self.config = config or AnalysisConfig()

    @staticmethod
    def _warm(regression: GlobalSpatialRegressionEngine) -> None:
        """Build the log-determinant and trace caches once so workers receive them ready."""
        try:
            regression.logdet
            regression.impact_calculator
        except SpatialAnalysisError as e:
            # Left unbuilt; each task records the failure on its own
            logger.warning(f"Could not precompute spatial caches: {e}")

    def run(
        self,
        specs: Sequence[RegressionSpecification],
        kinds: Optional[Sequence[ModelKind]] = None,
        include_gwr: bool = False
    ) -> BatchResult:
        """
        Fit every (specification, kind) pair.

        Args:
            specs: Specifications to fit.
            kinds: Model kinds; config default if None.
            include_gwr: Also fit a GWR surface per specification.

        Returns:
            BatchResult with results in specification order and all failures.
        """
        kinds = [ModelKind(k) for k in (kinds or self.config.regression.kinds)]
        regression = GlobalSpatialRegressionEngine(self.weights, self.config.regression)
        # Unit fits inside each GWR stay sequential; the pool runs across specifications
        gwr_engine = LocalRegressionEngine(self.config.gwr) if include_gwr else None
        if any(kind is not ModelKind.OLS for kind in kinds):
            self._warm(regression)

        tasks = [(regression, gwr_engine, self.dataset, spec, kinds) for spec in specs]
        logger.info(
            f"Running batch of {len(specs)} specifications x {len(kinds)} kinds"
            + (" + GWR" if include_gwr else "")
        )

        with performance_context("Specification batch", level="info"):
            outcomes = parallel_map(
                _run_specification, tasks,
                max_workers=self.config.parallel.max_workers,
                executor=self.config.parallel.executor,
                progress=True
            )

        batch = BatchResult()
        for spec, outcome in zip(specs, outcomes):
            batch.results.extend(outcome['results'])
            batch.failures.extend(outcome['failures'])
            if outcome['gwr'] is not None:
                batch.gwr[spec.label] = outcome['gwr']

        logger.info(f"Batch finished: {len(batch.results)} models fitted, {len(batch.failures)} failures")
        return batch
