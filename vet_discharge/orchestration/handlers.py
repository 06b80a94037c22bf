"""
Step Handlers - The Registry Contract

The Orchestrator never knows what a step actually does. It looks the step up
in a HandlerRegistry (a plain mapping from StepName to StepHandler) and
awaits it with a read-only StepContext. Handlers report their outcome as a
StepResult; anything that escapes a handler is turned into a failed result
by the Orchestrator.

Seed steps are the other way a step can complete: the request already
carries the data the step would have produced (an existing case id, a
pre-rendered email), so the Orchestrator records a completed result without
running anything.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from ..schemas.orchestration import OrchestrationRequest
from ..services.exceptions import DischargeError
from .plan import ExecutionPlan
from .steps import StepName, StepResult, StepStatus

if TYPE_CHECKING:
    from ..domain.models import Actor
    from ..services.case_service import CaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepContext:
    """
    Everything a handler may read during a run.

    Attributes:
        request: The validated request.
        plan: The run's ExecutionPlan (handlers must not mutate it).
        results: Read-only view of the results recorded so far.
        actor: The authenticated caller the run acts on behalf of.
        case_service: Case access shared by all handlers.
    """
    request: OrchestrationRequest
    plan: ExecutionPlan
    results: Mapping[StepName, StepResult]
    actor: Optional["Actor"] = None
    case_service: Optional["CaseService"] = None

    def options_for(self, step: StepName) -> Optional[Any]:
        """The step's options model, or None when it was enabled with a bare flag."""
        config = self.plan.get_step_config(step)
        return config.options if config else None

    def data_of(self, step: StepName) -> Optional[Any]:
        """The data of a completed step, or None."""
        result = self.results.get(step)
        if result is None or result.status != StepStatus.COMPLETED:
            return None
        return result.data

    @property
    def dry_run(self) -> bool:
        return self.request.options.dry_run


class StepHandler(ABC):
    """Executes one step of the discharge workflow."""

    @abstractmethod
    async def execute(self, context: StepContext, started_at: float) -> StepResult:
        """
        Runs the step.

        Args:
            context: Read-only view of the run.
            started_at: Monotonic timestamp taken just before dispatch; used to
                compute the result's duration.
        """
        pass


class BaseStepHandler(StepHandler):
    """
    Convenience base for handlers whose work is a single coroutine.

    Subclasses set `step` and implement run(), returning the step's data.
    Expected business failures (DischargeError) become failed results here;
    anything else propagates to the Orchestrator.
    """

    step: StepName

    async def execute(self, context: StepContext, started_at: float) -> StepResult:
        try:
            data = await self.run(context)
        except DischargeError as e:
            logger.warning(f"Step '{self.step.value}' failed: {e}")
            return StepResult.failed(self.step, str(e), started_at=started_at)
        return StepResult.completed(self.step, started_at=started_at, data=data)

    @abstractmethod
    async def run(self, context: StepContext) -> Any:
        pass


HandlerRegistry = Mapping[StepName, StepHandler]


@dataclass(frozen=True)
class SeedStep:
    """A step the request already satisfies, with the data it stands in for."""

    step: StepName
    data: Any = None

    def to_result(self) -> StepResult:
        return StepResult(step=self.step, status=StepStatus.COMPLETED, duration=0, data=self.data)


def seed_steps(request: OrchestrationRequest) -> List[SeedStep]:
    """
    Derives the seed steps for a request.

    An existing case completes ingest. Pre-rendered email content completes
    both prepareEmail and generateSummary, whether or not those steps were
    enabled.
    """
    existing = request.existing_case
    if existing is None:
        return []

    seeds = [SeedStep(StepName.INGEST, {"caseId": existing.case_id})]
    if existing.email_content is not None:
        seeds.append(
            SeedStep(
                StepName.PREPARE_EMAIL,
                existing.email_content.model_dump(by_alias=True),
            )
        )
        summary_data: Optional[dict] = None
        if existing.summary_id is not None:
            summary_data = {"summaryId": str(existing.summary_id)}
        seeds.append(SeedStep(StepName.GENERATE_SUMMARY, summary_data))
    return seeds
