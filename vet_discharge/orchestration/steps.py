"""
Step Vocabulary - Names, Statuses and Results

Every other part of the orchestration engine speaks in these terms: the
closed set of discharge workflow steps, the fixed order and dependency graph
between them, and the StepResult each step ends a run with.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class StepName(str, Enum):
    """The six named units of work in the discharge workflow."""

    INGEST = "ingest"
    EXTRACT_ENTITIES = "extractEntities"
    GENERATE_SUMMARY = "generateSummary"
    PREPARE_EMAIL = "prepareEmail"
    SCHEDULE_EMAIL = "scheduleEmail"
    SCHEDULE_CALL = "scheduleCall"


class StepStatus(str, Enum):
    """
    Terminal state of a step after a run.

    COMPLETED: The handler ran successfully, or the request already supplied
        the data the step would have produced (seed step).
    SKIPPED: The step was disabled, blocked by a failed dependency, or
        cancelled by stopOnError.
    FAILED: The handler reported or raised an error.
    """

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


# Fixed total order, used by the sequential strategy and for batch ordering.
STEP_ORDER: Tuple[StepName, ...] = (
    StepName.INGEST,
    StepName.EXTRACT_ENTITIES,
    StepName.GENERATE_SUMMARY,
    StepName.PREPARE_EMAIL,
    StepName.SCHEDULE_EMAIL,
    StepName.SCHEDULE_CALL,
)

# Canonical dependency DAG. scheduleCall hangs off generateSummary and is
# independent of the email branch.
STEP_DEPENDENCIES: Dict[StepName, Tuple[StepName, ...]] = {
    StepName.INGEST: (),
    StepName.EXTRACT_ENTITIES: (StepName.INGEST,),
    StepName.GENERATE_SUMMARY: (StepName.INGEST, StepName.EXTRACT_ENTITIES),
    StepName.PREPARE_EMAIL: (StepName.GENERATE_SUMMARY,),
    StepName.SCHEDULE_EMAIL: (StepName.PREPARE_EMAIL,),
    StepName.SCHEDULE_CALL: (StepName.GENERATE_SUMMARY,),
}


class StepResult(BaseModel):
    """
    Outcome of one step. Exactly one exists per StepName once a run ends.

    Attributes:
        step: The step this result belongs to.
        status: Terminal StepStatus.
        duration: Wall-clock milliseconds spent in the handler (0 when the
            handler never ran).
        data: Opaque payload produced by the step, read by later steps.
        error: Failure or skip reason.
    """

    model_config = ConfigDict(frozen=True)

    step: StepName
    status: StepStatus
    duration: int = 0
    data: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def completed(cls, step: StepName, started_at: Optional[float] = None, data: Any = None) -> "StepResult":
        return cls(step=step, status=StepStatus.COMPLETED, duration=elapsed_ms(started_at), data=data)

    @classmethod
    def failed(cls, step: StepName, error: str, started_at: Optional[float] = None) -> "StepResult":
        return cls(step=step, status=StepStatus.FAILED, duration=elapsed_ms(started_at), error=error)

    @classmethod
    def skipped(cls, step: StepName, error: Optional[str] = None) -> "StepResult":
        return cls(step=step, status=StepStatus.SKIPPED, duration=0, error=error)


def now() -> float:
    """Monotonic timestamp used for every duration in the engine."""
    return time.perf_counter()


def elapsed_ms(started_at: Optional[float]) -> int:
    if started_at is None:
        return 0
    return max(0, int((now() - started_at) * 1000))


def describe_error(error: BaseException) -> str:
    """The error's message, or its type name when the message is empty."""
    message = str(error)
    return message if message else error.__class__.__name__
