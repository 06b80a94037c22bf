"""
Result Aggregator - Folding a Run into One Report

The OrchestrationResult is the only thing callers (HTTP route, cron jobs,
batch processors) ever see of a run, whichever strategy produced it.
"""

from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from .steps import STEP_ORDER, StepName, StepResult, StepStatus, elapsed_ms

ORCHESTRATION_ERROR_STEP = "orchestration"


class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepError(_ResultModel):
    step: str
    error: str


class OrchestrationMetadata(_ResultModel):
    total_processing_time: int = 1
    step_timings: Dict[str, int] = Field(default_factory=dict)
    errors: List[StepError] = Field(default_factory=list)


class OrchestrationResult(_ResultModel):
    """
    Consolidated outcome of one orchestrate() call.

    Serialize with `model_dump(by_alias=True, mode="json")` for the wire
    format (completedSteps, perStepData, metadata.stepTimings, ...).
    """

    completed_steps: List[StepName] = Field(default_factory=list)
    skipped_steps: List[StepName] = Field(default_factory=list)
    failed_steps: List[StepName] = Field(default_factory=list)
    per_step_data: Dict[str, Any] = Field(default_factory=dict)
    metadata: OrchestrationMetadata = Field(default_factory=OrchestrationMetadata)

    @computed_field
    @property
    def success(self) -> bool:
        if self.failed_steps:
            return False
        return not any(e.step == ORCHESTRATION_ERROR_STEP for e in self.metadata.errors)

    def error_for(self, step: str) -> str:
        return next((e.error for e in self.metadata.errors if e.step == step), "")


class ResultAggregator:
    """Builds OrchestrationResults from a run's results map."""

    def build_result(
        self, results: Mapping[StepName, StepResult], started_at: float
    ) -> OrchestrationResult:
        completed: List[StepName] = []
        skipped: List[StepName] = []
        failed: List[StepName] = []
        timings: Dict[str, int] = {}
        per_step_data: Dict[str, Any] = {}
        errors: List[StepError] = []

        for step in STEP_ORDER:
            result = results.get(step)
            if result is None:
                continue

            # A completed step always reports a non-zero timing.
            if result.status == StepStatus.COMPLETED and result.duration == 0:
                timings[step.value] = 1
            else:
                timings[step.value] = result.duration

            if result.status == StepStatus.COMPLETED:
                completed.append(step)
                if result.data is not None:
                    per_step_data[step.value] = result.data
            elif result.status == StepStatus.SKIPPED:
                skipped.append(step)
            else:
                failed.append(step)
                errors.append(StepError(step=step.value, error=result.error or "Unknown error"))

        return OrchestrationResult(
            completed_steps=completed,
            skipped_steps=skipped,
            failed_steps=failed,
            per_step_data=per_step_data,
            metadata=OrchestrationMetadata(
                total_processing_time=max(1, elapsed_ms(started_at)),
                step_timings=timings,
                errors=errors,
            ),
        )

    def build_error_result(
        self, results: Mapping[StepName, StepResult], started_at: float, error: str
    ) -> OrchestrationResult:
        """Like build_result, plus an orchestration-level error entry; never successful."""
        result = self.build_result(results, started_at)
        result.metadata.errors.append(StepError(step=ORCHESTRATION_ERROR_STEP, error=error))
        return result
