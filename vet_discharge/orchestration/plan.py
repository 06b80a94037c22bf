"""
Execution Plan - Per-Run Step Configuration and Readiness

The ExecutionPlan resolves an OrchestrationRequest into one StepConfig per
step (enabled flag, declared dependencies, options) and tracks which steps
have been resolved during the run. It answers two questions for the
Orchestrator: "is step X ready to run?" and "what can run right now?".

A plan is created fresh for every orchestrate() call and is owned by that
single run. It is mutated only between batches, never while handlers are
in flight.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from pydantic import BaseModel

from ..schemas.orchestration import OrchestrationRequest
from .steps import STEP_DEPENDENCIES, STEP_ORDER, StepName


@dataclass(frozen=True)
class StepConfig:
    """
    Resolved configuration for a single step.

    Attributes:
        name: The step.
        enabled: Whether the request asked for this step.
        dependencies: Steps that must be completed before this one may run.
        options: The step's options model from the request, if one was given.
    """
    name: StepName
    enabled: bool
    dependencies: Tuple[StepName, ...] = ()
    options: Optional[Any] = None


def _is_enabled(setting: Any) -> bool:
    return setting is not None and setting is not False


def _as_step(step: Union[StepName, str]) -> Optional[StepName]:
    try:
        return StepName(step)
    except ValueError:
        return None


class ExecutionPlan:
    def __init__(self, request: OrchestrationRequest):
        self._configs: Dict[StepName, StepConfig] = {
            step: self._build_config(step, request) for step in STEP_ORDER
        }
        self._completed: Set[StepName] = set()
        self._failed: Set[StepName] = set()
        self._skipped: Set[StepName] = set()

    @staticmethod
    def _build_config(step: StepName, request: OrchestrationRequest) -> StepConfig:
        setting = request.steps.get(step.value)
        enabled = _is_enabled(setting)
        options = setting if isinstance(setting, BaseModel) else None

        dependencies = STEP_DEPENDENCIES[step]
        if step == StepName.GENERATE_SUMMARY and not _is_enabled(
            request.steps.get(StepName.EXTRACT_ENTITIES.value)
        ):
            # Entities are already known on the case; only ingestion is required.
            dependencies = tuple(d for d in dependencies if d != StepName.EXTRACT_ENTITIES)

        return StepConfig(name=step, enabled=enabled, dependencies=dependencies, options=options)

    # ==========================================================================
    # Configuration
    # ==========================================================================

    def get_step_config(self, step: Union[StepName, str]) -> Optional[StepConfig]:
        key = _as_step(step)
        return self._configs.get(key) if key else None

    def get_enabled_steps(self) -> List[StepName]:
        return [step for step in STEP_ORDER if self._configs[step].enabled]

    # ==========================================================================
    # Readiness
    # ==========================================================================

    def is_resolved(self, step: StepName) -> bool:
        """True once the step has a terminal outcome (completed, failed or skipped)."""
        return step in self._completed or step in self._failed or step in self._skipped

    def should_execute_step(self, step: Union[StepName, str]) -> bool:
        config = self.get_step_config(step)
        if config is None or not config.enabled:
            return False
        if self.is_resolved(config.name):
            return False
        return all(dep in self._completed for dep in config.dependencies)

    def has_remaining_steps(self) -> bool:
        return any(not self.is_resolved(step) for step in self.get_enabled_steps())

    def get_next_batch(self) -> List[StepName]:
        """
        All unresolved enabled steps whose dependencies are completed, in the
        fixed step order. Steps in one batch never depend on each other.
        """
        return [step for step in STEP_ORDER if self.should_execute_step(step)]

    def can_run_in_parallel(self, steps: Iterable[Union[StepName, str]]) -> bool:
        """True if every step is known and none depends on another in the group."""
        configs = [self.get_step_config(step) for step in steps]
        if any(config is None for config in configs):
            return False
        names = {config.name for config in configs}
        return not any(set(config.dependencies) & names for config in configs)

    # ==========================================================================
    # State
    # ==========================================================================

    def mark_completed(self, step: StepName) -> None:
        self._resolve(step, self._completed)

    def mark_failed(self, step: StepName) -> None:
        self._resolve(step, self._failed)

    def mark_skipped(self, step: StepName) -> None:
        self._resolve(step, self._skipped)

    def _resolve(self, step: StepName, target: Set[StepName]) -> None:
        for bucket in (self._completed, self._failed, self._skipped):
            if bucket is not target:
                bucket.discard(step)
        target.add(step)

    def get_completed_steps(self) -> List[StepName]:
        return [step for step in STEP_ORDER if step in self._completed]

    def get_failed_steps(self) -> List[StepName]:
        return [step for step in STEP_ORDER if step in self._failed]

    def get_skipped_steps(self) -> List[StepName]:
        return [step for step in STEP_ORDER if step in self._skipped]
