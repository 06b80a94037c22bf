"""
Orchestrator - Discharge Workflow Execution

The DischargeOrchestrator owns one run of the discharge workflow DAG:

    ingest -> extractEntities -> generateSummary -> {prepareEmail -> scheduleEmail, scheduleCall}

It knows nothing about what the steps do. Each step is looked up in the
injected HandlerRegistry, so the same engine runs the production handlers,
a cron job's handler set, or fakes in tests.
-----------------------------------------------

A run goes through four phases:
1. Plan: the request is validated and resolved into an ExecutionPlan.
2. Seed: data the request already carries (an existing case, a pre-rendered
   email) completes the matching steps without running their handlers.
3. Execute: either strictly in STEP_ORDER (sequential) or batch by batch,
   where every step whose dependencies are completed runs concurrently with
   its siblings (parallel, the default).
4. Aggregate: the results map is folded into an OrchestrationResult.

Every outcome, whether seeded, executed, skipped or cancelled, goes through
_record(), which is the only place plan state changes. orchestrate() is
total: it always returns a result and never raises for an Exception.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from ..schemas.orchestration import OrchestrationRequest
from .handlers import HandlerRegistry, StepContext, seed_steps
from .plan import ExecutionPlan
from .results import OrchestrationResult, ResultAggregator
from .steps import (
    STEP_ORDER,
    StepName,
    StepResult,
    StepStatus,
    describe_error,
    now,
)

logger = logging.getLogger(__name__)

DEPENDENCY_FAILED = "Dependency failed"
CANCELLED = "Cancelled due to previous step failure"


class DischargeOrchestrator:
    def __init__(
        self,
        handlers: HandlerRegistry,
        case_service: Optional[Any] = None,
        aggregator: Optional[ResultAggregator] = None,
    ):
        self.handlers = handlers
        self.case_service = case_service
        self.aggregator = aggregator or ResultAggregator()

    async def orchestrate(
        self,
        request: Union[OrchestrationRequest, Mapping[str, Any]],
        actor: Optional[Any] = None,
    ) -> OrchestrationResult:
        """
        Runs one discharge workflow to completion.

        Args:
            request: A validated OrchestrationRequest, or its wire-format dict.
            actor: The authenticated caller, handed to every step.

        Returns:
            The aggregated result. Failures are reported in it, never raised.
        """
        started_at = now()
        run = _Run()

        try:
            if not isinstance(request, OrchestrationRequest):
                request = OrchestrationRequest.model_validate(request)

            run.plan = ExecutionPlan(request)
            logger.info(
                f"Orchestrating discharge workflow: "
                f"steps={[s.value for s in run.plan.get_enabled_steps()]}, "
                f"parallel={request.options.parallel}, stop_on_error={request.options.stop_on_error}"
            )

            # 1. Seed
            for seed in seed_steps(request):
                self._record(run, seed.to_result())

            # 2. Execute
            if request.options.parallel:
                await self._run_parallel(run, request, actor)
            else:
                await self._run_sequential(run, request, actor)

            # 3. Aggregate
            self._fill_missing(run)
            result = self.aggregator.build_result(run.results, started_at)
        except Exception as e:
            logger.exception("Discharge orchestration failed")
            self._fill_missing(run)
            return self.aggregator.build_error_result(run.results, started_at, describe_error(e))

        logger.info(
            f"Discharge workflow finished in {result.metadata.total_processing_time}ms: "
            f"completed={len(result.completed_steps)}, skipped={len(result.skipped_steps)}, "
            f"failed={len(result.failed_steps)}"
        )
        return result

    # ==========================================================================
    # Strategies
    # ==========================================================================

    async def _run_sequential(self, run: "_Run", request: OrchestrationRequest, actor: Optional[Any]):
        plan = run.plan
        for step in STEP_ORDER:
            if not plan.should_execute_step(step):
                if step in run.results:
                    continue
                config = plan.get_step_config(step)
                if not config.enabled:
                    self._record(run, StepResult.skipped(step))
                elif any(dep in plan.get_failed_steps() for dep in config.dependencies):
                    self._record(run, StepResult.skipped(step, DEPENDENCY_FAILED))
                continue

            result = await self._execute_step(run, step, request, actor)
            self._record(run, result)

            if result.status == StepStatus.FAILED:
                self._propagate_failure(run, step)
                if request.options.stop_on_error:
                    logger.info(f"Stopping after failed step '{step.value}' (stopOnError)")
                    break

    async def _run_parallel(self, run: "_Run", request: OrchestrationRequest, actor: Optional[Any]):
        plan = run.plan
        while plan.has_remaining_steps():
            batch = plan.get_next_batch()
            if not batch:
                break

            logger.debug(f"Dispatching batch: {[s.value for s in batch]}")
            outcomes = await asyncio.gather(
                *(self._execute_step(run, step, request, actor) for step in batch),
                return_exceptions=True,
            )

            failed: List[StepName] = []
            for step, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    outcome = StepResult.failed(step, describe_error(outcome))
                self._record(run, outcome)
                if outcome.status == StepStatus.FAILED:
                    failed.append(step)

            for step in failed:
                self._propagate_failure(run, step)

            if failed and request.options.stop_on_error:
                for step in batch:
                    if step not in run.results:
                        self._record(run, StepResult.skipped(step, CANCELLED))
                logger.info(f"Stopping after failed batch {[s.value for s in failed]} (stopOnError)")
                break

    # ==========================================================================
    # Dispatch
    # ==========================================================================

    async def _execute_step(
        self, run: "_Run", step: StepName, request: OrchestrationRequest, actor: Optional[Any]
    ) -> StepResult:
        handler = self.handlers.get(step)
        if handler is None:
            return StepResult.failed(step, f"No handler registered for step '{step.value}'")

        context = StepContext(
            request=request,
            plan=run.plan,
            results=MappingProxyType(dict(run.results)),
            actor=actor,
            case_service=self.case_service,
        )
        started_at = now()
        try:
            result = await handler.execute(context, started_at)
        except Exception as e:
            logger.error(f"Step '{step.value}' raised: {describe_error(e)}")
            return StepResult.failed(step, describe_error(e), started_at=started_at)

        if not isinstance(result, StepResult):
            return StepResult.failed(
                step, f"Handler for step '{step.value}' returned no result", started_at=started_at
            )
        if result.step != step:
            result = result.model_copy(update={"step": step})
        return result

    # ==========================================================================
    # State
    # ==========================================================================

    def _record(self, run: "_Run", result: StepResult) -> None:
        run.results[result.step] = result
        if run.plan is None:
            return
        if result.status == StepStatus.COMPLETED:
            run.plan.mark_completed(result.step)
        elif result.status == StepStatus.FAILED:
            logger.warning(f"Step '{result.step.value}' failed: {result.error}")
            run.plan.mark_failed(result.step)
        else:
            run.plan.mark_skipped(result.step)

    def _propagate_failure(self, run: "_Run", failed_step: StepName) -> None:
        """
        Skips every enabled, unresolved step downstream of failed_step,
        transitively. Each skip names failed_step as the cause.
        """
        reason = f"Dependency '{failed_step.value}' failed"
        blocked = [failed_step]
        while blocked:
            cause = blocked.pop()
            for step in STEP_ORDER:
                config = run.plan.get_step_config(step)
                if not config.enabled or step in run.results:
                    continue
                if cause in config.dependencies:
                    logger.info(f"Skipping '{step.value}': {reason}")
                    self._record(run, StepResult.skipped(step, reason))
                    blocked.append(step)

    def _fill_missing(self, run: "_Run") -> None:
        for step in STEP_ORDER:
            if step not in run.results:
                self._record(run, StepResult.skipped(step))


class _Run:
    """Mutable state of one orchestrate() call."""

    def __init__(self):
        self.plan: Optional[ExecutionPlan] = None
        self.results: Dict[StepName, StepResult] = {}
