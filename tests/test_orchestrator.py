from types import MappingProxyType

import pytest

from vet_discharge.orchestration.handlers import BaseStepHandler, StepContext
from vet_discharge.orchestration.orchestrator import DischargeOrchestrator
from vet_discharge.orchestration.steps import STEP_ORDER, StepName, StepResult, StepStatus
from vet_discharge.services.exceptions import CaseNotFoundError

from conftest import ALL_STEPS, FakeHandler, existing_request, raw_request

EMAIL_CONTENT = {"subject": "Discharge Instructions for Bella", "html": "<p>Rest</p>", "text": "Rest"}


def buckets(result):
    return {
        StepStatus.COMPLETED: result.completed_steps,
        StepStatus.SKIPPED: result.skipped_steps,
        StepStatus.FAILED: result.failed_steps,
    }


def assert_total_coverage(result):
    seen = result.completed_steps + result.skipped_steps + result.failed_steps
    assert sorted(seen) == sorted(STEP_ORDER)
    assert len(seen) == len(set(seen))


class TestScenarios:
    @pytest.mark.asyncio
    async def test_all_steps_succeed_in_parallel(self, make_handlers):
        result = await DischargeOrchestrator(make_handlers()).orchestrate(raw_request())

        assert result.completed_steps == list(STEP_ORDER)
        assert result.failed_steps == []
        assert result.skipped_steps == []
        assert set(result.metadata.step_timings) == {step.value for step in STEP_ORDER}
        assert result.success is True

    @pytest.mark.asyncio
    async def test_mid_chain_failure_skips_downstream(self, make_handlers):
        handlers = make_handlers(
            generateSummary=FakeHandler(StepName.GENERATE_SUMMARY, raises=RuntimeError("LLM down"))
        )

        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert {StepName.INGEST, StepName.EXTRACT_ENTITIES} <= set(result.completed_steps)
        assert result.failed_steps == [StepName.GENERATE_SUMMARY]
        assert {StepName.PREPARE_EMAIL, StepName.SCHEDULE_EMAIL, StepName.SCHEDULE_CALL} <= set(
            result.skipped_steps
        )
        assert result.error_for("generateSummary") == "LLM down"
        assert result.success is False
        for step in (StepName.PREPARE_EMAIL, StepName.SCHEDULE_EMAIL, StepName.SCHEDULE_CALL):
            assert handlers[step].calls == []

    @pytest.mark.asyncio
    async def test_skips_name_the_root_failed_step(self, make_handlers):
        handlers = make_handlers(
            generateSummary=FakeHandler(StepName.GENERATE_SUMMARY, error="boom")
        )
        orchestrator = DischargeOrchestrator(handlers)
        captured = {}

        original_record = orchestrator._record

        def capture(run, result):
            captured[result.step] = result
            original_record(run, result)

        orchestrator._record = capture
        await orchestrator.orchestrate(raw_request())

        for step in (StepName.PREPARE_EMAIL, StepName.SCHEDULE_EMAIL, StepName.SCHEDULE_CALL):
            assert captured[step].status == StepStatus.SKIPPED
            assert captured[step].error == "Dependency 'generateSummary' failed"


class TestTotalCoverage:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("parallel", [True, False])
    @pytest.mark.parametrize(
        "steps",
        [
            ALL_STEPS,
            {},
            {"ingest": True},
            {"scheduleEmail": True},
            {"ingest": True, "generateSummary": True, "scheduleCall": True},
        ],
    )
    async def test_every_step_has_exactly_one_status(self, make_handlers, parallel, steps):
        result = await DischargeOrchestrator(make_handlers()).orchestrate(
            raw_request(steps, parallel=parallel)
        )
        assert_total_coverage(result)

    @pytest.mark.asyncio
    async def test_disabled_steps_are_skipped_without_running(self, make_handlers):
        handlers = make_handlers()
        result = await DischargeOrchestrator(handlers).orchestrate(
            raw_request({"ingest": True, "generateSummary": True})
        )

        assert result.completed_steps == [StepName.INGEST, StepName.GENERATE_SUMMARY]
        assert result.skipped_steps == [
            StepName.EXTRACT_ENTITIES,
            StepName.PREPARE_EMAIL,
            StepName.SCHEDULE_EMAIL,
            StepName.SCHEDULE_CALL,
        ]
        assert result.metadata.errors == []
        assert handlers[StepName.EXTRACT_ENTITIES].calls == []

    @pytest.mark.asyncio
    async def test_step_with_disabled_dependency_is_skipped(self, make_handlers):
        handlers = make_handlers()
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request({"scheduleEmail": True}))

        assert result.completed_steps == []
        assert StepName.SCHEDULE_EMAIL in result.skipped_steps
        assert handlers[StepName.SCHEDULE_EMAIL].calls == []


class TestSeedSteps:
    @pytest.mark.asyncio
    async def test_existing_case_completes_ingest_without_handler(self, make_handlers):
        handlers = make_handlers()
        result = await DischargeOrchestrator(handlers).orchestrate(existing_request("case-42"))

        assert handlers[StepName.INGEST].calls == []
        assert StepName.INGEST in result.completed_steps
        assert result.per_step_data["ingest"] == {"caseId": "case-42"}
        assert result.metadata.step_timings["ingest"] == 1

    @pytest.mark.asyncio
    async def test_seed_applies_even_when_ingest_not_enabled(self, make_handlers):
        result = await DischargeOrchestrator(make_handlers()).orchestrate(
            existing_request(steps={"extractEntities": True})
        )
        assert result.completed_steps == [StepName.INGEST, StepName.EXTRACT_ENTITIES]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("parallel", [True, False])
    async def test_email_content_completes_summary_and_email(self, make_handlers, parallel):
        handlers = make_handlers()
        request = existing_request(emailContent=EMAIL_CONTENT)
        request["options"] = {"parallel": parallel}

        result = await DischargeOrchestrator(handlers).orchestrate(request)

        assert handlers[StepName.GENERATE_SUMMARY].calls == []
        assert handlers[StepName.PREPARE_EMAIL].calls == []
        assert result.per_step_data["prepareEmail"] == EMAIL_CONTENT
        assert "generateSummary" not in result.per_step_data
        assert result.completed_steps == list(STEP_ORDER)

        context = handlers[StepName.SCHEDULE_EMAIL].calls[0]
        assert context.data_of(StepName.PREPARE_EMAIL) == EMAIL_CONTENT

    @pytest.mark.asyncio
    async def test_summary_id_is_carried_on_seeded_summary(self, make_handlers):
        summary_id = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
        result = await DischargeOrchestrator(make_handlers()).orchestrate(
            existing_request(emailContent=EMAIL_CONTENT, summaryId=summary_id)
        )
        assert result.per_step_data["generateSummary"] == {"summaryId": summary_id}


class TestParallelStrategy:
    @pytest.mark.asyncio
    async def test_call_branch_is_independent_of_email_branch(self, make_handlers):
        handlers = make_handlers(
            prepareEmail=FakeHandler(StepName.PREPARE_EMAIL, error="Discharge summary not found")
        )
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert StepName.SCHEDULE_CALL in result.completed_steps
        assert result.failed_steps == [StepName.PREPARE_EMAIL]
        assert result.skipped_steps == [StepName.SCHEDULE_EMAIL]

    @pytest.mark.asyncio
    async def test_batch_members_run_concurrently(self, make_handlers, events):
        handlers = make_handlers(
            prepareEmail=FakeHandler(StepName.PREPARE_EMAIL, delay=0.02, events=events),
            scheduleCall=FakeHandler(StepName.SCHEDULE_CALL, delay=0.02, events=events),
        )
        await DischargeOrchestrator(handlers).orchestrate(raw_request())

        batch_events = [e for e in events if e[1] in (StepName.PREPARE_EMAIL, StepName.SCHEDULE_CALL)]
        assert [kind for kind, _ in batch_events[:2]] == ["start", "start"]

    @pytest.mark.asyncio
    async def test_sibling_failure_does_not_interrupt_batch(self, make_handlers):
        handlers = make_handlers(
            prepareEmail=FakeHandler(StepName.PREPARE_EMAIL, raises=ValueError("bad template")),
            scheduleCall=FakeHandler(StepName.SCHEDULE_CALL, delay=0.02),
        )
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request(stopOnError=True))

        assert StepName.SCHEDULE_CALL in result.completed_steps
        assert result.failed_steps == [StepName.PREPARE_EMAIL]
        assert result.skipped_steps == [StepName.SCHEDULE_EMAIL]

    @pytest.mark.asyncio
    async def test_stop_on_error_stops_dispatching_later_batches(self, make_handlers):
        handlers = make_handlers(
            extractEntities=FakeHandler(StepName.EXTRACT_ENTITIES, error="extraction failed")
        )
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request(stopOnError=True))

        assert result.completed_steps == [StepName.INGEST]
        assert result.failed_steps == [StepName.EXTRACT_ENTITIES]
        assert_total_coverage(result)
        for step in STEP_ORDER[2:]:
            assert handlers[step].calls == []

    @pytest.mark.asyncio
    async def test_later_batches_see_earlier_results(self, make_handlers):
        handlers = make_handlers(ingest=FakeHandler(StepName.INGEST, data={"caseId": "c-7"}))
        await DischargeOrchestrator(handlers).orchestrate(raw_request())

        context = handlers[StepName.EXTRACT_ENTITIES].calls[0]
        assert context.data_of(StepName.INGEST) == {"caseId": "c-7"}
        assert context.data_of(StepName.GENERATE_SUMMARY) is None

    @pytest.mark.asyncio
    async def test_result_is_filed_under_the_dispatched_step(self, make_handlers):
        class Misreporting(FakeHandler):
            async def execute(self, context, started_at):
                return StepResult.failed(StepName.SCHEDULE_CALL, "wrong slot")

        handlers = make_handlers(prepareEmail=Misreporting(StepName.PREPARE_EMAIL))
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert result.failed_steps == [StepName.PREPARE_EMAIL]
        assert StepName.SCHEDULE_CALL in result.completed_steps


class TestSequentialStrategy:
    @pytest.mark.asyncio
    async def test_runs_in_step_order(self, make_handlers, events):
        await DischargeOrchestrator(make_handlers()).orchestrate(raw_request(parallel=False))

        started = [step for kind, step in events if kind == "start"]
        assert started == list(STEP_ORDER)

    @pytest.mark.asyncio
    async def test_continues_other_branch_after_failure(self, make_handlers):
        handlers = make_handlers(
            prepareEmail=FakeHandler(StepName.PREPARE_EMAIL, error="no summary")
        )
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request(parallel=False))

        assert result.failed_steps == [StepName.PREPARE_EMAIL]
        assert result.skipped_steps == [StepName.SCHEDULE_EMAIL]
        assert StepName.SCHEDULE_CALL in result.completed_steps

    @pytest.mark.asyncio
    async def test_stop_on_error_breaks_immediately(self, make_handlers):
        handlers = make_handlers(
            prepareEmail=FakeHandler(StepName.PREPARE_EMAIL, error="no summary")
        )
        result = await DischargeOrchestrator(handlers).orchestrate(
            raw_request(parallel=False, stopOnError=True)
        )

        assert result.failed_steps == [StepName.PREPARE_EMAIL]
        assert StepName.SCHEDULE_CALL in result.skipped_steps
        assert handlers[StepName.SCHEDULE_CALL].calls == []
        assert_total_coverage(result)


class TestHandlerFailures:
    @pytest.mark.asyncio
    async def test_missing_handler_fails_step(self, make_handlers):
        handlers = make_handlers()
        del handlers[StepName.SCHEDULE_CALL]

        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert result.failed_steps == [StepName.SCHEDULE_CALL]
        assert result.error_for("scheduleCall") == "No handler registered for step 'scheduleCall'"

    @pytest.mark.asyncio
    async def test_exception_without_message_reports_type_name(self, make_handlers):
        handlers = make_handlers(ingest=FakeHandler(StepName.INGEST, raises=KeyError()))
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert result.error_for("ingest") == "KeyError"

    @pytest.mark.asyncio
    async def test_handler_returning_nothing_fails_step(self, make_handlers):
        class Silent(FakeHandler):
            async def execute(self, context, started_at):
                return None

        handlers = make_handlers(ingest=Silent(StepName.INGEST))
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert result.error_for("ingest") == "Handler for step 'ingest' returned no result"

    @pytest.mark.asyncio
    async def test_context_results_are_read_only(self, make_handlers):
        class Tampering(FakeHandler):
            async def execute(self, context, started_at):
                assert isinstance(context.results, MappingProxyType)
                context.results[StepName.INGEST] = StepResult.skipped(StepName.INGEST)
                return StepResult.completed(self.step)

        handlers = make_handlers(extractEntities=Tampering(StepName.EXTRACT_ENTITIES))
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert StepName.INGEST in result.completed_steps
        assert result.failed_steps == [StepName.EXTRACT_ENTITIES]
        assert "item assignment" in result.error_for("extractEntities")

    @pytest.mark.asyncio
    async def test_base_handler_reports_business_errors_as_failed(self, make_handlers):
        class LookupStep(BaseStepHandler):
            step = StepName.EXTRACT_ENTITIES

            async def run(self, context: StepContext):
                raise CaseNotFoundError("case-404")

        handlers = make_handlers(extractEntities=LookupStep())
        result = await DischargeOrchestrator(handlers).orchestrate(raw_request())

        assert result.error_for("extractEntities") == "Case not found"

    @pytest.mark.asyncio
    async def test_base_handler_returns_run_data(self, make_handlers):
        class EchoStep(BaseStepHandler):
            step = StepName.INGEST

            async def run(self, context: StepContext):
                return {"caseId": "echo"}

        result = await DischargeOrchestrator(make_handlers(ingest=EchoStep())).orchestrate(raw_request())
        assert result.per_step_data["ingest"] == {"caseId": "echo"}


class TestTotality:
    @pytest.mark.asyncio
    async def test_invalid_request_returns_error_result(self, make_handlers):
        result = await DischargeOrchestrator(make_handlers()).orchestrate({"input": {}})

        assert result.success is False
        assert result.skipped_steps == list(STEP_ORDER)
        assert result.metadata.errors[-1].step == "orchestration"
        assert result.metadata.total_processing_time >= 1

    @pytest.mark.asyncio
    async def test_failure_outside_dispatch_keeps_partial_results(self, make_handlers):
        orchestrator = DischargeOrchestrator(make_handlers())

        async def broken(run, request, actor):
            orchestrator._record(run, StepResult.completed(StepName.INGEST, data={"caseId": "c-1"}))
            raise RuntimeError("plan corrupted")

        orchestrator._run_parallel = broken
        result = await orchestrator.orchestrate(raw_request())

        assert result.completed_steps == [StepName.INGEST]
        assert result.error_for("orchestration") == "plan corrupted"
        assert result.success is False
        assert_total_coverage(result)

    @pytest.mark.asyncio
    async def test_success_is_false_exactly_when_a_step_failed(self, make_handlers):
        ok = await DischargeOrchestrator(make_handlers()).orchestrate(raw_request())
        failed = await DischargeOrchestrator(
            make_handlers(scheduleCall=FakeHandler(StepName.SCHEDULE_CALL, error="no phone"))
        ).orchestrate(raw_request())

        assert ok.success is True
        assert failed.success is False
        assert buckets(failed)[StepStatus.FAILED] == [StepName.SCHEDULE_CALL]

    @pytest.mark.asyncio
    async def test_actor_is_handed_to_handlers(self, make_handlers, actor):
        handlers = make_handlers()
        await DischargeOrchestrator(handlers, case_service="svc").orchestrate(raw_request(), actor=actor)

        context = handlers[StepName.INGEST].calls[0]
        assert context.actor is actor
        assert context.case_service == "svc"
