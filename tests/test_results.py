from vet_discharge.orchestration.results import ResultAggregator
from vet_discharge.orchestration.steps import STEP_ORDER, StepName, StepResult, StepStatus, now


def all_results(**overrides):
    results = {step: StepResult(step=step, status=StepStatus.COMPLETED, duration=5) for step in STEP_ORDER}
    for name, result in overrides.items():
        results[StepName(name)] = result
    return results


class TestBuildResult:
    def test_buckets_follow_step_order(self):
        results = all_results(
            prepareEmail=StepResult.failed(StepName.PREPARE_EMAIL, "no summary"),
            scheduleEmail=StepResult.skipped(StepName.SCHEDULE_EMAIL, "Dependency 'prepareEmail' failed"),
        )
        result = ResultAggregator().build_result(dict(reversed(list(results.items()))), now())

        assert result.completed_steps == [
            StepName.INGEST,
            StepName.EXTRACT_ENTITIES,
            StepName.GENERATE_SUMMARY,
            StepName.SCHEDULE_CALL,
        ]
        assert result.failed_steps == [StepName.PREPARE_EMAIL]
        assert result.skipped_steps == [StepName.SCHEDULE_EMAIL]

    def test_completed_zero_duration_reports_one_ms(self):
        results = all_results(
            ingest=StepResult(step=StepName.INGEST, status=StepStatus.COMPLETED, duration=0),
            scheduleCall=StepResult.skipped(StepName.SCHEDULE_CALL),
        )
        timings = ResultAggregator().build_result(results, now()).metadata.step_timings

        assert timings["ingest"] == 1
        assert timings["extractEntities"] == 5
        assert timings["scheduleCall"] == 0

    def test_total_processing_time_is_at_least_one(self):
        result = ResultAggregator().build_result(all_results(), now())
        assert result.metadata.total_processing_time >= 1

    def test_per_step_data_holds_completed_data_only(self):
        results = all_results(
            ingest=StepResult.completed(StepName.INGEST, data={"caseId": "c-1"}),
            generateSummary=StepResult.failed(StepName.GENERATE_SUMMARY, "LLM down"),
        )
        result = ResultAggregator().build_result(results, now())

        assert result.per_step_data == {"ingest": {"caseId": "c-1"}}

    def test_failed_step_without_message_gets_default_error(self):
        results = all_results(
            scheduleCall=StepResult(step=StepName.SCHEDULE_CALL, status=StepStatus.FAILED),
        )
        result = ResultAggregator().build_result(results, now())

        assert [(e.step, e.error) for e in result.metadata.errors] == [("scheduleCall", "Unknown error")]
        assert result.success is False


class TestBuildErrorResult:
    def test_appends_orchestration_error_and_keeps_partial_results(self):
        results = {StepName.INGEST: StepResult.completed(StepName.INGEST, data={"caseId": "c-1"})}
        result = ResultAggregator().build_error_result(results, now(), "database unreachable")

        assert result.completed_steps == [StepName.INGEST]
        assert result.metadata.errors[-1].step == "orchestration"
        assert result.error_for("orchestration") == "database unreachable"
        assert result.success is False


class TestWireFormat:
    def test_serializes_with_camel_case_keys(self):
        results = all_results(ingest=StepResult.completed(StepName.INGEST, data={"caseId": "c-1"}))
        payload = ResultAggregator().build_result(results, now()).model_dump(by_alias=True, mode="json")

        assert payload["success"] is True
        assert payload["completedSteps"][0] == "ingest"
        assert payload["perStepData"]["ingest"] == {"caseId": "c-1"}
        assert set(payload["metadata"]) == {"totalProcessingTime", "stepTimings", "errors"}
