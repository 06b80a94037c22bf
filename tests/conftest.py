"""
Shared fixtures: fake step handlers for exercising the engine, and an
in-memory wiring of the default handlers for exercising the steps.
"""

import asyncio
from typing import Any, Dict, List, Optional, Type

import pytest

from vet_discharge.domain.models import Actor
from vet_discharge.llm.interface import LLMProvider, StructuredOutputError, T
from vet_discharge.orchestration.handlers import StepContext, StepHandler
from vet_discharge.orchestration.orchestrator import DischargeOrchestrator
from vet_discharge.orchestration.steps import STEP_ORDER, StepName, StepResult
from vet_discharge.repositories.cases import InMemoryCaseRepository
from vet_discharge.repositories.schedules import (
    InMemoryScheduledCallRepository,
    InMemoryScheduledEmailRepository,
)
from vet_discharge.repositories.summaries import InMemorySummaryRepository
from vet_discharge.schemas.entities import (
    ClinicalEntity,
    DischargeSummaryDraft,
    ExtractionConfidence,
    Medication,
    NormalizedEntities,
    OwnerEntity,
    PatientEntity,
)
from vet_discharge.services.case_service import RepositoryCaseService
from vet_discharge.services.dispatch import InMemoryJobDispatcher
from vet_discharge.services.entity_extraction import EntityExtractor
from vet_discharge.services.summary_generation import SummaryGenerator
from vet_discharge.steps import build_default_registry

ALL_STEPS = {step.value: True for step in STEP_ORDER}


# ==============================================================================
# ENGINE FAKES
# ==============================================================================


class FakeHandler(StepHandler):
    """
    Scripted handler. Completes with `data` unless told to fail or raise;
    records every context it was called with and start/end events.
    """

    def __init__(
        self,
        step: StepName,
        data: Any = None,
        error: Optional[str] = None,
        raises: Optional[BaseException] = None,
        delay: float = 0.0,
        events: Optional[List[tuple]] = None,
    ):
        self.step = step
        self.data = data if data is not None else {"from": step.value}
        self.error = error
        self.raises = raises
        self.delay = delay
        self.events = events if events is not None else []
        self.calls: List[StepContext] = []

    async def execute(self, context: StepContext, started_at: float) -> StepResult:
        self.calls.append(context)
        self.events.append(("start", self.step))
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(("end", self.step))
        if self.raises is not None:
            raise self.raises
        if self.error is not None:
            return StepResult.failed(self.step, self.error, started_at=started_at)
        return StepResult.completed(self.step, started_at=started_at, data=self.data)


@pytest.fixture
def events() -> List[tuple]:
    return []


@pytest.fixture
def make_handlers(events):
    """Builds a full registry of FakeHandlers; keyword overrides replace single steps."""

    def _make(**overrides: StepHandler) -> Dict[StepName, StepHandler]:
        handlers: Dict[StepName, StepHandler] = {
            step: FakeHandler(step, events=events) for step in STEP_ORDER
        }
        for name, handler in overrides.items():
            handlers[StepName(name)] = handler
        return handlers

    return _make


def raw_request(steps: Optional[Dict[str, Any]] = None, **options: Any) -> Dict[str, Any]:
    return {
        "input": {"rawData": {"mode": "text", "source": "manual", "text": "Bella was seen today."}},
        "steps": ALL_STEPS if steps is None else steps,
        "options": options,
    }


def existing_request(
    case_id: str = "case-1", steps: Optional[Dict[str, Any]] = None, **existing: Any
) -> Dict[str, Any]:
    return {
        "input": {"existingCase": {"caseId": case_id, **existing}},
        "steps": ALL_STEPS if steps is None else steps,
    }


# ==============================================================================
# STEP WIRING
# ==============================================================================


def sample_entities(**patient_overrides: Any) -> NormalizedEntities:
    patient = dict(
        name="Bella",
        species="dog",
        breed="Labrador",
        weight="28 kg",
        owner=OwnerEntity(name="Jane Doe", phone="+15551234567", email="jane@example.com"),
    )
    patient.update(patient_overrides)
    return NormalizedEntities(
        patient=PatientEntity(**patient),
        clinical=ClinicalEntity(
            visit_reason="Limping on left hind leg",
            diagnoses=["Soft tissue strain"],
            medications=[Medication(name="Carprofen", dosage="75 mg", frequency="twice daily")],
            follow_up_instructions="Rest for one week and recheck if limping persists.",
        ),
        case_type="checkup",
        confidence=ExtractionConfidence(overall=0.9, patient=0.95, clinical=0.85),
    )


class FakeLLM(LLMProvider):
    """Returns canned structured outputs and records the prompts it was sent."""

    def __init__(
        self,
        entities: Optional[NormalizedEntities] = None,
        summary: str = "Bella strained a muscle.\n\nGive Carprofen twice daily with food.",
        fail_times: int = 0,
        failure: Optional[Exception] = None,
    ):
        self.entities = entities or sample_entities()
        self.summary = summary
        self.fail_times = fail_times
        self.failure = failure or StructuredOutputError("model unavailable")
        self.calls: List[Dict[str, Any]] = []

    async def generate_structured_output(
        self, messages: List[dict], response_model: Type[T], temperature: Optional[float] = None
    ) -> T:
        self.calls.append({"messages": messages, "response_model": response_model})
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.failure
        if response_model is NormalizedEntities:
            return self.entities.model_copy(deep=True)
        if response_model is DischargeSummaryDraft:
            return DischargeSummaryDraft(content=self.summary)
        raise AssertionError(f"Unexpected response model {response_model}")


class Wiring:
    """The default handlers wired to in-memory collaborators."""

    def __init__(self, llm: Optional[FakeLLM] = None):
        self.llm = llm or FakeLLM()
        self.cases = InMemoryCaseRepository()
        self.summaries = InMemorySummaryRepository()
        self.emails = InMemoryScheduledEmailRepository()
        self.calls = InMemoryScheduledCallRepository()
        self.dispatcher = InMemoryJobDispatcher()
        self.extractor = EntityExtractor(self.llm)
        self.case_service = RepositoryCaseService(
            case_repository=self.cases,
            summary_repository=self.summaries,
            call_repository=self.calls,
            extractor=self.extractor,
            dispatcher=self.dispatcher,
        )
        self.handlers = build_default_registry(
            extractor=self.extractor,
            generator=SummaryGenerator(self.llm),
            summary_repository=self.summaries,
            email_repository=self.emails,
            dispatcher=self.dispatcher,
        )
        self.orchestrator = DischargeOrchestrator(handlers=self.handlers, case_service=self.case_service)


@pytest.fixture
def wiring() -> Wiring:
    return Wiring()


@pytest.fixture
def actor() -> Actor:
    return Actor(
        user_id="vet-1",
        clinic_name="Happy Paws Clinic",
        clinic_phone="+15550001111",
        clinic_email="desk@happypaws.example",
        first_name="Maya",
    )
