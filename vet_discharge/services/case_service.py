"""
Case Service - Case Intake and Discharge Call Scheduling

The narrow case capability every discharge step shares:
1. ingest: normalize raw clinical data into entities and find-or-create the case.
2. get_case_with_entities: load a case with its patient, transcriptions and summaries.
3. schedule_discharge_call: queue the follow-up voice call for a case.
4. enrich_entities_with_patient: let the stored patient record win over AI output.
5. save_entities: persist the latest extraction on the case.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..config import settings
from ..domain.models import (
    Actor,
    CallScheduleOptions,
    Case,
    CaseInfo,
    IngestPayload,
    Patient,
    ScheduledCall,
    Transcription,
    utcnow,
)
from ..repositories.cases import CaseRepository
from ..repositories.schedules import ScheduledCallRepository
from ..repositories.summaries import SummaryRepository
from ..schemas.entities import VALID_SPECIES, NormalizedEntities
from .dispatch import JobDispatcher
from .entity_extraction import EntityExtractor, looks_like_entities, map_idexx_to_entities
from .exceptions import CaseNotFoundError, EntityExtractionError, PhoneNumberRequiredError

logger = logging.getLogger(__name__)

# Cases older than this are not merged with new intake for the same patient.
CASE_MATCH_WINDOW = timedelta(days=90)

# Call statuses that must survive a reschedule.
ACTIVE_CALL_STATUSES = ("in_progress", "ringing", "completed")

CASE_TYPE_MAP = {
    "checkup": "checkup",
    "vaccination": "checkup",
    "consultation": "checkup",
    "emergency": "emergency",
    "surgery": "surgery",
    "dental": "surgery",
    "follow_up": "follow_up",
    "diagnostic": "follow_up",
    "other": "follow_up",
    "unknown": "checkup",
}


class CaseService(ABC):
    @abstractmethod
    async def ingest(self, actor: Optional[Actor], payload: IngestPayload) -> Dict[str, Any]:
        """
        Normalizes raw data and stores it as a case.

        Returns:
            {"caseId", "entities", "scheduledCall"} (JSON-ready).
        """
        pass

    @abstractmethod
    async def get_case_with_entities(self, case_id: str) -> Optional[CaseInfo]:
        pass

    @abstractmethod
    async def schedule_discharge_call(
        self, actor: Optional[Actor], case_id: str, options: CallScheduleOptions
    ) -> ScheduledCall:
        pass

    @abstractmethod
    def enrich_entities_with_patient(
        self, entities: NormalizedEntities, patient: Patient
    ) -> NormalizedEntities:
        pass

    @abstractmethod
    async def save_entities(self, case_id: str, entities: NormalizedEntities) -> None:
        pass


class RepositoryCaseService(CaseService):
    def __init__(
        self,
        case_repository: CaseRepository,
        summary_repository: SummaryRepository,
        call_repository: ScheduledCallRepository,
        extractor: EntityExtractor,
        dispatcher: JobDispatcher,
    ):
        self.case_repo = case_repository
        self.summary_repo = summary_repository
        self.call_repo = call_repository
        self.extractor = extractor
        self.dispatcher = dispatcher

    # ==========================================================================
    # Intake
    # ==========================================================================

    async def ingest(self, actor: Optional[Actor], payload: IngestPayload) -> Dict[str, Any]:
        raw_idexx: Optional[Dict[str, Any]] = None
        transcription_text: Optional[str] = None

        # 1. Normalize Data
        match_existing = not payload.skip_duplicate_check
        if payload.mode == "text":
            transcription_text = payload.text
            if payload.extract_entities:
                entities = await self.extractor.extract(
                    payload.text, input_type=payload.input_type, source=payload.source
                )
            else:
                # Placeholder names would match any other unextracted case.
                entities = NormalizedEntities()
                match_existing = False
        else:
            raw_idexx = payload.data
            entities = self._entities_from_structured(payload.data)

        # 2. Find or Create Case
        case_id = self._create_or_update_case(
            _user_id(actor), entities, payload.source, raw_idexx, transcription_text, match_existing
        )

        # 3. Auto-Schedule if requested
        scheduled_call = None
        if payload.auto_schedule:
            call = await self.schedule_discharge_call(actor, case_id, CallScheduleOptions())
            scheduled_call = {
                "id": call.id,
                "scheduledFor": call.scheduled_for.isoformat(),
                "status": call.status,
            }

        return {
            "caseId": case_id,
            "entities": entities.model_dump(mode="json"),
            "scheduledCall": scheduled_call,
        }

    @staticmethod
    def _entities_from_structured(data: Dict[str, Any]) -> NormalizedEntities:
        if looks_like_entities(data):
            try:
                return NormalizedEntities.model_validate(data)
            except ValidationError as e:
                raise EntityExtractionError(f"Structured entities are invalid: {e}") from e
        return map_idexx_to_entities(data)

    def _create_or_update_case(
        self,
        user_id: str,
        entities: NormalizedEntities,
        source: str,
        raw_idexx: Optional[Dict[str, Any]],
        transcription_text: Optional[str],
        match_existing: bool = True,
    ) -> str:
        entities_json = entities.model_dump(mode="json")
        existing = None
        if match_existing:
            existing = self.case_repo.find_recent_for_patient(
                entities.patient.name, entities.patient.owner.name, since=utcnow() - CASE_MATCH_WINDOW
            )

        if existing:
            # Merge: the newest intake wins, earlier PIMS data is kept.
            metadata = dict(existing.metadata)
            metadata["entities"] = entities_json
            metadata["idexx"] = raw_idexx if raw_idexx is not None else metadata.get("idexx")
            metadata["last_updated_by"] = source
            existing.metadata = metadata
            existing.entity_extraction = entities_json
            self.case_repo.save(existing)
            case_id = existing.id
            logger.info(f"Merged intake into existing case {case_id}")
        else:
            case = self.case_repo.create(
                Case(
                    user_id=user_id,
                    source=source,
                    type=CASE_TYPE_MAP.get(entities.case_type or "unknown", "checkup"),
                    metadata={"entities": entities_json, "idexx": raw_idexx},
                    entity_extraction=entities_json,
                )
            )
            case_id = case.id
            self.case_repo.add_patient(
                Patient(
                    case_id=case_id,
                    user_id=user_id,
                    name=entities.patient.name,
                    species=entities.patient.species,
                    breed=entities.patient.breed,
                    sex=entities.patient.sex,
                    weight_kg=parse_weight(entities.patient.weight),
                    owner_name=entities.patient.owner.name,
                    owner_phone=entities.patient.owner.phone,
                    owner_email=entities.patient.owner.email,
                )
            )
            logger.info(f"Created case {case_id} for patient {entities.patient.name!r}")

        if transcription_text:
            self.case_repo.add_transcription(
                Transcription(case_id=case_id, user_id=user_id, transcript=transcription_text)
            )
        return case_id

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_case_with_entities(self, case_id: str) -> Optional[CaseInfo]:
        case = self.case_repo.get(case_id)
        if case is None:
            return None

        return CaseInfo(
            case=case,
            entities=_parse_entities(case.entity_extraction) or _parse_entities(case.metadata.get("entities")),
            patient=self.case_repo.get_patient(case_id),
            transcriptions=self.case_repo.list_transcriptions(case_id),
            summaries=self.summary_repo.list_for_case(case_id),
        )

    def enrich_entities_with_patient(
        self, entities: NormalizedEntities, patient: Patient
    ) -> NormalizedEntities:
        """Database values take priority over extracted ones. Modifies entities in place."""
        target = entities.patient
        if patient.name and (not target.name or target.name.strip().lower() == "unknown"):
            target.name = patient.name
        if patient.species and patient.species.lower() in VALID_SPECIES:
            target.species = patient.species.lower()
        if patient.breed:
            target.breed = patient.breed
        if patient.sex:
            target.sex = patient.sex
        if patient.weight_kg:
            target.weight = f"{patient.weight_kg:g} kg"
        if patient.owner_name:
            target.owner.name = patient.owner_name
        if patient.owner_phone:
            target.owner.phone = patient.owner_phone
        if patient.owner_email:
            target.owner.email = patient.owner_email
        return entities

    async def save_entities(self, case_id: str, entities: NormalizedEntities) -> None:
        case = self.case_repo.get(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        case.entity_extraction = entities.model_dump(mode="json")
        self.case_repo.save(case)

    # ==========================================================================
    # Calls
    # ==========================================================================

    async def schedule_discharge_call(
        self, actor: Optional[Actor], case_id: str, options: CallScheduleOptions
    ) -> ScheduledCall:
        info = await self.get_case_with_entities(case_id)
        if info is None:
            raise CaseNotFoundError(case_id)

        entities = await self._entities_for_call(info)
        phone = options.phone_number or entities.patient.owner.phone
        if not phone:
            raise PhoneNumberRequiredError()

        user_id = _user_id(actor)
        scheduled_at = options.scheduled_at or (
            utcnow() + timedelta(minutes=settings.DEFAULT_CALL_DELAY_MINUTES)
        )
        variables = build_call_variables(entities, options)

        existing = self.call_repo.get_latest_for_case(case_id, user_id)
        if existing:
            time_changed = existing.scheduled_for != scheduled_at
            existing.customer_phone = phone
            existing.scheduled_for = scheduled_at
            existing.dynamic_variables = variables
            if existing.status not in ACTIVE_CALL_STATUSES:
                existing.status = "queued"
            call = self.call_repo.save(existing)
            logger.info(f"Updated existing call {call.id} for case {case_id} (status={call.status})")
            if call.dispatch_message_id and not time_changed:
                return call
        else:
            call = self.call_repo.add(
                ScheduledCall(
                    user_id=user_id,
                    case_id=case_id,
                    customer_phone=phone,
                    scheduled_for=scheduled_at,
                    dynamic_variables=variables,
                )
            )
            logger.info(f"Queued discharge call {call.id} for case {case_id} at {scheduled_at.isoformat()}")

        message_id = await self.dispatcher.schedule_call_execution(call.id, scheduled_at)
        call.dispatch_message_id = message_id
        try:
            call = self.call_repo.save(call)
        except Exception as e:
            # The job is already scheduled; only the tracking id is missing.
            logger.error(f"Failed to record dispatch message id {message_id} for call {call.id}: {e}")
        return call

    async def _entities_for_call(self, info: CaseInfo) -> NormalizedEntities:
        entities = info.entities
        if entities is None:
            transcription = info.latest_transcription
            if not transcription or not transcription.transcript:
                raise EntityExtractionError(
                    "Case has no entities and no transcription available for extraction"
                )
            entities = await self.extractor.extract(transcription.transcript, input_type="transcript")
            await self.save_entities(info.case.id, entities)

        if info.patient:
            self.enrich_entities_with_patient(entities, info.patient)
        if info.summaries and not entities.clinical.follow_up_instructions:
            entities.clinical.follow_up_instructions = info.summaries[0].content
        return entities


# ==============================================================================
# HELPERS
# ==============================================================================


def _user_id(actor: Optional[Actor]) -> str:
    return actor.user_id if actor else "system"


def _parse_entities(raw: Optional[Dict[str, Any]]) -> Optional[NormalizedEntities]:
    if not raw:
        return None
    try:
        return NormalizedEntities.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring stored entities that no longer validate: {e}")
        return None


def parse_weight(weight: Optional[str]) -> Optional[float]:
    """Leading number of a weight string such as '12.5 kg'."""
    if not weight:
        return None
    number = ""
    for char in weight.strip():
        if char.isdigit() or (char == "." and "." not in number):
            number += char
        else:
            break
    try:
        return float(number)
    except ValueError:
        return None


def summary_from_entities(entities: NormalizedEntities) -> str:
    clinical = entities.clinical
    parts = []
    if clinical.diagnoses:
        parts.append(f"Diagnoses: {', '.join(clinical.diagnoses)}.")
    if clinical.medications:
        meds = "; ".join(
            f"{m.name} ({m.dosage or ''}, {m.frequency or ''})" for m in clinical.medications
        )
        parts.append(f"Medications: {meds}.")
    if clinical.follow_up_instructions:
        parts.append(f"Instructions: {clinical.follow_up_instructions}")
    return " ".join(parts)


def build_call_variables(entities: NormalizedEntities, options: CallScheduleOptions) -> Dict[str, Any]:
    """Snake-case variables handed to the voice agent for the discharge call."""
    patient = entities.patient
    clinic_phone = options.clinic_phone if options.clinic_phone is not None else settings.CLINIC_PHONE
    variables: Dict[str, Any] = {
        "clinic_name": options.clinic_name or settings.CLINIC_NAME,
        "agent_name": options.agent_name or settings.AGENT_NAME,
        "pet_name": patient.name,
        "owner_name": patient.owner.name,
        "appointment_date": "today",
        "call_type": "discharge",
        "clinic_phone": clinic_phone,
        "emergency_phone": options.emergency_phone or clinic_phone,
        "discharge_summary": options.summary_content or summary_from_entities(entities),
        "medications": ", ".join(
            " ".join(filter(None, [m.name, m.dosage, m.frequency])) for m in entities.clinical.medications
        ),
        "next_steps": entities.clinical.follow_up_instructions,
        "patient_species": patient.species,
        "patient_breed": patient.breed,
        "patient_age": patient.age,
        "patient_weight": parse_weight(patient.weight),
    }
    if options.notes:
        variables["notes"] = options.notes
    return variables
