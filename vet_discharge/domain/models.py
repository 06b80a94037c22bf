"""
Domain Layer - Case Data Models

Plain dataclasses for the records the discharge workflow reads and writes:
cases with their patient and transcriptions, generated discharge summaries,
and scheduled follow-up emails and calls. Repositories translate between
these and their storage representation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from ..schemas.entities import NormalizedEntities


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


"""
ScheduleStatus tracks a scheduled email or call:
- queued: Stored and handed to the delayed-job dispatcher
- in_progress / ringing: Call currently being placed
- completed: Delivered
- failed: Delivery failed
- canceled: Withdrawn before delivery
"""
ScheduleStatus = Literal["queued", "in_progress", "ringing", "completed", "failed", "canceled"]

CaseType = Literal["checkup", "emergency", "surgery", "follow_up"]


@dataclass
class Actor:
    """
    The authenticated user a run acts on behalf of.

    Attributes:
        user_id: Owner of every record the run creates.
        clinic_name / clinic_phone / clinic_email: Clinic details used in
            emails and calls; fall back to settings when absent.
        first_name: Used as the voice agent's name on discharge calls.
    """
    user_id: str
    clinic_name: Optional[str] = None
    clinic_phone: Optional[str] = None
    clinic_email: Optional[str] = None
    first_name: Optional[str] = None


@dataclass
class Patient:
    case_id: str
    name: str
    id: Optional[str] = None
    user_id: Optional[str] = None
    species: Optional[str] = None
    breed: Optional[str] = None
    sex: Optional[str] = None
    weight_kg: Optional[float] = None
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None


@dataclass
class Transcription:
    case_id: str
    transcript: Optional[str]
    id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Case:
    """
    A clinical case.

    Attributes:
        source: Where the case came from (see CaseSource).
        metadata: Free-form case metadata. Holds the raw PIMS payload under
            "idexx" and the ingest-time entities under "entities".
        entity_extraction: The most recent extractEntities output.
    """
    user_id: str
    source: str
    id: Optional[str] = None
    status: str = "ongoing"
    type: CaseType = "checkup"
    metadata: Dict[str, Any] = field(default_factory=dict)
    entity_extraction: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def idexx(self) -> Dict[str, Any]:
        return self.metadata.get("idexx") or {}


@dataclass
class SummaryRecord:
    case_id: str
    content: str
    id: Optional[str] = None
    user_id: Optional[str] = None
    template_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class CaseInfo:
    """A case with everything the discharge steps read alongside it."""
    case: Case
    entities: Optional[NormalizedEntities] = None
    patient: Optional[Patient] = None
    transcriptions: List[Transcription] = field(default_factory=list)
    summaries: List[SummaryRecord] = field(default_factory=list)

    @property
    def latest_transcription(self) -> Optional[Transcription]:
        if not self.transcriptions:
            return None
        return max(self.transcriptions, key=lambda t: t.created_at)


@dataclass
class ScheduledEmail:
    user_id: str
    recipient_email: str
    subject: str
    html_content: str
    text_content: str
    scheduled_for: datetime
    id: Optional[str] = None
    case_id: Optional[str] = None
    recipient_name: Optional[str] = None
    status: ScheduleStatus = "queued"
    dispatch_message_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ScheduledCall:
    user_id: str
    case_id: str
    customer_phone: str
    scheduled_for: datetime
    id: Optional[str] = None
    status: ScheduleStatus = "queued"
    dynamic_variables: Dict[str, Any] = field(default_factory=dict)
    dispatch_message_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class CallScheduleOptions:
    """
    Inputs for scheduling a discharge call.

    Attributes:
        scheduled_at: Requested call time; the configured delay applies when absent.
        summary_content: Discharge summary the voice agent reads from.
        phone_number: Overrides the owner phone stored on the case.
    """
    scheduled_at: Optional[datetime] = None
    summary_content: Optional[str] = None
    clinic_name: Optional[str] = None
    clinic_phone: Optional[str] = None
    emergency_phone: Optional[str] = None
    agent_name: Optional[str] = None
    phone_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class IngestPayload:
    """
    Raw clinical data handed to the case service.

    Attributes:
        mode: "text" (free-form notes or transcript) or "structured" (PIMS data).
        source: Origin of the data (a CaseSource value).
        text: Clinical text, in text mode.
        data: Structured payload, in structured mode.
        input_type: Hint for the extraction prompt (e.g. "transcript").
        extract_entities: Run AI extraction on text notes. When off, the case
            is stored with placeholder entities and the notes alone.
        skip_duplicate_check: Always create a new case instead of merging into
            a recent case for the same patient and owner.
        auto_schedule: Schedule a discharge call immediately after ingest.
    """
    mode: Literal["text", "structured"]
    source: str
    text: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    input_type: Optional[str] = None
    auto_schedule: bool = False
    extract_entities: bool = True
    skip_duplicate_check: bool = False
