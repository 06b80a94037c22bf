"""
Schemas - Orchestration Request Models

Pydantic models validating the payload a caller hands to the discharge
orchestrator. Field names are snake_case in Python and camelCase on the wire
(e.g. existing_case <-> "existingCase"), so the same models parse HTTP bodies,
cron job payloads and hand-built requests in tests.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CaseSource(str, Enum):
    """Where the raw clinical data came from."""

    MANUAL = "manual"
    MOBILE_APP = "mobile_app"
    WEB_DASHBOARD = "web_dashboard"
    IDEXX_NEO = "idexx_neo"
    IDEXX_EXTENSION = "idexx_extension"
    EZYVET_API = "ezyvet_api"


# ==============================================================================
# INPUT
# ==============================================================================


class EmailContent(CamelModel):
    """A fully rendered discharge email."""

    subject: str
    html: str
    text: str


class RawDataInput(CamelModel):
    """
    Unprocessed clinical data that still has to be ingested into a case.

    Attributes:
        mode: "text" for free-form notes/transcripts, "structured" for PIMS
            payloads (e.g. IDEXX Neo appointment data).
        source: Origin of the data.
        text: Clinical text (text mode).
        data: Structured payload (structured mode).
    """

    mode: Literal["text", "structured"]
    source: CaseSource
    text: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class ExistingCaseInput(CamelModel):
    """
    A case that was already ingested. Supplying it bypasses the ingest step;
    supplying email_content as well bypasses summary generation and email
    preparation.
    """

    case_id: str = Field(..., min_length=1)
    summary_id: Optional[UUID] = None
    email_content: Optional[EmailContent] = None


class RawDataRequestInput(CamelModel):
    raw_data: RawDataInput


class ExistingCaseRequestInput(CamelModel):
    existing_case: ExistingCaseInput


# ==============================================================================
# PER-STEP OPTIONS
# ==============================================================================


class IngestOptions(CamelModel):
    extract_entities: Optional[bool] = None
    skip_duplicate_check: Optional[bool] = None
    auto_schedule: Optional[bool] = None
    input_type: Optional[str] = None


class IngestStepOptions(CamelModel):
    options: Optional[IngestOptions] = None


class ExtractEntitiesStepOptions(CamelModel):
    force_refresh: bool = False


class GenerateSummaryStepOptions(CamelModel):
    template_id: Optional[UUID] = None
    use_latest_entities: Optional[bool] = None


class PrepareEmailStepOptions(CamelModel):
    template_id: Optional[UUID] = None


class ScheduleEmailStepOptions(CamelModel):
    recipient_email: Optional[EmailStr] = None
    scheduled_for: Optional[datetime] = None

    @field_validator("scheduled_for")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class ScheduleCallStepOptions(CamelModel):
    phone_number: Optional[str] = None
    scheduled_for: Optional[datetime] = None

    @field_validator("scheduled_for")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class StepsConfig(CamelModel):
    """
    Which steps a request enables. Each entry is either a boolean or an
    options object; an options object implies the step is enabled, and a
    missing entry means disabled.
    """

    ingest: Optional[Union[bool, IngestStepOptions]] = None
    extract_entities: Optional[Union[bool, ExtractEntitiesStepOptions]] = None
    generate_summary: Optional[Union[bool, GenerateSummaryStepOptions]] = None
    prepare_email: Optional[Union[bool, PrepareEmailStepOptions]] = None
    schedule_email: Optional[Union[bool, ScheduleEmailStepOptions]] = None
    schedule_call: Optional[Union[bool, ScheduleCallStepOptions]] = None

    def get(self, step: str) -> Optional[Union[bool, CamelModel]]:
        """Look up the setting for a step by its wire name (e.g. "scheduleCall")."""
        for name, field in type(self).model_fields.items():
            if field.alias == step:
                return getattr(self, name)
        raise KeyError(step)


class OrchestrationOptions(CamelModel):
    parallel: bool = True
    stop_on_error: bool = False
    dry_run: bool = False


# ==============================================================================
# REQUEST
# ==============================================================================


class OrchestrationRequest(CamelModel):
    """
    Everything the orchestrator needs for one run.

    Example (wire format):
        {
            "input": {"existingCase": {"caseId": "c1"}},
            "steps": {"generateSummary": true, "scheduleCall": {"phoneNumber": "+15551234567"}},
            "options": {"parallel": true, "stopOnError": false}
        }
    """

    input: Union[RawDataRequestInput, ExistingCaseRequestInput]
    steps: StepsConfig = Field(default_factory=StepsConfig)
    options: OrchestrationOptions = Field(default_factory=OrchestrationOptions)

    @property
    def existing_case(self) -> Optional[ExistingCaseInput]:
        if isinstance(self.input, ExistingCaseRequestInput):
            return self.input.existing_case
        return None

    @property
    def raw_data(self) -> Optional[RawDataInput]:
        if isinstance(self.input, RawDataRequestInput):
            return self.input.raw_data
        return None
