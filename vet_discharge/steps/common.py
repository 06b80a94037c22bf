"""
Helpers shared by the discharge step handlers.
"""

from datetime import datetime, timedelta
from typing import Optional

from ..config import settings
from ..domain.models import CaseInfo, SummaryRecord, utcnow
from ..orchestration.handlers import StepContext
from ..orchestration.steps import StepName
from ..repositories.summaries import SummaryRepository
from ..services.case_service import CaseService
from ..services.exceptions import (
    CaseNotFoundError,
    DischargeError,
    MissingCaseIdError,
    ScheduleInPastError,
)


def find_case_id(context: StepContext) -> Optional[str]:
    """The case id from ingest output, falling back to the request's existing case."""
    ingest = context.data_of(StepName.INGEST)
    if isinstance(ingest, dict) and ingest.get("caseId"):
        return ingest["caseId"]
    existing = context.request.existing_case
    return existing.case_id if existing else None


def get_case_id(context: StepContext, purpose: str) -> str:
    case_id = find_case_id(context)
    if not case_id:
        raise MissingCaseIdError(purpose)
    return case_id


def require_case_service(context: StepContext) -> CaseService:
    if context.case_service is None:
        raise DischargeError("Case service is not configured")
    return context.case_service


async def load_case(context: StepContext, case_id: str) -> CaseInfo:
    info = await require_case_service(context).get_case_with_entities(case_id)
    if info is None:
        raise CaseNotFoundError(case_id)
    return info


def find_summary(
    context: StepContext, summaries: SummaryRepository, case_id: Optional[str]
) -> Optional[SummaryRecord]:
    """
    The summary this run produced (or was seeded with), else the latest
    stored summary for the case.
    """
    data = context.data_of(StepName.GENERATE_SUMMARY)
    if isinstance(data, dict):
        if data.get("content"):
            return SummaryRecord(case_id=case_id or "", content=data["content"], id=data.get("summaryId"))
        if data.get("summaryId"):
            stored = summaries.get(data["summaryId"])
            if stored:
                return stored

    if case_id:
        return summaries.get_latest(case_id)
    return None


def resolve_delivery_time(requested: Optional[datetime], default_delay_minutes: int) -> datetime:
    """
    A requested time must be in the future. Without one, delivery is
    delayed by the default, never less than the minimum buffer.
    """
    server_now = utcnow()
    if requested is not None:
        if requested <= server_now:
            raise ScheduleInPastError(requested, server_now)
        return requested

    delay = max(
        timedelta(minutes=default_delay_minutes),
        timedelta(seconds=settings.MIN_SCHEDULE_BUFFER_SECONDS),
    )
    return server_now + delay
