import logging
import re
from typing import Any, Dict, List

from ..config import settings
from ..domain.models import ScheduledEmail
from ..orchestration.handlers import BaseStepHandler, StepContext
from ..orchestration.steps import StepName
from ..prompts.loader import render
from ..prompts.templates import Template
from ..repositories.schedules import ScheduledEmailRepository
from ..repositories.summaries import SummaryRepository
from ..schemas.orchestration import EmailContent, ScheduleEmailStepOptions
from ..services.dispatch import JobDispatcher
from ..services.exceptions import (
    DispatchError,
    EmailContentMissingError,
    RecipientRequiredError,
    SummaryNotFoundError,
)
from .common import (
    find_case_id,
    find_summary,
    get_case_id,
    load_case,
    resolve_delivery_time,
)

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def split_paragraphs(content: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_BREAK.split(content) if p.strip()]


class PrepareEmailStep(BaseStepHandler):
    """Renders the discharge email (subject, HTML and plain text) from the summary."""

    step = StepName.PREPARE_EMAIL

    def __init__(self, summary_repository: SummaryRepository):
        self.summaries = summary_repository

    async def run(self, context: StepContext) -> Dict[str, Any]:
        case_id = get_case_id(context, "email preparation")
        info = await load_case(context, case_id)

        summary = find_summary(context, self.summaries, case_id)
        if summary is None or not summary.content:
            raise SummaryNotFoundError()

        patient = info.patient
        entity_patient = info.entities.patient if info.entities else None
        patient_name = (
            (patient.name if patient else None)
            or _known(entity_patient.name if entity_patient else None)
            or "your pet"
        )
        species = (patient.species if patient else None) or (entity_patient.species if entity_patient else None)
        breed = (patient.breed if patient else None) or (entity_patient.breed if entity_patient else None)

        actor = context.actor
        template_vars = dict(
            subject=f"Discharge Instructions for {patient_name}",
            primary_color=settings.CLINIC_PRIMARY_COLOR,
            clinic_name=(actor.clinic_name if actor else None) or settings.CLINIC_NAME,
            clinic_phone=(actor.clinic_phone if actor else None) or settings.CLINIC_PHONE,
            clinic_email=(actor.clinic_email if actor else None) or settings.CLINIC_EMAIL,
            patient_name=patient_name,
            species=_known(species),
            breed=breed,
            visit_label="Recent Visit",
            paragraphs=split_paragraphs(summary.content),
        )

        content = EmailContent(
            subject=template_vars["subject"],
            html=render(Template.DISCHARGE_EMAIL_HTML, **template_vars),
            text=render(Template.DISCHARGE_EMAIL_TEXT, **template_vars),
        )
        return content.model_dump(by_alias=True)


class ScheduleEmailStep(BaseStepHandler):
    """
    Queues the prepared email and hands it to the delayed-job dispatcher.

    The stored row and the dispatched job succeed or fail together: if the
    dispatcher rejects the job, the row is deleted again.
    """

    step = StepName.SCHEDULE_EMAIL

    def __init__(self, email_repository: ScheduledEmailRepository, dispatcher: JobDispatcher):
        self.emails = email_repository
        self.dispatcher = dispatcher

    async def run(self, context: StepContext) -> Dict[str, Any]:
        prepared = context.data_of(StepName.PREPARE_EMAIL)
        if not isinstance(prepared, dict):
            raise EmailContentMissingError()
        content = EmailContent.model_validate(prepared)

        options = context.options_for(self.step)
        options = options if isinstance(options, ScheduleEmailStepOptions) else ScheduleEmailStepOptions()

        case_id = find_case_id(context)
        recipient_email = options.recipient_email
        recipient_name = None
        if case_id:
            info = await load_case(context, case_id)
            if info.patient:
                recipient_email = recipient_email or info.patient.owner_email
                recipient_name = info.patient.owner_name
        if not recipient_email:
            raise RecipientRequiredError()
        recipient_name = recipient_name or "Pet Owner"

        scheduled_for = resolve_delivery_time(options.scheduled_for, settings.DEFAULT_EMAIL_DELAY_MINUTES)

        if context.dry_run:
            logger.info(f"Dry run: would schedule email to {recipient_email} at {scheduled_for.isoformat()}")
            return {"dryRun": True, "recipientEmail": recipient_email, "scheduledFor": scheduled_for.isoformat()}

        email = self.emails.add(
            ScheduledEmail(
                user_id=context.actor.user_id if context.actor else "system",
                case_id=case_id,
                recipient_email=recipient_email,
                recipient_name=recipient_name,
                subject=content.subject,
                html_content=content.html,
                text_content=content.text,
                scheduled_for=scheduled_for,
            )
        )

        try:
            message_id = await self.dispatcher.schedule_email_execution(email.id, scheduled_for)
        except DispatchError as e:
            self._roll_back(email.id)
            raise DispatchError(f"Failed to schedule email delivery: {e}") from e
        except Exception:
            self._roll_back(email.id)
            raise

        try:
            self.emails.set_dispatch_message_id(email.id, message_id)
        except Exception as e:
            # The job is already scheduled; only the tracking id is missing.
            logger.error(f"Failed to record dispatch message id {message_id} for email {email.id}: {e}")

        logger.info(f"Scheduled email {email.id} to {recipient_email} at {scheduled_for.isoformat()}")
        return {
            "emailId": email.id,
            "scheduledFor": scheduled_for.isoformat(),
            "dispatchMessageId": message_id,
        }

    def _roll_back(self, email_id: str) -> None:
        """Removes a stored email whose delivery job was never scheduled."""
        try:
            self.emails.delete(email_id)
        except Exception as e:
            logger.error(f"Failed to roll back scheduled email {email_id}: {e}")


def _known(value):
    if value and str(value).lower() != "unknown":
        return value
    return None
