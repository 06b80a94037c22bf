import logging
from typing import Any, Dict

from ..config import settings
from ..domain.models import CallScheduleOptions
from ..orchestration.handlers import BaseStepHandler, StepContext
from ..orchestration.steps import StepName
from ..schemas.orchestration import ScheduleCallStepOptions
from .common import get_case_id, require_case_service, resolve_delivery_time

logger = logging.getLogger(__name__)


class ScheduleCallStep(BaseStepHandler):
    """Queues the follow-up discharge call for the case."""

    step = StepName.SCHEDULE_CALL

    async def run(self, context: StepContext) -> Dict[str, Any]:
        case_id = get_case_id(context, "call scheduling")

        options = context.options_for(self.step)
        options = options if isinstance(options, ScheduleCallStepOptions) else ScheduleCallStepOptions()

        # Only a requested time is validated here; the case service applies the default delay.
        scheduled_at = None
        if options.scheduled_for is not None:
            scheduled_at = resolve_delivery_time(options.scheduled_for, settings.DEFAULT_CALL_DELAY_MINUTES)

        summary = context.data_of(StepName.GENERATE_SUMMARY)
        summary_content = summary.get("content") if isinstance(summary, dict) else None

        actor = context.actor
        clinic_phone = (actor.clinic_phone if actor else None) or settings.CLINIC_PHONE
        call_options = CallScheduleOptions(
            scheduled_at=scheduled_at,
            summary_content=summary_content,
            clinic_name=(actor.clinic_name if actor else None) or settings.CLINIC_NAME,
            clinic_phone=clinic_phone,
            emergency_phone=clinic_phone,
            agent_name=(actor.first_name if actor else None) or settings.AGENT_NAME,
            phone_number=options.phone_number,
        )

        if context.dry_run:
            planned = scheduled_at or resolve_delivery_time(None, settings.DEFAULT_CALL_DELAY_MINUTES)
            logger.info(f"Dry run: would schedule call for case {case_id} at {planned.isoformat()}")
            return {"dryRun": True, "caseId": case_id, "scheduledFor": planned.isoformat()}

        call = await require_case_service(context).schedule_discharge_call(actor, case_id, call_options)
        return {"callId": call.id, "scheduledFor": call.scheduled_for.isoformat()}
