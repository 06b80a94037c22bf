import logging
from typing import Any, Dict

from ..domain.models import IngestPayload
from ..orchestration.handlers import BaseStepHandler, StepContext
from ..orchestration.steps import StepName
from ..schemas.orchestration import IngestStepOptions
from ..services.exceptions import RawDataRequiredError
from .common import require_case_service

logger = logging.getLogger(__name__)


class IngestStep(BaseStepHandler):
    """Turns the request's raw clinical data into a stored case."""

    step = StepName.INGEST

    async def run(self, context: StepContext) -> Dict[str, Any]:
        raw = context.request.raw_data
        if raw is None:
            raise RawDataRequiredError("Raw data required for ingestion")
        if raw.mode == "text" and not (raw.text or "").strip():
            raise RawDataRequiredError("Text is required for text-mode ingestion")
        if raw.mode == "structured" and not raw.data:
            raise RawDataRequiredError("Data is required for structured-mode ingestion")

        step_options = context.options_for(self.step)
        options = step_options.options if isinstance(step_options, IngestStepOptions) else None

        payload = IngestPayload(
            mode=raw.mode,
            source=raw.source.value,
            text=raw.text or "",
            data=dict(raw.data or {}),
            input_type=options.input_type if options else None,
            auto_schedule=bool(options and options.auto_schedule),
            extract_entities=options is None or options.extract_entities is not False,
            skip_duplicate_check=bool(options and options.skip_duplicate_check),
        )
        logger.info(f"Ingesting {payload.mode} data from {payload.source}")
        return await require_case_service(context).ingest(context.actor, payload)
