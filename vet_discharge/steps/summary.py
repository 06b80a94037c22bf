import logging
from typing import Any, Dict, Optional

from ..domain.models import CaseInfo, SummaryRecord
from ..orchestration.handlers import BaseStepHandler, StepContext
from ..orchestration.steps import StepName
from ..repositories.summaries import SummaryRepository
from ..schemas.entities import NormalizedEntities
from ..schemas.orchestration import GenerateSummaryStepOptions
from ..services.exceptions import EntityExtractionError, EuthanasiaCaseError
from ..services.summary_generation import SummaryGenerator
from .common import get_case_id, load_case

logger = logging.getLogger(__name__)


class GenerateSummaryStep(BaseStepHandler):
    """Writes and stores the discharge summary for the case."""

    step = StepName.GENERATE_SUMMARY

    def __init__(self, generator: SummaryGenerator, summary_repository: SummaryRepository):
        self.generator = generator
        self.summaries = summary_repository

    async def run(self, context: StepContext) -> Dict[str, Any]:
        case_id = get_case_id(context, "summary generation")
        info = await load_case(context, case_id)

        options = context.options_for(self.step)
        options = options if isinstance(options, GenerateSummaryStepOptions) else GenerateSummaryStepOptions()

        entities = self._select_entities(context, info, options)
        if entities is None and info.patient is None:
            raise EntityExtractionError("No entities or patient data available for summary generation")
        if entities is not None and entities.case_type == "euthanasia":
            raise EuthanasiaCaseError()

        template_id = str(options.template_id) if options.template_id else None
        content = await self.generator.generate(entities, patient=info.patient, template_id=template_id)

        record = self.summaries.add(
            SummaryRecord(
                case_id=case_id,
                content=content,
                user_id=context.actor.user_id if context.actor else None,
                template_id=template_id,
            )
        )
        logger.info(f"Stored discharge summary {record.id} for case {case_id}")
        return {"summaryId": record.id, "content": content}

    @staticmethod
    def _select_entities(
        context: StepContext, info: CaseInfo, options: GenerateSummaryStepOptions
    ) -> Optional[NormalizedEntities]:
        # Entities from this run's extraction win unless the caller opts out.
        if options.use_latest_entities is not False:
            extracted = context.data_of(StepName.EXTRACT_ENTITIES)
            if isinstance(extracted, dict) and extracted.get("entities"):
                return NormalizedEntities.model_validate(extracted["entities"])
        return info.entities
