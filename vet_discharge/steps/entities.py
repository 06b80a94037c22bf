import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from ..config import settings
from ..domain.models import CaseInfo
from ..orchestration.handlers import BaseStepHandler, StepContext
from ..orchestration.steps import StepName
from ..schemas.entities import NormalizedEntities
from ..schemas.orchestration import CaseSource, ExtractEntitiesStepOptions
from ..services.entity_extraction import (
    EntityExtractor,
    enrich_from_idexx_metadata,
    is_euthanasia_case,
    strip_html,
)
from ..services.exceptions import EuthanasiaCaseError
from .common import get_case_id, load_case, require_case_service

logger = logging.getLogger(__name__)

IDEXX_SOURCES = (CaseSource.IDEXX_NEO.value, CaseSource.IDEXX_EXTENSION.value)

SOURCE_EXISTING = "existing"
SOURCE_TRANSCRIPTION = "transcription"
SOURCE_IDEXX_NOTES = "idexx_consultation_notes"


class ExtractEntitiesStep(BaseStepHandler):
    """
    Produces NormalizedEntities for the case.

    Entities extracted at ingest time are reused unless forceRefresh is set.
    Otherwise the latest transcription is extracted, falling back to the
    IDEXX consultation notes for IDEXX cases. Too little text completes the
    step without entities so later steps use the stored patient record.
    """

    step = StepName.EXTRACT_ENTITIES

    def __init__(self, extractor: EntityExtractor, min_text_length: int = settings.MIN_EXTRACTION_TEXT_LENGTH):
        self.extractor = extractor
        self.min_text_length = min_text_length

    async def run(self, context: StepContext) -> Dict[str, Any]:
        case_id = get_case_id(context, "entity extraction")
        info = await load_case(context, case_id)

        options = context.options_for(self.step)
        force_refresh = isinstance(options, ExtractEntitiesStepOptions) and options.force_refresh

        if not force_refresh:
            existing = _usable_entities(info.case.entity_extraction)
            if existing is not None:
                logger.info(f"Reusing pre-extracted entities for case {case_id}")
                return {
                    "caseId": case_id,
                    "entities": existing.model_dump(mode="json"),
                    "source": SOURCE_EXISTING,
                }

        text, source = _extraction_text(info)

        if is_euthanasia_case(text, info.case.metadata):
            logger.warning(f"Euthanasia case detected, blocking discharge for case {case_id}")
            raise EuthanasiaCaseError()

        if not text or len(text) < self.min_text_length:
            logger.warning(
                f"Minimal text for case {case_id} ({len(text or '')} chars), skipping extraction"
            )
            return {
                "caseId": case_id,
                "entities": None,
                "source": source,
                "skipped": True,
                "reason": "Minimal text - using database patient data",
            }

        entities = await self.extractor.extract(text, input_type=source, source=info.case.source)

        case_service = require_case_service(context)
        if info.patient:
            case_service.enrich_entities_with_patient(entities, info.patient)
        enrich_from_idexx_metadata(entities, info.case.idexx)

        await case_service.save_entities(case_id, entities)
        return {"caseId": case_id, "entities": entities.model_dump(mode="json"), "source": source}


def _usable_entities(raw: Optional[Dict[str, Any]]) -> Optional[NormalizedEntities]:
    if not raw:
        return None
    try:
        entities = NormalizedEntities.model_validate(raw)
    except ValidationError:
        return None
    return entities if entities.is_usable else None


def _extraction_text(info: CaseInfo) -> Tuple[Optional[str], str]:
    transcription = info.latest_transcription
    if transcription and transcription.transcript:
        return transcription.transcript, SOURCE_TRANSCRIPTION

    if info.case.source in IDEXX_SOURCES:
        notes = info.case.idexx.get("consultation_notes")
        if isinstance(notes, str) and notes:
            return strip_html(notes), SOURCE_IDEXX_NOTES

    return None, SOURCE_TRANSCRIPTION
