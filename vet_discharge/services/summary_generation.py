"""
Summary Generation - Discharge Instructions for the Pet Owner

Turns a case's normalized entities and patient record into plain-text
discharge instructions. The LLM writes the text; the prompt pins it to the
clinical facts on the case.
"""

import logging
from typing import Optional

from ..domain.models import Patient
from ..llm.interface import LLMProvider, build_messages
from ..prompts.loader import render
from ..prompts.templates import Template
from ..schemas.entities import DischargeSummaryDraft, NormalizedEntities

logger = logging.getLogger(__name__)


class SummaryGenerator:
    def __init__(self, llm_provider: LLMProvider):
        self.llm = llm_provider

    async def generate(
        self,
        entities: Optional[NormalizedEntities],
        patient: Optional[Patient] = None,
        template_id: Optional[str] = None,
    ) -> str:
        patient_name = _first(patient.name if patient else None, entities.patient.name if entities else None)
        system_prompt = render(
            Template.DISCHARGE_SUMMARY,
            patient_name=patient_name or "the patient",
            species=_first(patient.species if patient else None, entities.patient.species if entities else None),
            breed=_first(patient.breed if patient else None, entities.patient.breed if entities else None),
            owner_name=_first(
                patient.owner_name if patient else None, entities.patient.owner.name if entities else None
            ),
            entities=entities,
            template_id=template_id,
        )
        messages = build_messages(system_prompt, "Write the discharge instructions now.")

        draft = await self.llm.generate_structured_output(
            messages=messages, response_model=DischargeSummaryDraft
        )
        logger.info(f"Generated discharge summary ({len(draft.content)} chars) for {patient_name!r}")
        return draft.content.strip()


def _first(*values: Optional[str]) -> Optional[str]:
    """First value that is set and not the 'unknown' placeholder."""
    for value in values:
        if value and value.strip() and value.lower() != "unknown":
            return value
    return None
