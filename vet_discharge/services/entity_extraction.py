"""
Entity Extraction - Clinical Text and PIMS Data to NormalizedEntities

Two ways into the same NormalizedEntities shape:
1. AI extraction of free text (transcripts, clinical notes, IDEXX
   consultation notes) through the LLMProvider.
2. Deterministic mapping of structured IDEXX appointment payloads.

Also holds the text helpers the extractEntities step relies on: HTML
stripping for IDEXX notes and euthanasia detection.
"""

import logging
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup, Comment
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from ..llm.interface import LLMProvider, LLMProviderError, StructuredOutputError, build_messages
from ..prompts.loader import render
from ..prompts.templates import Template
from ..schemas.entities import (
    VALID_SPECIES,
    ExtractionConfidence,
    NormalizedEntities,
    OwnerEntity,
    PatientEntity,
)
from .exceptions import EntityExtractionError

logger = logging.getLogger(__name__)

_EUTHANASIA_TERMS = ("euthanasia", "euthanize")

# Model output that failed to parse; another sample may succeed.
RETRYABLE_ERRORS = (StructuredOutputError, ValidationError)


class EntityExtractor:
    def __init__(self, llm_provider: LLMProvider, attempts: int = 2):
        self.llm = llm_provider
        self.attempts = max(1, attempts)

    async def extract(
        self, text: str, input_type: Optional[str] = None, source: Optional[str] = None
    ) -> NormalizedEntities:
        """
        Extracts NormalizedEntities from clinical text.

        A response that does not parse into NormalizedEntities is retried
        (one retry by default). Provider failures are not retried here, the
        client has already retried them. Either way the last failure is
        raised as EntityExtractionError.
        """
        if not text or not text.strip():
            raise EntityExtractionError("No clinical text to extract entities from")

        system_prompt = render(Template.ENTITY_EXTRACTION, input_type=input_type, source=source)
        messages = build_messages(system_prompt, text)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    entities = await self.llm.generate_structured_output(
                        messages=messages, response_model=NormalizedEntities
                    )
        except (LLMProviderError, ValidationError) as e:
            raise EntityExtractionError(f"Entity extraction failed: {e}") from e

        logger.info(
            f"Extracted entities (attempt {attempt.retry_state.attempt_number}): "
            f"patient={entities.patient.name!r}, confidence={entities.confidence.overall}"
        )
        return entities


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Entity extraction attempt {retry_state.attempt_number} failed: {retry_state.outcome.exception()}"
    )


# ==============================================================================
# TEXT HELPERS
# ==============================================================================


def strip_html(value: str) -> str:
    """Flattens HTML consultation notes into a single line of plain text."""
    soup = BeautifulSoup(value, "html.parser")
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    # split() also breaks on non-breaking spaces.
    return " ".join(soup.get_text(separator=" ", strip=True).split())


def is_euthanasia_case(
    text: Optional[str], metadata: Optional[Dict[str, Any]] = None
) -> bool:
    """
    True if the case is a euthanasia, judged from the clinical text, the
    ingest-time case type, or the IDEXX appointment type.
    """
    metadata = metadata or {}
    entities = metadata.get("entities") or {}
    if isinstance(entities, dict) and (entities.get("case_type") or entities.get("caseType")) == "euthanasia":
        return True

    lowered = (text or "").lower()
    if any(term in lowered for term in _EUTHANASIA_TERMS):
        return True

    idexx = metadata.get("idexx") or {}
    appointment_type = str(idexx.get("appointment_type") or "").lower()
    return "euthanasia" in appointment_type


# ==============================================================================
# IDEXX MAPPING
# ==============================================================================


def _str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) and value.strip() else None


def map_idexx_to_entities(data: Dict[str, Any]) -> NormalizedEntities:
    """
    Maps an IDEXX Neo appointment payload onto NormalizedEntities.

    The mapping carries patient and owner identity only; clinical detail
    comes later from the consultation notes. Confidence is fixed at 0.5.
    """
    species = (_str(data, "species") or "unknown").lower()
    if species not in VALID_SPECIES:
        species = "unknown"

    first_name = _str(data, "client_first_name")
    last_name = _str(data, "client_last_name")
    if first_name and last_name:
        owner_name = f"{first_name} {last_name}"
    else:
        owner_name = _str(data, "owner_name") or "Unknown"

    return NormalizedEntities(
        patient=PatientEntity(
            name=_str(data, "pet_name") or "Unknown",
            species=species,
            breed=_str(data, "breed"),
            owner=OwnerEntity(
                name=owner_name,
                phone=_str(data, "phone_number") or _str(data, "mobile_number"),
                email=_str(data, "email"),
            ),
        ),
        case_type="checkup",
        confidence=ExtractionConfidence(overall=0.5, patient=0.5, clinical=0.5),
    )


def looks_like_entities(data: Dict[str, Any]) -> bool:
    """Structured payloads that already carry NormalizedEntities skip the mapping."""
    return isinstance(data.get("patient"), dict) and isinstance(data.get("clinical"), dict)


def enrich_from_idexx_metadata(entities: NormalizedEntities, idexx: Dict[str, Any]) -> NormalizedEntities:
    """
    Fills a missing patient name (and owner name) from the IDEXX metadata
    stored on the case. Entities are modified in place and returned.
    """
    patient = entities.patient
    if patient.name and patient.name.strip() and patient.name != "unknown":
        return entities

    pet_name = _str(idexx, "pet_name")
    if pet_name:
        patient.name = pet_name
        logger.info(f"Enriched patient name from IDEXX metadata: {pet_name!r}")

    if not patient.owner.name or patient.owner.name == "unknown":
        first_name = _str(idexx, "client_first_name")
        last_name = _str(idexx, "client_last_name")
        owner_name = _str(idexx, "owner_name")
        if owner_name:
            patient.owner.name = owner_name
        elif first_name and last_name:
            patient.owner.name = f"{first_name} {last_name}"
    return entities
