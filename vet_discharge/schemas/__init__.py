"""
Schemas - Request and Structured Output Models

Defines the Pydantic models for orchestration requests and for structured
LLM outputs (normalized clinical entities, discharge summary drafts).
"""

from vet_discharge.schemas.entities import (
    DischargeSummaryDraft,
    NormalizedEntities,
)
from vet_discharge.schemas.orchestration import (
    CaseSource,
    EmailContent,
    OrchestrationOptions,
    OrchestrationRequest,
    StepsConfig,
)

__all__ = [
    "CaseSource",
    "DischargeSummaryDraft",
    "EmailContent",
    "NormalizedEntities",
    "OrchestrationOptions",
    "OrchestrationRequest",
    "StepsConfig",
]
