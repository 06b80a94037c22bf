"""
Vet Discharge

Orchestrates the post-visit discharge workflow of a veterinary case:
ingest clinical data, extract entities, write the discharge summary, and
schedule the follow-up email and voice call, as one dependency-aware run.
"""

from vet_discharge.domain import (
    Actor,
    Case,
    CaseInfo,
    Patient,
)
from vet_discharge.schemas import (
    CaseSource,
    EmailContent,
    NormalizedEntities,
    OrchestrationOptions,
    OrchestrationRequest,
    StepsConfig,
)
from vet_discharge.orchestration import (
    BaseStepHandler,
    DischargeOrchestrator,
    ExecutionPlan,
    OrchestrationResult,
    StepContext,
    StepHandler,
    StepName,
    StepResult,
    StepStatus,
)

__all__ = [
    # Domain Layer
    "Actor",
    "Case",
    "CaseInfo",
    "Patient",
    # Schemas
    "CaseSource",
    "EmailContent",
    "NormalizedEntities",
    "OrchestrationOptions",
    "OrchestrationRequest",
    "StepsConfig",
    # Orchestration Engine
    "BaseStepHandler",
    "DischargeOrchestrator",
    "ExecutionPlan",
    "OrchestrationResult",
    "StepContext",
    "StepHandler",
    "StepName",
    "StepResult",
    "StepStatus",
]
