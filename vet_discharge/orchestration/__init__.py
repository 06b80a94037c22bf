"""
Orchestration - The Discharge Workflow Engine

Runs the fixed discharge DAG against an injected handler registry and
reports every run as one OrchestrationResult.
"""

from vet_discharge.orchestration.handlers import (
    BaseStepHandler,
    HandlerRegistry,
    SeedStep,
    StepContext,
    StepHandler,
)
from vet_discharge.orchestration.orchestrator import DischargeOrchestrator
from vet_discharge.orchestration.plan import ExecutionPlan, StepConfig
from vet_discharge.orchestration.results import (
    OrchestrationResult,
    ResultAggregator,
)
from vet_discharge.orchestration.steps import (
    STEP_DEPENDENCIES,
    STEP_ORDER,
    StepName,
    StepResult,
    StepStatus,
)

__all__ = [
    "BaseStepHandler",
    "DischargeOrchestrator",
    "ExecutionPlan",
    "HandlerRegistry",
    "OrchestrationResult",
    "ResultAggregator",
    "STEP_DEPENDENCIES",
    "STEP_ORDER",
    "SeedStep",
    "StepConfig",
    "StepContext",
    "StepHandler",
    "StepName",
    "StepResult",
    "StepStatus",
]
