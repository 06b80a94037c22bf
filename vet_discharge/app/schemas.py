"""
API Layer - Response Schemas

Pydantic models for the discharge API responses.
"""

from typing import List

from pydantic import BaseModel

from ..orchestration.results import OrchestrationResult


class OrchestrateResponse(BaseModel):
    success: bool
    data: OrchestrationResult


class HealthResponse(BaseModel):
    status: str
    service: str
    steps: List[str]
