"""
Dependency Injection Wiring (Composition Root).

This module acts as the central "container" for the application's services.
It is responsible for:
1. Instantiating the core Singleton services (Repositories, Adapters, Dispatcher).
2. Wiring them together (e.g., injecting the Repositories and LLM Adapter
   into the step handlers and the case service).
3. Managing the lifecycle of these objects using @lru_cache to ensure
   they are created only once per application process.

The OpenAI client is only built when a handler first needs the model, so the
API starts (and serves requests that need no AI step) without an API key.
"""

import logging
from functools import lru_cache
from typing import List, Optional, Type

from fastapi import Header, HTTPException, status

from ..config import settings
from ..domain.models import Actor
from ..llm.adapters.openai_adapter import OpenAIAdapter
from ..llm.interface import LLMProvider, T
from ..orchestration.orchestrator import DischargeOrchestrator
from ..repositories.cases import CaseRepository, SQLCaseRepository
from ..repositories.schedules import (
    SQLScheduledCallRepository,
    SQLScheduledEmailRepository,
    ScheduledCallRepository,
    ScheduledEmailRepository,
)
from ..repositories.summaries import SQLSummaryRepository, SummaryRepository
from ..services.case_service import CaseService, RepositoryCaseService
from ..services.dispatch import JobDispatcher, QStashDispatcher
from ..services.entity_extraction import EntityExtractor
from ..services.summary_generation import SummaryGenerator
from ..steps import build_default_registry

logger = logging.getLogger(__name__)


class LazyOpenAIProvider(LLMProvider):
    """Builds the OpenAIAdapter on first use."""

    def __init__(self):
        self._adapter: Optional[OpenAIAdapter] = None

    async def generate_structured_output(
        self, messages: List[dict], response_model: Type[T], temperature: Optional[float] = None
    ) -> T:
        if self._adapter is None:
            self._adapter = OpenAIAdapter(
                api_key=settings.OPENAI_API_KEY,
                model_name=settings.OPENAI_MODEL,
                temperature=settings.LLM_TEMPERATURE,
                max_retries=settings.MAX_RETRIES,
            )
        return await self._adapter.generate_structured_output(messages, response_model, temperature)


# LLM Provider (Singleton)
@lru_cache()
def get_llm_provider() -> LLMProvider:
    return LazyOpenAIProvider()


# Repositories (Singletons)
@lru_cache()
def get_case_repository() -> CaseRepository:
    return SQLCaseRepository()


@lru_cache()
def get_summary_repository() -> SummaryRepository:
    return SQLSummaryRepository()


@lru_cache()
def get_email_repository() -> ScheduledEmailRepository:
    return SQLScheduledEmailRepository()


@lru_cache()
def get_call_repository() -> ScheduledCallRepository:
    return SQLScheduledCallRepository()


# Delayed-job dispatcher (Singleton)
@lru_cache()
def get_dispatcher() -> JobDispatcher:
    return QStashDispatcher()


@lru_cache()
def get_entity_extractor() -> EntityExtractor:
    return EntityExtractor(get_llm_provider())


# The Case Service (Singleton Service)
@lru_cache()
def get_case_service() -> CaseService:
    return RepositoryCaseService(
        case_repository=get_case_repository(),
        summary_repository=get_summary_repository(),
        call_repository=get_call_repository(),
        extractor=get_entity_extractor(),
        dispatcher=get_dispatcher(),
    )


# The Orchestrator (Singleton Service)
@lru_cache()
def get_orchestrator() -> DischargeOrchestrator:
    """
    Injects the default step handlers and the case service into the engine.
    """
    handlers = build_default_registry(
        extractor=get_entity_extractor(),
        generator=SummaryGenerator(get_llm_provider()),
        summary_repository=get_summary_repository(),
        email_repository=get_email_repository(),
        dispatcher=get_dispatcher(),
    )
    return DischargeOrchestrator(handlers=handlers, case_service=get_case_service())


def get_actor(authorization: Optional[str] = Header(None)) -> Actor:
    """
    Resolves the bearer token to the user a run acts for.
    Tokens are configured in settings.API_TOKENS (token -> user id).
    """
    scheme, _, token = (authorization or "").partition(" ")
    user_id = settings.API_TOKENS.get(token.strip()) if scheme.lower() == "bearer" else None
    if not user_id:
        logger.warning("Rejected discharge request without a valid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(user_id=user_id)
