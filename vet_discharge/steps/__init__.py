"""
Discharge Step Handlers

One handler per StepName. build_default_registry wires them to their
collaborators; the Orchestrator only ever sees the resulting mapping.
"""

from typing import Dict

from ..orchestration.handlers import StepHandler
from ..orchestration.steps import StepName
from ..repositories.schedules import ScheduledEmailRepository
from ..repositories.summaries import SummaryRepository
from ..services.dispatch import JobDispatcher
from ..services.entity_extraction import EntityExtractor
from ..services.summary_generation import SummaryGenerator
from .call import ScheduleCallStep
from .email import PrepareEmailStep, ScheduleEmailStep
from .entities import ExtractEntitiesStep
from .ingest import IngestStep
from .summary import GenerateSummaryStep


def build_default_registry(
    extractor: EntityExtractor,
    generator: SummaryGenerator,
    summary_repository: SummaryRepository,
    email_repository: ScheduledEmailRepository,
    dispatcher: JobDispatcher,
) -> Dict[StepName, StepHandler]:
    return {
        StepName.INGEST: IngestStep(),
        StepName.EXTRACT_ENTITIES: ExtractEntitiesStep(extractor),
        StepName.GENERATE_SUMMARY: GenerateSummaryStep(generator, summary_repository),
        StepName.PREPARE_EMAIL: PrepareEmailStep(summary_repository),
        StepName.SCHEDULE_EMAIL: ScheduleEmailStep(email_repository, dispatcher),
        StepName.SCHEDULE_CALL: ScheduleCallStep(),
    }


__all__ = [
    "build_default_registry",
    "IngestStep",
    "ExtractEntitiesStep",
    "GenerateSummaryStep",
    "PrepareEmailStep",
    "ScheduleEmailStep",
    "ScheduleCallStep",
]
