"""
Domain Layer - Case Data Models

Defines the records the discharge workflow reads and writes: cases,
patients, transcriptions, summaries and scheduled follow-ups.
"""

from vet_discharge.domain.models import (
    Actor,
    CallScheduleOptions,
    Case,
    CaseInfo,
    IngestPayload,
    Patient,
    ScheduledCall,
    ScheduledEmail,
    SummaryRecord,
    Transcription,
)

__all__ = [
    "Actor",
    "CallScheduleOptions",
    "Case",
    "CaseInfo",
    "IngestPayload",
    "Patient",
    "ScheduledCall",
    "ScheduledEmail",
    "SummaryRecord",
    "Transcription",
]
