"""
Database Table Definitions.

This module defines the SQL schema using SQLModel.
We use the 'DBModel' suffix to distinguish these persistence models
from the domain dataclasses (Case, Patient, ScheduledEmail, ...).

JSON columns are JSONB on Postgres and plain JSON elsewhere (SQLite in tests).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def _json_column(name: Optional[str] = None, nullable: bool = False) -> Column:
    json_type = JSON().with_variant(JSONB(), "postgresql")
    if name:
        return Column(name, json_type, nullable=nullable)
    return Column(json_type, nullable=nullable)


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CaseDBModel(SQLModel, table=True):
    """
    Persistence model for clinical cases.
    Maps 1-to-1 with the 'cases' table.
    """

    __tablename__ = "cases"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    status: str = Field(default="ongoing")
    type: str = Field(default="checkup")
    source: str

    # 'metadata' is reserved on SQLModel classes, so the attribute is renamed.
    case_metadata: Dict[str, Any] = Field(
        default_factory=dict, sa_column=_json_column("metadata")
    )
    entity_extraction: Optional[Dict[str, Any]] = Field(default=None, sa_column=_json_column(nullable=True))

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class PatientDBModel(SQLModel, table=True):
    __tablename__ = "patients"

    id: str = Field(default_factory=_new_id, primary_key=True)
    case_id: str = Field(foreign_key="cases.id", index=True)
    user_id: Optional[str] = None
    name: str
    species: Optional[str] = None
    breed: Optional[str] = None
    sex: Optional[str] = None
    weight_kg: Optional[float] = None
    owner_name: Optional[str] = Field(default=None, index=True)
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None


class TranscriptionDBModel(SQLModel, table=True):
    __tablename__ = "transcriptions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    case_id: str = Field(foreign_key="cases.id", index=True)
    user_id: Optional[str] = None
    transcript: Optional[str] = None
    processing_status: str = Field(default="completed")
    created_at: datetime = Field(default_factory=_utcnow)


class DischargeSummaryDBModel(SQLModel, table=True):
    __tablename__ = "discharge_summaries"

    id: str = Field(default_factory=_new_id, primary_key=True)
    case_id: str = Field(foreign_key="cases.id", index=True)
    user_id: Optional[str] = None
    content: str
    template_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ScheduledEmailDBModel(SQLModel, table=True):
    __tablename__ = "scheduled_discharge_emails"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    case_id: Optional[str] = Field(default=None, index=True)
    recipient_email: str
    recipient_name: Optional[str] = None
    subject: str
    html_content: str
    text_content: str
    scheduled_for: datetime
    status: str = Field(default="queued")
    dispatch_message_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ScheduledCallDBModel(SQLModel, table=True):
    __tablename__ = "scheduled_discharge_calls"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    case_id: str = Field(index=True)
    customer_phone: str
    scheduled_for: datetime
    status: str = Field(default="queued")

    # Variables handed to the voice agent (pet name, clinic, summary, ...).
    dynamic_variables: Dict[str, Any] = Field(default_factory=dict, sa_column=_json_column())

    dispatch_message_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
