import copy
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

# Domain & Infra Imports
from ..domain.models import Case, Patient, Transcription, utcnow
from ..infrastructure.database import connection
from ..infrastructure.database.tables import (
    CaseDBModel,
    PatientDBModel,
    TranscriptionDBModel,
)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored times are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CaseRepository(ABC):
    """
    Defines how the application accesses cases, their patient and their
    transcriptions. Lets storage change (Memory -> SQL -> API) without
    touching the case service or the step handlers.
    """

    @abstractmethod
    def create(self, case: Case) -> Case:
        """Stores a new case and returns it with its id assigned."""
        pass

    @abstractmethod
    def get(self, case_id: str) -> Optional[Case]:
        pass

    @abstractmethod
    def save(self, case: Case) -> Case:
        """Persists changes to an existing case."""
        pass

    @abstractmethod
    def find_recent_for_patient(
        self, patient_name: str, owner_name: Optional[str], since: datetime
    ) -> Optional[Case]:
        """Most recent ongoing/completed case for the patient created after `since`."""
        pass

    @abstractmethod
    def add_patient(self, patient: Patient) -> Patient:
        pass

    @abstractmethod
    def get_patient(self, case_id: str) -> Optional[Patient]:
        pass

    @abstractmethod
    def add_transcription(self, transcription: Transcription) -> Transcription:
        pass

    @abstractmethod
    def list_transcriptions(self, case_id: str) -> List[Transcription]:
        """Transcriptions for the case, newest first."""
        pass


class InMemoryCaseRepository(CaseRepository):
    """
    Uses in-memory dictionaries for testing/dev purposes.
    """

    def __init__(self):
        self._cases: Dict[str, Case] = {}
        self._patients: Dict[str, Patient] = {}
        self._transcriptions: List[Transcription] = []

    def create(self, case: Case) -> Case:
        stored = replace(case, id=case.id or str(uuid4()))
        self._cases[stored.id] = stored
        return copy.deepcopy(stored)

    def get(self, case_id: str) -> Optional[Case]:
        case = self._cases.get(case_id)
        return copy.deepcopy(case) if case else None

    def save(self, case: Case) -> Case:
        if case.id not in self._cases:
            raise ValueError(f"Case {case.id} does not exist.")
        self._cases[case.id] = copy.deepcopy(case)
        return case

    def find_recent_for_patient(
        self, patient_name: str, owner_name: Optional[str], since: datetime
    ) -> Optional[Case]:
        matches = [
            case
            for case in self._cases.values()
            if case.status in ("ongoing", "completed")
            and case.created_at >= since
            and self._patient_matches(case.id, patient_name, owner_name)
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda c: c.created_at))

    def _patient_matches(self, case_id: str, patient_name: str, owner_name: Optional[str]) -> bool:
        patient = self._patients.get(case_id)
        return bool(patient) and patient.name == patient_name and patient.owner_name == owner_name

    def add_patient(self, patient: Patient) -> Patient:
        stored = replace(patient, id=patient.id or str(uuid4()))
        self._patients[stored.case_id] = stored
        return stored

    def get_patient(self, case_id: str) -> Optional[Patient]:
        return self._patients.get(case_id)

    def add_transcription(self, transcription: Transcription) -> Transcription:
        stored = replace(transcription, id=transcription.id or str(uuid4()))
        self._transcriptions.append(stored)
        return stored

    def list_transcriptions(self, case_id: str) -> List[Transcription]:
        found = [t for t in self._transcriptions if t.case_id == case_id]
        return sorted(found, key=lambda t: t.created_at, reverse=True)


class SQLCaseRepository(CaseRepository):
    """
    SQL storage (Postgres with JSONB in production, SQLite in tests).
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or connection.engine

    def create(self, case: Case) -> Case:
        db_model = CaseDBModel(
            user_id=case.user_id,
            status=case.status,
            type=case.type,
            source=case.source,
            case_metadata=case.metadata,
            entity_extraction=case.entity_extraction,
            created_at=case.created_at,
            updated_at=case.updated_at,
        )
        if case.id:
            db_model.id = case.id

        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return self._to_domain(db_model)

    def get(self, case_id: str) -> Optional[Case]:
        with Session(self.engine) as db:
            result = db.get(CaseDBModel, case_id)
            return self._to_domain(result) if result else None

    def save(self, case: Case) -> Case:
        with Session(self.engine) as db:
            result = db.get(CaseDBModel, case.id)
            if not result:
                raise ValueError(f"Case {case.id} does not exist in DB.")

            # JSON columns are reassigned so the change is detected.
            result.status = case.status
            result.type = case.type
            result.case_metadata = dict(case.metadata)
            result.entity_extraction = dict(case.entity_extraction) if case.entity_extraction else None
            result.updated_at = utcnow()
            db.add(result)
            db.commit()
            db.refresh(result)
            return self._to_domain(result)

    def find_recent_for_patient(
        self, patient_name: str, owner_name: Optional[str], since: datetime
    ) -> Optional[Case]:
        with Session(self.engine) as db:
            statement = (
                select(CaseDBModel)
                .join(PatientDBModel, PatientDBModel.case_id == CaseDBModel.id)
                .where(PatientDBModel.name == patient_name)
                .where(PatientDBModel.owner_name == owner_name)
                .where(col(CaseDBModel.status).in_(["ongoing", "completed"]))
                .where(CaseDBModel.created_at >= since)
                .order_by(col(CaseDBModel.created_at).desc())
            )
            result = db.exec(statement).first()
            return self._to_domain(result) if result else None

    def add_patient(self, patient: Patient) -> Patient:
        db_model = PatientDBModel(
            case_id=patient.case_id,
            user_id=patient.user_id,
            name=patient.name,
            species=patient.species,
            breed=patient.breed,
            sex=patient.sex,
            weight_kg=patient.weight_kg,
            owner_name=patient.owner_name,
            owner_phone=patient.owner_phone,
            owner_email=patient.owner_email,
        )
        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return replace(patient, id=db_model.id)

    def get_patient(self, case_id: str) -> Optional[Patient]:
        with Session(self.engine) as db:
            statement = select(PatientDBModel).where(PatientDBModel.case_id == case_id)
            result = db.exec(statement).first()
            if not result:
                return None
            return Patient(
                id=result.id,
                case_id=result.case_id,
                user_id=result.user_id,
                name=result.name,
                species=result.species,
                breed=result.breed,
                sex=result.sex,
                weight_kg=result.weight_kg,
                owner_name=result.owner_name,
                owner_phone=result.owner_phone,
                owner_email=result.owner_email,
            )

    def add_transcription(self, transcription: Transcription) -> Transcription:
        db_model = TranscriptionDBModel(
            case_id=transcription.case_id,
            user_id=transcription.user_id,
            transcript=transcription.transcript,
            created_at=transcription.created_at,
        )
        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return replace(transcription, id=db_model.id)

    def list_transcriptions(self, case_id: str) -> List[Transcription]:
        with Session(self.engine) as db:
            statement = (
                select(TranscriptionDBModel)
                .where(TranscriptionDBModel.case_id == case_id)
                .order_by(col(TranscriptionDBModel.created_at).desc())
            )
            return [
                Transcription(
                    id=row.id,
                    case_id=row.case_id,
                    user_id=row.user_id,
                    transcript=row.transcript,
                    created_at=as_utc(row.created_at),
                )
                for row in db.exec(statement).all()
            ]

    @staticmethod
    def _to_domain(row: CaseDBModel) -> Case:
        return Case(
            id=row.id,
            user_id=row.user_id,
            status=row.status,
            type=row.type,
            source=row.source,
            metadata=dict(row.case_metadata or {}),
            entity_extraction=row.entity_extraction,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )
