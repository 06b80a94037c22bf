from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from ..domain.models import SummaryRecord
from ..infrastructure.database import connection
from ..infrastructure.database.tables import DischargeSummaryDBModel
from .cases import as_utc


class SummaryRepository(ABC):
    """Stores generated discharge summaries per case."""

    @abstractmethod
    def add(self, summary: SummaryRecord) -> SummaryRecord:
        """Stores a summary and returns it with its id assigned."""
        pass

    @abstractmethod
    def get(self, summary_id: str) -> Optional[SummaryRecord]:
        pass

    @abstractmethod
    def get_latest(self, case_id: str) -> Optional[SummaryRecord]:
        """The most recently created summary for the case."""
        pass

    @abstractmethod
    def list_for_case(self, case_id: str) -> List[SummaryRecord]:
        """Summaries for the case, newest first."""
        pass


class InMemorySummaryRepository(SummaryRepository):
    def __init__(self):
        self._store: Dict[str, SummaryRecord] = {}

    def add(self, summary: SummaryRecord) -> SummaryRecord:
        stored = replace(summary, id=summary.id or str(uuid4()))
        self._store[stored.id] = stored
        return stored

    def get(self, summary_id: str) -> Optional[SummaryRecord]:
        return self._store.get(summary_id)

    def get_latest(self, case_id: str) -> Optional[SummaryRecord]:
        summaries = self.list_for_case(case_id)
        return summaries[0] if summaries else None

    def list_for_case(self, case_id: str) -> List[SummaryRecord]:
        found = [s for s in self._store.values() if s.case_id == case_id]
        return sorted(found, key=lambda s: s.created_at, reverse=True)


class SQLSummaryRepository(SummaryRepository):
    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or connection.engine

    def add(self, summary: SummaryRecord) -> SummaryRecord:
        db_model = DischargeSummaryDBModel(
            case_id=summary.case_id,
            user_id=summary.user_id,
            content=summary.content,
            template_id=summary.template_id,
            created_at=summary.created_at,
        )
        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return self._to_domain(db_model)

    def get(self, summary_id: str) -> Optional[SummaryRecord]:
        with Session(self.engine) as db:
            result = db.get(DischargeSummaryDBModel, summary_id)
            return self._to_domain(result) if result else None

    def get_latest(self, case_id: str) -> Optional[SummaryRecord]:
        summaries = self.list_for_case(case_id)
        return summaries[0] if summaries else None

    def list_for_case(self, case_id: str) -> List[SummaryRecord]:
        with Session(self.engine) as db:
            statement = (
                select(DischargeSummaryDBModel)
                .where(DischargeSummaryDBModel.case_id == case_id)
                .order_by(col(DischargeSummaryDBModel.created_at).desc())
            )
            return [self._to_domain(row) for row in db.exec(statement).all()]

    @staticmethod
    def _to_domain(row: DischargeSummaryDBModel) -> SummaryRecord:
        return SummaryRecord(
            id=row.id,
            case_id=row.case_id,
            user_id=row.user_id,
            content=row.content,
            template_id=row.template_id,
            created_at=as_utc(row.created_at),
        )
