from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from ..domain.models import ScheduledCall, ScheduledEmail
from ..infrastructure.database import connection
from ..infrastructure.database.tables import ScheduledCallDBModel, ScheduledEmailDBModel
from .cases import as_utc


# ==============================================================================
# EMAILS
# ==============================================================================


class ScheduledEmailRepository(ABC):
    """Stores discharge emails waiting for delayed delivery."""

    @abstractmethod
    def add(self, email: ScheduledEmail) -> ScheduledEmail:
        pass

    @abstractmethod
    def get(self, email_id: str) -> Optional[ScheduledEmail]:
        pass

    @abstractmethod
    def delete(self, email_id: str) -> bool:
        """Deletes an email. Returns True if found and deleted."""
        pass

    @abstractmethod
    def set_dispatch_message_id(self, email_id: str, message_id: str):
        """Records the dispatcher's message id for the email."""
        pass


class InMemoryScheduledEmailRepository(ScheduledEmailRepository):
    def __init__(self):
        self._store: Dict[str, ScheduledEmail] = {}

    def add(self, email: ScheduledEmail) -> ScheduledEmail:
        stored = replace(email, id=email.id or str(uuid4()))
        self._store[stored.id] = stored
        return stored

    def get(self, email_id: str) -> Optional[ScheduledEmail]:
        return self._store.get(email_id)

    def delete(self, email_id: str) -> bool:
        if email_id in self._store:
            del self._store[email_id]
            return True
        return False

    def set_dispatch_message_id(self, email_id: str, message_id: str):
        email = self._store.get(email_id)
        if email is None:
            raise ValueError(f"Scheduled email {email_id} does not exist.")
        self._store[email_id] = replace(email, dispatch_message_id=message_id)

    def all(self) -> List[ScheduledEmail]:
        return list(self._store.values())


class SQLScheduledEmailRepository(ScheduledEmailRepository):
    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or connection.engine

    def add(self, email: ScheduledEmail) -> ScheduledEmail:
        db_model = ScheduledEmailDBModel(
            user_id=email.user_id,
            case_id=email.case_id,
            recipient_email=email.recipient_email,
            recipient_name=email.recipient_name,
            subject=email.subject,
            html_content=email.html_content,
            text_content=email.text_content,
            scheduled_for=email.scheduled_for,
            status=email.status,
            dispatch_message_id=email.dispatch_message_id,
            created_at=email.created_at,
        )
        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return self._to_domain(db_model)

    def get(self, email_id: str) -> Optional[ScheduledEmail]:
        with Session(self.engine) as db:
            result = db.get(ScheduledEmailDBModel, email_id)
            return self._to_domain(result) if result else None

    def delete(self, email_id: str) -> bool:
        with Session(self.engine) as db:
            result = db.get(ScheduledEmailDBModel, email_id)
            if result:
                db.delete(result)
                db.commit()
                return True
            return False

    def set_dispatch_message_id(self, email_id: str, message_id: str):
        with Session(self.engine) as db:
            result = db.get(ScheduledEmailDBModel, email_id)
            if not result:
                raise ValueError(f"Scheduled email {email_id} does not exist in DB.")
            result.dispatch_message_id = message_id
            db.add(result)
            db.commit()

    @staticmethod
    def _to_domain(row: ScheduledEmailDBModel) -> ScheduledEmail:
        return ScheduledEmail(
            id=row.id,
            user_id=row.user_id,
            case_id=row.case_id,
            recipient_email=row.recipient_email,
            recipient_name=row.recipient_name,
            subject=row.subject,
            html_content=row.html_content,
            text_content=row.text_content,
            scheduled_for=as_utc(row.scheduled_for),
            status=row.status,
            dispatch_message_id=row.dispatch_message_id,
            created_at=as_utc(row.created_at),
        )


# ==============================================================================
# CALLS
# ==============================================================================


class ScheduledCallRepository(ABC):
    """Stores discharge calls waiting to be placed by the voice agent."""

    @abstractmethod
    def add(self, call: ScheduledCall) -> ScheduledCall:
        pass

    @abstractmethod
    def get(self, call_id: str) -> Optional[ScheduledCall]:
        pass

    @abstractmethod
    def get_latest_for_case(self, case_id: str, user_id: str) -> Optional[ScheduledCall]:
        pass

    @abstractmethod
    def save(self, call: ScheduledCall) -> ScheduledCall:
        pass


class InMemoryScheduledCallRepository(ScheduledCallRepository):
    def __init__(self):
        self._store: Dict[str, ScheduledCall] = {}

    def add(self, call: ScheduledCall) -> ScheduledCall:
        stored = replace(call, id=call.id or str(uuid4()))
        self._store[stored.id] = stored
        return stored

    def get(self, call_id: str) -> Optional[ScheduledCall]:
        return self._store.get(call_id)

    def get_latest_for_case(self, case_id: str, user_id: str) -> Optional[ScheduledCall]:
        calls = [c for c in self._store.values() if c.case_id == case_id and c.user_id == user_id]
        if not calls:
            return None
        return max(calls, key=lambda c: c.created_at)

    def save(self, call: ScheduledCall) -> ScheduledCall:
        if call.id not in self._store:
            raise ValueError(f"Scheduled call {call.id} does not exist.")
        self._store[call.id] = call
        return call


class SQLScheduledCallRepository(ScheduledCallRepository):
    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or connection.engine

    def add(self, call: ScheduledCall) -> ScheduledCall:
        db_model = ScheduledCallDBModel(
            user_id=call.user_id,
            case_id=call.case_id,
            customer_phone=call.customer_phone,
            scheduled_for=call.scheduled_for,
            status=call.status,
            dynamic_variables=call.dynamic_variables,
            dispatch_message_id=call.dispatch_message_id,
            created_at=call.created_at,
        )
        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return self._to_domain(db_model)

    def get(self, call_id: str) -> Optional[ScheduledCall]:
        with Session(self.engine) as db:
            result = db.get(ScheduledCallDBModel, call_id)
            return self._to_domain(result) if result else None

    def get_latest_for_case(self, case_id: str, user_id: str) -> Optional[ScheduledCall]:
        with Session(self.engine) as db:
            statement = (
                select(ScheduledCallDBModel)
                .where(ScheduledCallDBModel.case_id == case_id)
                .where(ScheduledCallDBModel.user_id == user_id)
                .order_by(col(ScheduledCallDBModel.created_at).desc())
            )
            result = db.exec(statement).first()
            return self._to_domain(result) if result else None

    def save(self, call: ScheduledCall) -> ScheduledCall:
        with Session(self.engine) as db:
            result = db.get(ScheduledCallDBModel, call.id)
            if not result:
                raise ValueError(f"Scheduled call {call.id} does not exist in DB.")
            result.customer_phone = call.customer_phone
            result.scheduled_for = call.scheduled_for
            result.status = call.status
            result.dynamic_variables = dict(call.dynamic_variables)
            result.dispatch_message_id = call.dispatch_message_id
            db.add(result)
            db.commit()
            db.refresh(result)
            return self._to_domain(result)

    @staticmethod
    def _to_domain(row: ScheduledCallDBModel) -> ScheduledCall:
        return ScheduledCall(
            id=row.id,
            user_id=row.user_id,
            case_id=row.case_id,
            customer_phone=row.customer_phone,
            scheduled_for=as_utc(row.scheduled_for),
            status=row.status,
            dynamic_variables=dict(row.dynamic_variables or {}),
            dispatch_message_id=row.dispatch_message_id,
            created_at=as_utc(row.created_at),
        )
