from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from .db import SessionLocal
from .db_models import UserDB
from .models import LocalUserRecord


class UserRepository(Protocol):
    def upsert(self, user: LocalUserRecord) -> LocalUserRecord: ...

    def get(self, xero_user_id: str) -> Optional[LocalUserRecord]: ...

    def delete(self, xero_user_id: str) -> bool: ...


class InMemoryUserRepository:
    def __init__(self) -> None:
        self._by_id: Dict[str, LocalUserRecord] = {}

    def upsert(self, user: LocalUserRecord) -> LocalUserRecord:
        existing = self._by_id.get(user.xero_user_id)
        if existing:
            user.created_at = existing.created_at
        self._by_id[user.xero_user_id] = user
        return user

    def get(self, xero_user_id: str) -> Optional[LocalUserRecord]:
        return self._by_id.get(xero_user_id)

    def delete(self, xero_user_id: str) -> bool:
        return self._by_id.pop(xero_user_id, None) is not None


def _to_record(row: UserDB) -> LocalUserRecord:
    return LocalUserRecord(
        xero_user_id=row.xero_user_id,
        email=row.email,
        session_id=row.session_id,
        name=row.name,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
    )


class DbUserRepository:
    """SQLAlchemy-backed user table keyed by the Xero user id."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def upsert(self, user: LocalUserRecord) -> LocalUserRecord:
        session = self._session_factory()
        try:
            row = session.get(UserDB, user.xero_user_id)
            if row is None:
                row = UserDB(xero_user_id=user.xero_user_id)
            row.email = user.email
            row.session_id = user.session_id
            row.name = user.name
            row.first_name = user.first_name
            row.last_name = user.last_name
            row.updated_at = datetime.now(UTC)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(row)
        finally:
            session.close()

    def get(self, xero_user_id: str) -> Optional[LocalUserRecord]:
        session = self._session_factory()
        try:
            row = session.get(UserDB, xero_user_id)
            return _to_record(row) if row is not None else None
        finally:
            session.close()

    def delete(self, xero_user_id: str) -> bool:
        session = self._session_factory()
        try:
            row = session.get(UserDB, xero_user_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
        finally:
            session.close()


users_repo: UserRepository = DbUserRepository()
