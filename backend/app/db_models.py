from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from .db import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserDB(Base):
    """Local projection of the Xero identity that signed in."""

    __tablename__ = "users"

    xero_user_id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    session_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
