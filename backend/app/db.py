from __future__ import annotations

import logging
import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


def _build_database_url() -> str:
    """Prefer explicit DATABASE_URL; otherwise build one from DB_* parts."""
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    db_name = os.getenv("DB_NAME", "postgres")
    port = os.getenv("DB_PORT", "5432")

    if user and password and host:
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{db_name}"

    return "sqlite:///./app.db"


DATABASE_URL = _build_database_url()

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    # Importing here avoids circular imports at module load time.
    from . import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logging.getLogger(__name__).info(
        "init_db_complete",
        extra={"sqlite": DATABASE_URL.startswith("sqlite")},
    )
