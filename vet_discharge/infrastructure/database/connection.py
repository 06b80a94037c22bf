"""
Database Connection Manager.

This module handles the low-level details of connecting to the database.
It exposes the SQLModel engine which will be used by the Repositories.
"""

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from ...config import settings


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # SQLite connections are shared across the event loop's worker threads.
        connect_args["check_same_thread"] = False
    # echo=False in production to avoid leaking clinical data in logs
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine(settings.DATABASE_URL)


def init_db(target: Engine = engine):
    """
    Idempotent initialization.
    Creates tables if they do not exist.
    """
    # Registers the table models on SQLModel.metadata.
    from . import tables  # noqa: F401

    SQLModel.metadata.create_all(target)
