"""
jpql_lab.db.engine

SQLAlchemy engine factory for a persistence unit.

Responsibilities:
- Create one engine per factory from the unit's database URL.
- Map in-memory SQLite onto a named shared-cache database so every entity manager
  gets its own connection (and its own transaction) to the same data.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import URL, Engine, event
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool

from jpql_lab.settings import PersistenceUnit


def is_in_memory(database_url: str | URL) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_engine(unit: PersistenceUnit) -> Engine:
    url = make_url(unit.database_url)
    if not is_in_memory(url):
        return sa_create_engine(url, pool_pre_ping=True)

    # A fresh name per engine: two factories never share an in-memory database.
    shared = url.set(
        database=f"file:jpql-{uuid.uuid4().hex}",
        query={"mode": "memory", "cache": "shared", "uri": "true"},
    )
    engine = sa_create_engine(
        shared,
        poolclass=QueuePool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _read_uncommitted)
    return engine


def _read_uncommitted(dbapi_connection: Any, connection_record: Any) -> None:
    # Shared-cache readers otherwise fail with "table is locked" while a writer is open.
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA read_uncommitted = 1")
    finally:
        cursor.close()


# --- Module Notes -----------------------------------------------------------
# The in-memory database lives as long as one connection to it stays open; the factory
# holds that connection until it is closed. Readers see flushed but uncommitted rows of
# other managers there, file databases keep full isolation.
