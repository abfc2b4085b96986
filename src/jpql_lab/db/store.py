"""
jpql_lab.db.store

Row-level access to entity tables.

Responsibilities:
- Insert, update, delete and select rows for one table mapping.
- Log statements when the unit enables `show_sql`.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Connection, delete, func, insert, select, update
from sqlalchemy.sql import Executable

from jpql_lab.db.schema import DISCRIMINATOR, TableMapping
from jpql_lab.observability.logging import get_logger
from jpql_lab.persistence.mapping import EntityMeta

log = get_logger(__name__)


class RowStore:
    def __init__(self, conn: Connection, *, show_sql: bool = False) -> None:
        self._conn = conn
        self._show_sql = show_sql

    def _execute(self, stmt: Executable, params: Any = None):
        if self._show_sql:
            log.info("sql", statement=str(stmt), params=params)
        return self._conn.execute(stmt, params) if params is not None else self._conn.execute(stmt)

    def insert(self, mapping: TableMapping, row: dict[str, Any]) -> None:
        self._execute(insert(mapping.table), row)

    def update(self, mapping: TableMapping, ident: Any, values: dict[str, Any]) -> None:
        if not values:
            return
        table = mapping.table
        stmt = update(table).where(table.c[mapping.id_column] == ident).values(**values)
        self._execute(stmt)

    def delete(self, mapping: TableMapping, ident: Any) -> None:
        table = mapping.table
        self._execute(delete(table).where(table.c[mapping.id_column] == ident))

    def select_all(self, mapping: TableMapping, meta: EntityMeta) -> list[Any]:
        table = mapping.table
        stmt = select(table).order_by(table.c[mapping.id_column])
        if mapping.polymorphic and meta is not mapping.root:
            stmt = stmt.where(table.c[DISCRIMINATOR].in_(mapping.discriminators(meta)))
        return list(self._execute(stmt).mappings().all())

    def select_by_id(self, mapping: TableMapping, ident: Any) -> Any | None:
        table = mapping.table
        stmt = select(table).where(table.c[mapping.id_column] == ident)
        return self._execute(stmt).mappings().one_or_none()

    def max_id(self, mapping: TableMapping) -> int:
        table = mapping.table
        value = self._execute(select(func.max(table.c[mapping.id_column]))).scalar_one()
        return int(value or 0)


# --- Module Notes -----------------------------------------------------------
# The store never caches; the persistence context is the only identity map.
