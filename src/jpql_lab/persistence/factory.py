"""
jpql_lab.persistence.factory

Entity manager factory: the bootstrap object for one persistence unit.

Responsibilities:
- Resolve a named persistence unit from settings and import its entity packages.
- Own the engine, the generated schema and the identifier sequence.
- Cache compiled query plans (query text -> compiled statement).
- Create entity managers and release storage on close.
"""

from __future__ import annotations

import importlib
import itertools
import threading
from collections.abc import Callable, Mapping
from functools import lru_cache, partial
from typing import Any

from sqlalchemy import Connection, Engine

from jpql_lab.db.engine import create_engine, is_in_memory
from jpql_lab.db.schema import Schema
from jpql_lab.db.store import RowStore
from jpql_lab.jpql.compiler import CompiledQuery, compile_query
from jpql_lab.observability.logging import get_logger
from jpql_lab.persistence.context import EntityManager
from jpql_lab.persistence.errors import IllegalStateError, PersistenceError
from jpql_lab.persistence.mapping import registry
from jpql_lab.settings import PersistenceUnit, Settings, get_settings

log = get_logger(__name__)


class EntityManagerFactory:
    def __init__(self, unit_name: str, unit: PersistenceUnit, *, plan_cache_size: int = 256) -> None:
        self.unit_name = unit_name
        self.unit = unit
        for package in unit.packages:
            importlib.import_module(package)

        self.engine: Engine = create_engine(unit)
        # Keeps an in-memory database alive between transactions.
        self._keeper: Connection | None = None
        if is_in_memory(unit.database_url):
            self._keeper = self.engine.connect()
        self.schema = Schema(registry)
        self.schema.apply(self.engine, unit.schema_action)

        self._id_lock = threading.Lock()
        self._ids = itertools.count(self._max_stored_id() + 1)
        self._compile: Callable[[str], CompiledQuery] = lru_cache(maxsize=plan_cache_size)(
            partial(compile_query, entities=registry, packages=unit.packages)
        )
        self._open = True
        log.info(
            "emf_open",
            unit=unit_name,
            schema_action=unit.schema_action,
            tables=[m.table.name for m in self.schema.mappings()],
        )

    def _max_stored_id(self) -> int:
        # One sequence for every entity; continue after whatever is already stored.
        with self.engine.connect() as conn:
            store = RowStore(conn)
            return max((store.max_id(m) for m in self.schema.mappings()), default=0)

    @property
    def is_open(self) -> bool:
        return self._open

    def next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def compile(self, jpql: str) -> CompiledQuery:
        return self._compile(jpql)

    def create_entity_manager(self) -> EntityManager:
        if not self._open:
            raise IllegalStateError(f"entity manager factory for unit {self.unit_name!r} is closed")
        manager = EntityManager(self)
        log.debug("em_open", unit=self.unit_name, em=manager.id)
        return manager

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        if self.unit.schema_action == "create-drop":
            self.schema.drop(self.engine)
        if self._keeper is not None:
            self._keeper.close()
            self._keeper = None
        self.engine.dispose()
        log.info("emf_closed", unit=self.unit_name)

    def __enter__(self) -> EntityManagerFactory:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def create_entity_manager_factory(
    unit_name: str | None = None,
    *,
    settings: Settings | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> EntityManagerFactory:
    """
    Build a factory for the named persistence unit.

    `overrides` replaces individual unit properties (e.g. `database_url`) without
    touching the configured settings.
    """

    settings = settings or get_settings()
    name = unit_name or settings.default_unit
    unit = settings.units.get(name)
    if unit is None:
        raise PersistenceError(
            f"no persistence unit named {name!r} (configured: {sorted(settings.units)})"
        )
    if overrides:
        unit = PersistenceUnit.model_validate({**unit.model_dump(), **overrides})
    return EntityManagerFactory(name, unit, plan_cache_size=settings.query_plan_cache_size)


# --- Module Notes -----------------------------------------------------------
# The entity registry is process-wide: every factory sees every imported entity class,
# whichever unit declared the package.
