"""
jpql_lab.persistence.context

The entity manager: a persistence context scoped to one unit of work.

Responsibilities:
- Keep the identity map (root entity name + id -> managed instance).
- Schedule inserts, updates (from the explicit mutation list) and deletes; write them on flush.
- Hydrate stored rows into managed instances and resolve lazy references.
- Create queries and execute them with auto-flush inside an active transaction.
- Detach everything on close, clear and rollback.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar, overload

from sqlalchemy import Connection

from jpql_lab.db.store import RowStore
from jpql_lab.jpql.compiler import CompiledQuery, check_result_type
from jpql_lab.jpql.evaluator import Evaluator
from jpql_lab.observability.logging import bound_context, get_logger
from jpql_lab.persistence.errors import (
    EntityExistsError,
    EntityNotFoundError,
    IllegalArgumentError,
    IllegalStateError,
    TransactionRequiredError,
)
from jpql_lab.persistence.mapping import (
    EntityMeta,
    EntityState,
    EntityStatus,
    FetchType,
    LazyReference,
    ManyToOne,
    meta_of,
    set_state,
    state_of,
)
from jpql_lab.persistence.query import Query, TypedQuery
from jpql_lab.persistence.transaction import EntityTransaction

if TYPE_CHECKING:
    from jpql_lab.persistence.factory import EntityManagerFactory

log = get_logger(__name__)

E = TypeVar("E")
T = TypeVar("T")


class EntityManager:
    def __init__(self, factory: EntityManagerFactory) -> None:
        self._factory = factory
        self.id = uuid.uuid4().hex[:8]
        self._open = True
        self._identity_map: dict[tuple[str, Any], Any] = {}
        # Pending work, in the order it will be written.
        self._inserts: list[Any] = []
        self._mutations: dict[Any, set[str]] = {}
        self._deletes: list[Any] = []
        self._transaction = EntityTransaction(self, factory.engine)

    # --- Lifecycle ----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def _check_open(self) -> None:
        if not self._open:
            raise IllegalStateError("entity manager is closed")

    def close(self) -> None:
        if not self._open:
            return
        if self._transaction.is_active():
            log.warning("em_close_with_active_tx", em=self.id)
            self._transaction.rollback()
        self.clear()
        self._open = False
        log.debug("em_closed", em=self.id)

    def __enter__(self) -> EntityManager:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def get_transaction(self) -> EntityTransaction:
        return self._transaction

    @contextmanager
    def transaction(self) -> Iterator[EntityTransaction]:
        """
        Begin a transaction, commit when the block succeeds, roll back when it raises.
        """

        tx = self._transaction
        tx.begin()
        try:
            yield tx
        except Exception:
            if tx.is_active():
                tx.rollback()
            raise
        if tx.is_active():
            tx.commit()

    # --- Entity operations --------------------------------------------------

    def persist(self, entity: Any) -> None:
        self._check_open()
        meta = self._meta(entity)
        state = state_of(entity)
        if state.manager is self:
            if state.status is EntityStatus.managed:
                return
            if state.status is EntityStatus.removed:
                self._deletes.remove(entity)
                state.status = EntityStatus.managed
                return
        if state.status is EntityStatus.managed:
            raise IllegalArgumentError(f"{meta.name} is managed by another entity manager")
        id_name = meta.id_attribute.name
        if state.status is not EntityStatus.new or entity.__dict__.get(id_name) is not None:
            raise EntityExistsError(f"detached entity passed to persist: {entity!r}")

        entity.__dict__[id_name] = self._factory.next_id()
        set_state(entity, EntityState(EntityStatus.managed, self))
        self._identity_map[meta.key(entity.__dict__[id_name])] = entity
        self._inserts.append(entity)

    @overload
    def find(self, entity_class: type[E], ident: Any) -> E | None: ...

    def find(self, entity_class: type, ident: Any) -> Any:
        self._check_open()
        meta = self._meta(entity_class)
        instance = self._identity_map.get(meta.key(ident))
        if instance is None:
            mapping = self._factory.schema.mapping_for(meta)
            with self._connection() as conn:
                row = RowStore(conn, show_sql=self._factory.unit.show_sql).select_by_id(mapping, ident)
            if row is None:
                return None
            instance = self._hydrate(row, meta)
        if state_of(instance).status is EntityStatus.removed:
            return None
        return instance if isinstance(instance, entity_class) else None

    def remove(self, entity: Any) -> None:
        self._check_open()
        meta = self._meta(entity)
        state = state_of(entity)
        if state.manager is not self or state.status is not EntityStatus.managed:
            if state.manager is self and state.status is EntityStatus.removed:
                return
            raise IllegalArgumentError(f"removing a detached instance {entity!r}")
        self._mutations.pop(entity, None)
        if entity in self._inserts:
            # Never written: the instance goes back to being new.
            id_name = meta.id_attribute.name
            self._inserts.remove(entity)
            self._identity_map.pop(meta.key(entity.__dict__[id_name]), None)
            entity.__dict__[id_name] = None
            set_state(entity, EntityState())
            return
        state.status = EntityStatus.removed
        self._deletes.append(entity)

    def contains(self, entity: Any) -> bool:
        self._check_open()
        self._meta(entity)
        state = state_of(entity)
        return state.manager is self and state.status is EntityStatus.managed

    def detach(self, entity: Any) -> None:
        self._check_open()
        meta = self._meta(entity)
        state = state_of(entity)
        if state.manager is not self:
            return
        self._identity_map.pop(meta.key(entity.__dict__[meta.id_attribute.name]), None)
        self._forget(entity)

    def clear(self) -> None:
        for entity in list(self._identity_map.values()):
            self._forget(entity)
        for entity in self._deletes:
            self._forget(entity)
        self._identity_map.clear()
        self._inserts.clear()
        self._mutations.clear()
        self._deletes.clear()

    def _forget(self, entity: Any) -> None:
        if entity in self._inserts:
            self._inserts.remove(entity)
        if entity in self._deletes:
            self._deletes.remove(entity)
        self._mutations.pop(entity, None)
        state = state_of(entity)
        state.status = EntityStatus.detached
        state.manager = None

    def _record_mutation(self, entity: Any, attribute: str) -> None:
        self._mutations.setdefault(entity, set()).add(attribute)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._inserts or self._mutations or self._deletes)

    # --- Flush --------------------------------------------------------------

    def flush(self) -> None:
        self._check_open()
        conn = self._transaction.connection
        if conn is None:
            raise TransactionRequiredError("no transaction is in progress")
        with bound_context(em=self.id, unit=self._factory.unit_name):
            try:
                counts = self._write(RowStore(conn, show_sql=self._factory.unit.show_sql))
            except Exception:
                self._transaction.set_rollback_only()
                raise
        if any(counts.values()):
            log.debug("flush", em=self.id, **counts)

    def _write(self, store: RowStore) -> dict[str, int]:
        schema = self._factory.schema
        inserted = list(self._inserts)
        for entity in inserted:
            mapping = schema.mapping_for(meta_of(entity))
            store.insert(mapping, mapping.to_row(entity))
        self._inserts.clear()

        updated = 0
        inserted_ids = {id(e) for e in inserted}
        for entity, attributes in list(self._mutations.items()):
            if id(entity) in inserted_ids or state_of(entity).status is not EntityStatus.managed:
                continue
            meta = meta_of(entity)
            mapping = schema.mapping_for(meta)
            store.update(
                mapping,
                entity.__dict__[meta.id_attribute.name],
                mapping.to_row(entity, only=attributes),
            )
            updated += 1
        self._mutations.clear()

        deleted = list(self._deletes)
        for entity in deleted:
            meta = meta_of(entity)
            ident = entity.__dict__[meta.id_attribute.name]
            store.delete(schema.mapping_for(meta), ident)
            self._identity_map.pop(meta.key(ident), None)
            state = state_of(entity)
            state.status = EntityStatus.detached
            state.manager = None
        self._deletes.clear()
        return {"inserted": len(inserted), "updated": updated, "deleted": len(deleted)}

    def _after_rollback(self) -> None:
        self.clear()

    # --- Queries ------------------------------------------------------------

    @overload
    def create_query(self, jpql: str) -> Query: ...

    @overload
    def create_query(self, jpql: str, result_class: type[T]) -> TypedQuery[T]: ...

    def create_query(self, jpql: str, result_class: type | None = None) -> Query:
        self._check_open()
        compiled = self._factory.compile(jpql)
        if result_class is None:
            return Query(self, compiled)
        check_result_type(compiled, result_class)
        return TypedQuery(self, compiled, result_class)

    def _execute(self, compiled: CompiledQuery, parameters: dict[str | int, Any]) -> list[Any]:
        self._check_open()
        if self._transaction.is_active() and self.has_pending_changes:
            self.flush()
        log.debug("query", em=self.id, jpql=compiled.text, parameters=parameters)
        return Evaluator(self, parameters).run(compiled.statement)

    def entities(self, meta: EntityMeta) -> list[Any]:
        mapping = self._factory.schema.mapping_for(meta)
        with self._connection() as conn:
            rows = RowStore(conn, show_sql=self._factory.unit.show_sql).select_all(mapping, meta)
        instances = (self._hydrate(row, meta) for row in rows)
        return [i for i in instances if state_of(i).status is EntityStatus.managed]

    # --- Loading ------------------------------------------------------------

    def _hydrate(self, row: Any, meta: EntityMeta) -> Any:
        mapping = self._factory.schema.mapping_for(meta)
        concrete, values = mapping.from_row(row)
        key = concrete.key(values[concrete.id_attribute.name])
        existing = self._identity_map.get(key)
        if existing is not None:
            # Repeatable read: the managed instance wins over the stored row.
            return existing
        instance = concrete.cls.__new__(concrete.cls)
        instance.__dict__.update(values)
        set_state(instance, EntityState(EntityStatus.managed, self))
        self._identity_map[key] = instance
        for name, attr in concrete.attributes.items():
            value = values.get(name)
            if isinstance(attr, ManyToOne) and attr.fetch is FetchType.eager and isinstance(value, LazyReference):
                instance.__dict__[name] = self._resolve_reference(value)
        return instance

    def _resolve_reference(self, ref: LazyReference) -> Any:
        target = self.find(ref.target.cls, ref.id)
        if target is None:
            raise EntityNotFoundError(f"unable to find {ref.target.name} with id {ref.id!r}")
        return target

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        conn = self._transaction.connection
        if conn is not None:
            yield conn
            return
        with self._factory.engine.connect() as short_lived:
            yield short_lived

    @staticmethod
    def _meta(entity_or_class: Any) -> EntityMeta:
        try:
            return meta_of(entity_or_class)
        except TypeError as e:
            raise IllegalArgumentError(str(e)) from e


# --- Module Notes -----------------------------------------------------------
# Dirty tracking is explicit: attribute descriptors report assignments through
# `_record_mutation`; there are no snapshots to diff at flush time.
