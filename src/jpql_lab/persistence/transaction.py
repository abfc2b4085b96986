"""
jpql_lab.persistence.transaction

Resource-local transaction bound to one entity manager.

Responsibilities:
- Own the storage connection while a transaction is active.
- Flush the persistence context before committing.
- Turn commit failures into a rollback plus `RollbackError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Connection, Engine
from sqlalchemy.engine import RootTransaction

from jpql_lab.observability.logging import get_logger
from jpql_lab.persistence.errors import IllegalStateError, RollbackError

if TYPE_CHECKING:
    from jpql_lab.persistence.context import EntityManager

log = get_logger(__name__)


class EntityTransaction:
    def __init__(self, manager: EntityManager, engine: Engine) -> None:
        self._manager = manager
        self._engine = engine
        self._conn: Connection | None = None
        self._tx: RootTransaction | None = None
        self._rollback_only = False

    @property
    def connection(self) -> Connection | None:
        return self._conn

    def is_active(self) -> bool:
        return self._tx is not None

    def begin(self) -> None:
        self._manager._check_open()
        if self._tx is not None:
            raise IllegalStateError("transaction already active")
        self._conn = self._engine.connect()
        self._tx = self._conn.begin()
        self._rollback_only = False
        log.debug("tx_begin", em=self._manager.id)

    def commit(self) -> None:
        if self._tx is None:
            raise IllegalStateError("transaction not active")
        if self._rollback_only:
            self.rollback()
            raise RollbackError("transaction was marked for rollback only")
        try:
            self._manager.flush()
            self._tx.commit()
        except Exception as e:
            log.warning("tx_commit_failed", em=self._manager.id, error=str(e))
            self._discard()
            raise RollbackError(f"commit failed: {e}") from e
        self._release()
        log.debug("tx_commit", em=self._manager.id)

    def rollback(self) -> None:
        if self._tx is None:
            raise IllegalStateError("transaction not active")
        self._discard()
        log.debug("tx_rollback", em=self._manager.id)

    def set_rollback_only(self) -> None:
        if self._tx is None:
            raise IllegalStateError("transaction not active")
        self._rollback_only = True

    def get_rollback_only(self) -> bool:
        if self._tx is None:
            raise IllegalStateError("transaction not active")
        return self._rollback_only

    def _discard(self) -> None:
        # Storage first, then the context: pending writes vanish and entities detach.
        try:
            if self._tx is not None and self._tx.is_active:
                self._tx.rollback()
        finally:
            self._release()
            self._manager._after_rollback()

    def _release(self) -> None:
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._tx = None
        self._rollback_only = False


# --- Module Notes -----------------------------------------------------------
# There is no JTA-style join: one manager, one connection, one transaction at a time.
