"""
jpql_lab.persistence.errors

Exception hierarchy for the persistence runtime.

Responsibilities:
- Give every failure mode of the runtime a distinct, catchable type.
- Keep the result-cardinality errors (`NoResultError`, `NonUniqueResultError`) separate
  from argument/state misuse so callers can react to each.
"""

from __future__ import annotations


class PersistenceError(Exception):
    """Base class for every error raised by the runtime."""


class IllegalArgumentError(PersistenceError):
    pass


class IllegalStateError(PersistenceError):
    pass


class QuerySyntaxError(IllegalArgumentError):
    def __init__(self, message: str, *, query: str, position: int) -> None:
        super().__init__(f"{message} at position {position} in query: {query!r}")
        self.query = query
        self.position = position


class QueryResolutionError(IllegalArgumentError):
    """Unknown entity, alias, attribute or enum constant."""


class QueryResultTypeError(IllegalArgumentError):
    """A TypedQuery result type does not match what the query selects."""


class ParameterBindingError(IllegalArgumentError):
    pass


class ConstructorProjectionError(IllegalArgumentError):
    """`SELECT new ...` arguments do not match the target constructor."""


class QueryExecutionError(PersistenceError):
    pass


class NoResultError(PersistenceError):
    pass


class NonUniqueResultError(PersistenceError):
    pass


class EntityExistsError(PersistenceError):
    pass


class TransientEntityError(PersistenceError):
    """A managed entity references an entity that was never persisted."""


class TransactionRequiredError(IllegalStateError):
    pass


class LazyInitializationError(IllegalStateError):
    pass


class RollbackError(PersistenceError):
    pass


class EntityNotFoundError(PersistenceError):
    """A stored reference points at a row that no longer exists."""


# --- Module Notes -----------------------------------------------------------
# Storage failures (SQLAlchemy errors) are not wrapped except on commit, where they
# surface as `RollbackError` with the original exception chained.
