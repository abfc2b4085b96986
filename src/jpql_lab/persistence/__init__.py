"""
jpql_lab.persistence

Persistence runtime: factory, entity manager, transactions, queries and entity mapping.

Responsibilities:
- Re-export the public runtime API.
"""

from jpql_lab.persistence.errors import (
    ConstructorProjectionError,
    EntityExistsError,
    EntityNotFoundError,
    IllegalArgumentError,
    IllegalStateError,
    LazyInitializationError,
    NonUniqueResultError,
    NoResultError,
    ParameterBindingError,
    PersistenceError,
    QueryExecutionError,
    QueryResolutionError,
    QueryResultTypeError,
    QuerySyntaxError,
    RollbackError,
    TransactionRequiredError,
    TransientEntityError,
)
from jpql_lab.persistence.factory import EntityManagerFactory, create_entity_manager_factory
from jpql_lab.persistence.context import EntityManager
from jpql_lab.persistence.mapping import (
    Column,
    Embedded,
    Entity,
    FetchType,
    Id,
    ManyToOne,
)
from jpql_lab.persistence.query import Query, TypedQuery
from jpql_lab.persistence.transaction import EntityTransaction

__all__ = [
    "Column",
    "ConstructorProjectionError",
    "Embedded",
    "Entity",
    "EntityExistsError",
    "EntityManager",
    "EntityManagerFactory",
    "EntityNotFoundError",
    "EntityTransaction",
    "FetchType",
    "Id",
    "IllegalArgumentError",
    "IllegalStateError",
    "LazyInitializationError",
    "ManyToOne",
    "NoResultError",
    "NonUniqueResultError",
    "ParameterBindingError",
    "PersistenceError",
    "Query",
    "QueryExecutionError",
    "QueryResolutionError",
    "QueryResultTypeError",
    "QuerySyntaxError",
    "RollbackError",
    "TransactionRequiredError",
    "TransientEntityError",
    "TypedQuery",
    "create_entity_manager_factory",
]


# --- Module Notes -----------------------------------------------------------
# Submodules import each other directly (never through this package) so that the
# factory -> context -> db/jpql chain has a single import order.
