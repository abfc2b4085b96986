"""
jpql_lab

Top-level package for the JPQL tutorial and its in-memory persistence runtime.

Responsibilities:
- Expose package version metadata.
- Expose the bootstrap entry point (`create_entity_manager_factory`).
"""

from jpql_lab.persistence import EntityManager, EntityManagerFactory, create_entity_manager_factory

__all__ = [
    "EntityManager",
    "EntityManagerFactory",
    "__version__",
    "create_entity_manager_factory",
]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# Importing the runtime here fixes the module import order: `jpql_lab.jpql.*` and
# `jpql_lab.persistence.*` depend on each other, and loading the factory first keeps
# every `from ... import` resolving against a fully initialized module.
