"""
jpql_lab.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the demo and the persistence runtime.
- Describe named persistence units (the bootstrap string passed to the factory).
- Offer a cached settings instance for callers that do not build their own.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SchemaAction = Literal["create", "create-drop", "update", "none"]


class PersistenceUnit(BaseModel):
    """
    One named persistence unit.

    `packages` are imported when a factory is built so their entity classes register
    themselves; `schema_action` mirrors the usual DDL auto modes.
    """

    database_url: str = "sqlite+pysqlite:///:memory:"
    packages: tuple[str, ...] = ("jpql_lab.domain",)
    schema_action: SchemaAction = "create"
    # Log every storage statement (the equivalent of `show_sql`).
    show_sql: bool = False


def _default_units() -> dict[str, PersistenceUnit]:
    return {"hello": PersistenceUnit()}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="JPQL_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "jpql-lab"
    log_level: str = "INFO"

    # Persistence
    default_unit: str = "hello"
    units: dict[str, PersistenceUnit] = Field(default_factory=_default_units)
    query_plan_cache_size: int = 256

    # Demo
    # The basic demo binds member1 by name and pages from the second row.
    demo_member_count: int = Field(default=100, ge=2)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Units can be overridden from the environment, e.g.
# JPQL_UNITS='{"hello": {"database_url": "sqlite+pysqlite:///./hello.db"}}'.
