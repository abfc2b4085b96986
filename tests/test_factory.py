"""
tests.test_factory

Factory bootstrap from configured persistence units.

Responsibilities:
- Unit lookup, overrides and environment-driven settings.
- Schema actions (create, create-drop, update) and the identifier sequence.
- Factory lifecycle and the query plan cache.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, inspect

from jpql_lab.domain import Member
from jpql_lab.persistence.errors import IllegalStateError, PersistenceError
from jpql_lab.persistence.factory import create_entity_manager_factory
from jpql_lab.settings import PersistenceUnit, Settings


def test_unknown_unit(settings) -> None:
    with pytest.raises(PersistenceError) as excinfo:
        create_entity_manager_factory("missing", settings=settings)
    assert "hello" in str(excinfo.value)


def test_default_unit(settings) -> None:
    with create_entity_manager_factory(settings=settings) as emf:
        assert emf.unit_name == "hello"
        assert emf.is_open
    assert not emf.is_open


def test_named_unit_with_overrides(file_url) -> None:
    settings = Settings(
        env="test",
        units={"lab": PersistenceUnit(schema_action="update")},
    )
    with create_entity_manager_factory(
        "lab", settings=settings, overrides={"database_url": file_url, "show_sql": True}
    ) as emf:
        assert emf.unit.database_url == file_url
        assert emf.unit.show_sql
        assert emf.unit.schema_action == "update"
    # Overrides never leak into the configured unit.
    assert settings.units["lab"].database_url == "sqlite+pysqlite:///:memory:"


def test_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("JPQL_DEFAULT_UNIT", "lab")
    monkeypatch.setenv("JPQL_UNITS", '{"lab": {"schema_action": "none", "show_sql": true}}')
    monkeypatch.setenv("JPQL_QUERY_PLAN_CACHE_SIZE", "8")
    settings = Settings()
    assert settings.default_unit == "lab"
    assert settings.units["lab"].schema_action == "none"
    assert settings.units["lab"].show_sql
    assert settings.query_plan_cache_size == 8


def test_demo_member_count_is_validated(monkeypatch) -> None:
    with pytest.raises(ValidationError):
        Settings(env="test", demo_member_count=1)
    monkeypatch.setenv("JPQL_DEMO_MEMBER_COUNT", "0")
    with pytest.raises(ValidationError):
        Settings()


def test_in_memory_factories_do_not_share_data(settings) -> None:
    with create_entity_manager_factory(settings=settings) as first:
        em = first.create_entity_manager()
        with em.transaction():
            em.persist(Member(username="member1", age=1))
        em.close()
        with create_entity_manager_factory(settings=settings) as second:
            em = second.create_entity_manager()
            assert em.create_query("select count(m) from Member m", int).get_single_result() == 0
            em.close()


def test_closed_factory(settings) -> None:
    emf = create_entity_manager_factory(settings=settings)
    emf.close()
    emf.close()
    with pytest.raises(IllegalStateError):
        emf.create_entity_manager()


def test_query_plans_are_cached(emf) -> None:
    text = "select m from Member m where m.age > :age"
    assert emf.compile(text) is emf.compile(text)


def test_update_keeps_rows_and_continues_the_sequence(settings, file_url) -> None:
    with create_entity_manager_factory(settings=settings, overrides={"database_url": file_url}) as emf:
        em = emf.create_entity_manager()
        with em.transaction():
            for i in range(3):
                em.persist(Member(username=f"member{i}", age=i))
        last_id = em.create_query("select max(m.id) from Member m", int).get_single_result()
        em.close()

    overrides = {"database_url": file_url, "schema_action": "update"}
    with create_entity_manager_factory(settings=settings, overrides=overrides) as emf:
        em = emf.create_entity_manager()
        count = em.create_query("select count(m) from Member m", int).get_single_result()
        member = Member(username="member3", age=3)
        em.persist(member)
        em.close()
    assert count == 3
    assert member.id == last_id + 1


def test_create_recreates_tables(settings, file_url) -> None:
    with create_entity_manager_factory(settings=settings, overrides={"database_url": file_url}) as emf:
        em = emf.create_entity_manager()
        with em.transaction():
            em.persist(Member(username="member1", age=1))
        em.close()

    with create_entity_manager_factory(settings=settings, overrides={"database_url": file_url}) as emf:
        em = emf.create_entity_manager()
        assert em.create_query("select m from Member m", Member).get_result_list() == []
        em.close()


def test_create_drop_drops_tables_on_close(settings, file_url) -> None:
    emf = create_entity_manager_factory(
        settings=settings,
        overrides={"database_url": file_url, "schema_action": "create-drop"},
    )
    engine = create_engine(file_url)
    try:
        assert {"member", "team", "orders", "product"} <= set(inspect(engine).get_table_names())
        emf.close()
        assert inspect(engine).get_table_names() == []
    finally:
        engine.dispose()


# --- Module Notes -----------------------------------------------------------
# File databases live under pytest's tmp_path, so every test starts from an empty file.
