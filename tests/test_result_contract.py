"""
tests.test_result_contract

Result retrieval API.

Responsibilities:
- Empty lists, single-result cardinality errors.
- TypedQuery checks at creation and at execution.
- Identity of entities returned by queries within one context.
"""

from __future__ import annotations

import pytest

from jpql_lab.domain import Member, Team
from jpql_lab.persistence.errors import (
    IllegalStateError,
    NonUniqueResultError,
    NoResultError,
    QueryExecutionError,
    QueryResolutionError,
    QueryResultTypeError,
)
from jpql_lab.persistence.query import TypedQuery


def test_empty_result_is_an_empty_list(em) -> None:
    assert em.create_query("select m from Member m", Member).get_result_list() == []


def test_single_result_without_rows(em) -> None:
    query = em.create_query("select m from Member m", Member)
    with pytest.raises(NoResultError):
        query.get_single_result()


def test_single_result_with_several_rows(em, members) -> None:
    query = em.create_query("select m from Member m where m.age < 2", Member)
    with pytest.raises(NonUniqueResultError):
        query.get_single_result()


def test_single_result(em, members) -> None:
    username = em.create_query(
        "select m.username from Member m where m.age = 10", str
    ).get_single_result()
    assert username == "member10"


def test_typed_query_is_checked_at_creation(em) -> None:
    with pytest.raises(QueryResultTypeError):
        em.create_query("select m.username from Member m", int)
    with pytest.raises(QueryResultTypeError):
        em.create_query("select m from Member m", Team)


def test_typed_query_is_checked_at_execution(em, members) -> None:
    query = em.create_query("select coalesce(m.username, m.age) from Member m", int)
    assert isinstance(query, TypedQuery)
    with pytest.raises(QueryResultTypeError):
        query.get_result_list()


def test_untyped_query_returns_tuples(em, members) -> None:
    rows = em.create_query(
        "select m.username, m.age from Member m where m.age < 3 order by m.age"
    ).get_result_list()
    assert rows == [("member0", 0), ("member1", 1), ("member2", 2)]


def test_query_returns_managed_instances(em, members) -> None:
    found = em.create_query("select m from Member m where m.age = 5", Member).get_single_result()
    assert found is members[5]
    assert em.find(Member, found.id) is found


def test_distinct(em, members) -> None:
    ages = em.create_query(
        "select distinct mod(m.age, 3) from Member m order by mod(m.age, 3)", int
    ).get_result_list()
    assert ages == [0, 1, 2]


def test_result_stream(em, members) -> None:
    stream = em.create_query("select m.age from Member m where m.age < 3", int).get_result_stream()
    assert sorted(stream) == [0, 1, 2]


def test_aggregates(em, members) -> None:
    row = em.create_query(
        "select count(m), sum(m.age), avg(m.age), min(m.age), max(m.age) from Member m"
    ).get_single_result()
    assert row == (100, 4950, 49.5, 0, 99)


def test_aggregates_over_no_rows(em) -> None:
    row = em.create_query("select count(m), max(m.age) from Member m").get_single_result()
    assert row == (0, None)


def test_aggregate_query_with_ungrouped_column_is_rejected(em, members) -> None:
    with pytest.raises(QueryResolutionError):
        em.create_query("select m.username, count(m) from Member m")


def test_null_comparisons_are_unknown(em) -> None:
    em.persist(Member(username="nobody", age=None))
    em.persist(Member(username="someone", age=3))
    kept = em.create_query(
        "select m.username from Member m where m.age <> 3 or m.age = 3", str
    ).get_result_list()
    assert kept == ["someone"]
    missing = em.create_query(
        "select m.username from Member m where m.age is null", str
    ).get_result_list()
    assert missing == ["nobody"]


def test_nulls_order_first_ascending(em) -> None:
    em.persist(Member(username="b", age=2))
    em.persist(Member(username="n", age=None))
    em.persist(Member(username="a", age=1))
    ascending = em.create_query("select m.username from Member m order by m.age", str)
    descending = em.create_query("select m.username from Member m order by m.age desc", str)
    last = em.create_query("select m.username from Member m order by m.age asc nulls last", str)
    assert ascending.get_result_list() == ["n", "a", "b"]
    assert descending.get_result_list() == ["b", "a", "n"]
    assert last.get_result_list() == ["a", "b", "n"]


def test_division_by_zero(em, members) -> None:
    with pytest.raises(QueryExecutionError):
        em.create_query("select m.age / 0 from Member m").get_result_list()


def test_integer_division_truncates(em, members) -> None:
    values = em.create_query(
        "select m.age / 2 from Member m where m.age in (5, 7) order by m.age"
    ).get_result_list()
    assert values == [2, 3]


def test_closed_manager_rejects_queries(emf) -> None:
    em = emf.create_entity_manager()
    em.close()
    with pytest.raises(IllegalStateError):
        em.create_query("select m from Member m")


# --- Module Notes -----------------------------------------------------------
# `members` seeds member0..member99 (age == index) through the shared `em` fixture.
