"""
tests.test_pagination_parameters

Paging and parameter binding.

Responsibilities:
- First/max result windows applied after ordering.
- Named and positional binding; unknown or missing parameters fail at execution.
"""

from __future__ import annotations

import pytest

from jpql_lab.domain import Member
from jpql_lab.persistence.errors import IllegalArgumentError, NoResultError, ParameterBindingError


def test_page_after_ordering(em, members) -> None:
    page = (
        em.create_query("select m from Member m order by m.age desc", Member)
        .set_first_result(1)
        .set_max_results(10)
        .get_result_list()
    )
    assert [m.age for m in page] == list(range(98, 88, -1))


def test_window_properties(em) -> None:
    query = em.create_query("select m from Member m", Member)
    assert (query.first_result, query.max_results) == (0, None)
    query.set_first_result(5).set_max_results(2)
    assert (query.first_result, query.max_results) == (5, 2)


def test_window_past_the_end(em, members) -> None:
    query = em.create_query("select m from Member m order by m.age", Member)
    assert query.set_first_result(100).get_result_list() == []
    assert query.set_first_result(95).set_max_results(10).get_result_list() == members[95:]


def test_zero_max_results(em, members) -> None:
    query = em.create_query("select m from Member m", Member).set_max_results(0)
    assert query.get_result_list() == []


def test_negative_window_is_rejected(em) -> None:
    query = em.create_query("select m from Member m", Member)
    with pytest.raises(IllegalArgumentError):
        query.set_first_result(-1)
    with pytest.raises(IllegalArgumentError):
        query.set_max_results(-1)


def test_named_parameter(em, members) -> None:
    query = em.create_query("select m from Member m where m.username = :username", Member)
    assert query.parameters == frozenset({"username"})
    assert query.set_parameter("username", "member1").get_single_result() is members[1]
    with pytest.raises(NoResultError):
        query.set_parameter("username", "nobody").get_single_result()


def test_positional_parameters(em, members) -> None:
    ages = (
        em.create_query(
            "select m.age from Member m where m.age between ?1 and ?2 order by m.age", int
        )
        .set_parameter(2, 12)
        .set_parameter(1, 10)
        .get_result_list()
    )
    assert ages == [10, 11, 12]


def test_collection_parameter(em, members) -> None:
    names = (
        em.create_query("select m.username from Member m where m.age in :ages order by m.age", str)
        .set_parameter("ages", [3, 1])
        .get_result_list()
    )
    assert names == ["member1", "member3"]


def test_entity_parameter(em, members) -> None:
    query = em.create_query("select m.username from Member m where m = :member", str)
    assert query.set_parameter("member", members[7]).get_single_result() == "member7"


def test_unknown_parameter_fails_at_execution(em, members) -> None:
    query = em.create_query("select m from Member m where m.username = :username", Member)
    query.set_parameter("username", "member1").set_parameter("age", 3)
    with pytest.raises(ParameterBindingError) as excinfo:
        query.get_result_list()
    assert ":age" in str(excinfo.value)


def test_missing_parameter_fails_at_execution(em, members) -> None:
    query = em.create_query("select m from Member m where m.age > ?1", Member)
    with pytest.raises(ParameterBindingError) as excinfo:
        query.get_result_list()
    assert "?1" in str(excinfo.value)


def test_like_with_escape(em) -> None:
    em.persist(Member(username="100%", age=1))
    em.persist(Member(username="1000", age=2))
    query = em.create_query(
        "select m.username from Member m where m.username like :pattern escape '!'", str
    )
    assert query.set_parameter("pattern", "100!%").get_result_list() == ["100%"]
    assert query.set_parameter("pattern", "1_0%").get_result_list() == ["100%", "1000"]


# --- Module Notes -----------------------------------------------------------
# Binding the same query again replaces the previous value; nothing is validated until
# the query runs.
