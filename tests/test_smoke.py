"""
tests.test_smoke

Smoke tests for the tutorial entrypoint and its units of work.

Responsibilities:
- Ensure `python -m jpql_lab` runs every variant in test mode and exits cleanly.
- Check the summaries the demo variants report.
- Ensure a failing unit of work is rolled back and re-raised.
"""

from __future__ import annotations

import pytest

from jpql_lab.__main__ import build_parser, main
from jpql_lab.demo import basic_queries, joins_and_subqueries, run_unit_of_work
from jpql_lab.domain import Member
from jpql_lab.settings import Settings


def test_cli_defaults() -> None:
    args = build_parser().parse_args([])
    assert (args.variant, args.unit) == ("basic", None)


@pytest.mark.parametrize("variant", ["basic", "joins", "all"])
def test_main_runs_variants(variant) -> None:
    assert main([variant], settings=Settings(env="test", demo_member_count=20)) == 0


def test_main_reports_unknown_unit() -> None:
    assert main(["basic", "--unit", "missing"], settings=Settings(env="test")) == 1


def test_basic_queries_summary(emf) -> None:
    summary = run_unit_of_work(emf, "basic", basic_queries)
    assert summary["members"] == 100
    assert summary["single_username"] == "member10"
    assert summary["scalar_rows"] == 100
    assert summary["by_username"] == "member1"
    assert summary["addresses"] == 1
    assert summary["distinct_ages"] == [0, 1, 2, 3, 4]
    assert summary["dtos"] == 100
    assert summary["page_ages"] == list(range(98, 88, -1))


def test_joins_and_subqueries_summary(emf) -> None:
    summary = run_unit_of_work(emf, "joins", joins_and_subqueries)
    assert summary == {
        "inner_join": ["member1", "member2"],
        "left_join_rows": 4,
        "left_join_without_team": 1,
        "on_filter_matches": 2,
        "unrelated_matches": ["teamB"],
        "theta_count": 1,
        "older_than_average": ["teamB"],
        "with_orders": ["member1", "member2"],
        "in_team_a": ["member1", "member2"],
        "over_stock": [7],
        "any_team": 3,
        "literals": [("member1", "HELLO", "She's", 10, True)],
        "books": ["JPA Book"],
        "grades": ["student", "regular", "regular", "senior"],
        "team_stats": [("teamA", 2, 15.0), ("teamB", 1, 30.0)],
    }


def test_failed_unit_of_work_is_rolled_back(emf) -> None:
    def work(em):
        em.persist(Member(username="member1", age=10))
        em.flush()
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        run_unit_of_work(emf, "failing", work)

    em = emf.create_entity_manager()
    assert em.create_query("select count(m) from Member m", int).get_single_result() == 0
    em.close()


# --- Module Notes -----------------------------------------------------------
# Variants run against the in-memory default unit, so each test gets a fresh database.
