"""
jpql_lab.demo

The tutorial itself: units of work that exercise the query language end to end.

Responsibilities:
- `basic_queries`: typed and untyped queries, single results, parameter binding,
  scalar / embedded / DTO projections and pagination over generated members.
- `joins_and_subqueries`: inner / outer / theta joins, ON filtering, subqueries,
  literals, CASE, TYPE() discrimination and grouped DTO projections.
- Own the transaction of each unit of work: commit on success, roll back, log and
  re-raise on failure, always close the entity manager.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from jpql_lab.domain import (
    Address,
    Album,
    Book,
    Member,
    MemberDto,
    MemberType,
    Order,
    Product,
    Team,
    TeamStats,
)
from jpql_lab.observability.logging import bound_context, get_logger
from jpql_lab.persistence.context import EntityManager
from jpql_lab.persistence.factory import EntityManagerFactory

log = get_logger(__name__)

UnitOfWork = Callable[[EntityManager], dict[str, Any]]


def run_unit_of_work(factory: EntityManagerFactory, name: str, work: UnitOfWork) -> dict[str, Any]:
    """
    Run `work` inside one transaction of a fresh entity manager.

    Returns whatever summary `work` produced; failures are rolled back, logged with
    their traceback and re-raised.
    """

    em = factory.create_entity_manager()
    tx = em.get_transaction()
    with bound_context(unit_of_work=name, em=em.id):
        tx.begin()
        try:
            summary = work(em)
            tx.commit()
        except Exception:
            if tx.is_active():
                tx.rollback()
            log.exception("unit_of_work_failed")
            raise
        finally:
            em.close()
        log.info("unit_of_work_done", summary=summary)
    return summary


def basic_queries(em: EntityManager, *, member_count: int = 100) -> dict[str, Any]:
    members = []
    for i in range(member_count):
        member = Member(username=f"member{i}", age=i)
        em.persist(member)
        members.append(member)

    # Return type known up front: TypedQuery.
    all_members = em.create_query("select m from Member m", Member).get_result_list()
    for member in all_members[:3]:
        log.info("member", member=repr(member))

    # Exactly one row expected; none or several raise.
    tenth = members[min(10, member_count - 1)]
    username = (
        em.create_query("select m.username from Member m where m.id = ?1", str)
        .set_parameter(1, tenth.id)
        .get_single_result()
    )

    # Return type not known up front: plain Query, several items give tuples.
    scalars = em.create_query("select m.username, m.age from Member m").get_result_list()

    by_name = (
        em.create_query("select m from Member m where m.username = :username", Member)
        .set_parameter("username", "member1")
        .get_single_result()
    )
    log.info("parameter_binding", result=repr(by_name), same_instance=by_name is members[1])

    # Managed entities are tracked: this assignment is written on flush.
    by_name.address = Address(city="Seoul", street="Teheran-ro", zipcode="06234")
    em.flush()

    addresses = em.create_query(
        "select m.address from Member m where m.address is not null", Address
    ).get_result_list()
    distinct_ages = em.create_query(
        "select distinct m.age from Member m where m.age < 5 order by m.age", int
    ).get_result_list()

    dtos = em.create_query(
        "select new jpql_lab.domain.dto.MemberDto(m.username, m.age) from Member m", MemberDto
    ).get_result_list()

    page = (
        em.create_query("select m from Member m order by m.age desc", Member)
        .set_first_result(1)
        .set_max_results(10)
        .get_result_list()
    )
    log.info("page", size=len(page), ages=[m.age for m in page])

    return {
        "members": len(all_members),
        "single_username": username,
        "scalar_rows": len(scalars),
        "by_username": by_name.username,
        "addresses": len(addresses),
        "distinct_ages": distinct_ages,
        "dtos": len(dtos),
        "page_ages": [m.age for m in page],
    }


def joins_and_subqueries(em: EntityManager) -> dict[str, Any]:
    team_a = Team(name="teamA")
    team_b = Team(name="teamB")
    em.persist(team_a)
    em.persist(team_b)

    member1 = Member(username="member1", age=10, team=team_a, type=MemberType.ADMIN)
    member2 = Member(username="member2", age=20, team=team_a)
    member3 = Member(username="member3", age=30, team=team_b)
    # Shares its name with a team: matched by the theta and unrelated-entity joins.
    member4 = Member(username="teamB", age=60)
    for member in (member1, member2, member3, member4):
        em.persist(member)

    book = Book(name="JPA Book", price=30000, stock_amount=3, author="kim", isbn="9788960777330")
    album = Album(name="Album", price=15000, stock_amount=5, artist="band")
    em.persist(book)
    em.persist(album)
    em.persist(Order(order_amount=2, member=member1, product=book, address=Address(city="Seoul")))
    em.persist(Order(order_amount=7, member=member2, product=album, address=Address(city="Busan")))

    # Write everything, then start from an empty context so rows are loaded from storage.
    em.flush()
    em.clear()

    inner = (
        em.create_query(
            "select m from Member m join m.team t where t.name = :teamName order by m.age", Member
        )
        .set_parameter("teamName", "teamA")
        .get_result_list()
    )
    log.info("inner_join", members=[m.username for m in inner], team=inner[0].team.name)

    left = em.create_query("select m, t from Member m left join m.team t").get_result_list()
    on_filter = em.create_query(
        "select m, t from Member m left join m.team t on t.name = 'teamA'"
    ).get_result_list()
    unrelated = em.create_query(
        "select m, t from Member m left join Team t on m.username = t.name"
    ).get_result_list()
    theta = em.create_query(
        "select count(m) from Member m, Team t where m.username = t.name", int
    ).get_single_result()

    older_than_average = em.create_query(
        "select m from Member m where m.age > (select avg(m2.age) from Member m2)", Member
    ).get_result_list()
    ordered = em.create_query(
        "select m from Member m where (select count(o) from Order o where m = o.member) > 0", Member
    ).get_result_list()
    in_team_a = em.create_query(
        "select m from Member m where exists (select t from m.team t where t.name = 'teamA')", Member
    ).get_result_list()
    over_stock = em.create_query(
        "select o from Order o where o.order_amount > ALL (select p.stock_amount from Product p)", Order
    ).get_result_list()
    any_team = em.create_query(
        "select m from Member m where m.team = ANY (select t from Team t)", Member
    ).get_result_list()

    literals = em.create_query(
        "select m.username, 'HELLO', 'She''s', 10L, TRUE from Member m "
        "where m.type = jpql_lab.domain.models.MemberType.ADMIN"
    ).get_result_list()
    books = em.create_query(
        "select p from Product p where type(p) = Book", Product
    ).get_result_list()
    grades = em.create_query(
        "select case when m.age <= 10 then 'student' when m.age >= 60 then 'senior' "
        "else 'regular' end from Member m order by m.age",
        str,
    ).get_result_list()
    stats = em.create_query(
        "select new jpql_lab.domain.dto.TeamStats(t.name, count(m), avg(m.age)) "
        "from Member m join m.team t group by t.name order by t.name",
        TeamStats,
    ).get_result_list()
    log.info("team_stats", stats=[repr(s) for s in stats])

    return {
        "inner_join": [m.username for m in inner],
        "left_join_rows": len(left),
        "left_join_without_team": sum(1 for _, t in left if t is None),
        "on_filter_matches": sum(1 for _, t in on_filter if t is not None),
        "unrelated_matches": [m.username for m, t in unrelated if t is not None],
        "theta_count": theta,
        "older_than_average": [m.username for m in older_than_average],
        "with_orders": [m.username for m in ordered],
        "in_team_a": [m.username for m in in_team_a],
        "over_stock": [o.order_amount for o in over_stock],
        "any_team": len(any_team),
        "literals": literals,
        "books": [b.name for b in books],
        "grades": grades,
        "team_stats": [(s.team_name, s.member_count, s.average_age) for s in stats],
    }


VARIANTS: dict[str, Callable[..., dict[str, Any]]] = {
    "basic": basic_queries,
    "joins": joins_and_subqueries,
}


# --- Module Notes -----------------------------------------------------------
# Every variant persists its own data, so running several against one factory only
# adds rows; queries in later variants must not assume an empty database.
