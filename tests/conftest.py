"""
tests.conftest

Shared fixtures for the runtime tests.

Responsibilities:
- Build a fresh in-memory factory per test (every factory gets its own database).
- Provide an entity manager with an active transaction and common seed data.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from jpql_lab.domain import Address, Album, Book, Member, MemberType, Order, Team
from jpql_lab.observability.logging import configure_logging
from jpql_lab.persistence.context import EntityManager
from jpql_lab.persistence.factory import EntityManagerFactory, create_entity_manager_factory
from jpql_lab.settings import Settings


@pytest.fixture(scope="session", autouse=True)
def _logging() -> None:
    configure_logging(service_name="jpql-lab-test", level="WARNING")


@pytest.fixture()
def settings() -> Settings:
    return Settings(env="test")


@pytest.fixture()
def emf(settings: Settings) -> Iterator[EntityManagerFactory]:
    factory = create_entity_manager_factory(settings=settings)
    yield factory
    factory.close()


@pytest.fixture()
def file_url(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'lab.db'}"


@pytest.fixture()
def em(emf: EntityManagerFactory) -> Iterator[EntityManager]:
    manager = emf.create_entity_manager()
    manager.get_transaction().begin()
    yield manager
    manager.close()


@pytest.fixture()
def members(em: EntityManager) -> list[Member]:
    """member0..member99 with age == index."""

    out = []
    for i in range(100):
        member = Member(username=f"member{i}", age=i)
        em.persist(member)
        out.append(member)
    em.flush()
    return out


@pytest.fixture()
def teams(em: EntityManager) -> dict[str, object]:
    """
    teamA: member1 (10, ADMIN), member2 (20); teamB: member3 (30); no team: "teamB" (60).

    Two orders (member1 -> book, member2 -> album). Everything is flushed and the
    context cleared, so queries load from storage.
    """

    team_a = Team(name="teamA")
    team_b = Team(name="teamB")
    em.persist(team_a)
    em.persist(team_b)
    member1 = Member(username="member1", age=10, team=team_a, type=MemberType.ADMIN)
    member2 = Member(username="member2", age=20, team=team_a, address=Address(city="Seoul"))
    member3 = Member(username="member3", age=30, team=team_b)
    member4 = Member(username="teamB", age=60)
    for member in (member1, member2, member3, member4):
        em.persist(member)
    book = Book(name="JPA Book", price=30000, stock_amount=3, author="kim", isbn="1")
    album = Album(name="Album", price=15000, stock_amount=5, artist="band")
    em.persist(book)
    em.persist(album)
    em.persist(Order(order_amount=2, member=member1, product=book))
    em.persist(Order(order_amount=7, member=member2, product=album))
    em.flush()
    em.clear()
    return {
        "team_a": team_a.id,
        "team_b": team_b.id,
        "book": book.id,
        "album": album.id,
        "member1": member1.id,
    }


# --- Module Notes -----------------------------------------------------------
# Entity classes are registered process-wide, so tests use the domain entities only and
# never declare their own.
