"""
jpql_lab.domain.models

Entities used by the JPQL tutorial.

Responsibilities:
- Member/Team: the core tutorial entities (Member -> Team is a lazy many-to-one).
- Order/Product (+ Book/Album subtypes): used by the join, subquery and TYPE() examples.
- Address: embedded value type shared by Member and Order.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from jpql_lab.persistence.mapping import Column, Embedded, Entity, FetchType, Id, ManyToOne


class MemberType(enum.StrEnum):
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass(frozen=True, slots=True)
class Address:
    city: str | None = None
    street: str | None = None
    zipcode: str | None = None


class Team(Entity):
    id = Id()
    name = Column(str)


class Member(Entity):
    id = Id()
    username = Column(str)
    age = Column(int)
    type = Column(MemberType, default=MemberType.USER)
    address = Embedded(Address)
    team = ManyToOne(Team, fetch=FetchType.lazy, join_column="team_id")

    def change_team(self, team: Team | None) -> None:
        self.team = team


class Product(Entity):
    id = Id()
    name = Column(str)
    price = Column(int)
    stock_amount = Column(int, default=0)


class Book(Product):
    author = Column(str)
    isbn = Column(str)


class Album(Product):
    artist = Column(str)


class Order(Entity):
    __tablename__ = "orders"

    id = Id()
    order_amount = Column(int)
    address = Embedded(Address)
    member = ManyToOne(Member, fetch=FetchType.lazy)
    product = ManyToOne(Product)


# --- Module Notes -----------------------------------------------------------
# `Book` and `Album` share the `product` table; the `dtype` column tells them apart.
# `Order.product` keeps the default EAGER fetch, so loading an order loads its product.
