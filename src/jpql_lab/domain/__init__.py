"""
jpql_lab.domain

Entities and DTOs used by the tutorial queries.
"""

from jpql_lab.domain.dto import MemberDto, TeamStats
from jpql_lab.domain.models import (
    Address,
    Album,
    Book,
    Member,
    MemberType,
    Order,
    Product,
    Team,
)

__all__ = [
    "Address",
    "Album",
    "Book",
    "Member",
    "MemberDto",
    "MemberType",
    "Order",
    "Product",
    "Team",
    "TeamStats",
]
