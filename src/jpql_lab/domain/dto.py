"""
jpql_lab.domain.dto

Plain value types targeted by constructor projections (`SELECT new ...`).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class MemberDto:
    username: str
    age: int


@dataclass(frozen=True, slots=True)
class TeamStats:
    team_name: str
    member_count: int
    average_age: float | None
