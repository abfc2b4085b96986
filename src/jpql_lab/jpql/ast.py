"""
jpql_lab.jpql.ast

Expression tree for parsed (and then compiled) queries.

Responsibilities:
- Define immutable node types produced by the parser.
- Define the resolved node types the compiler substitutes (alias references, attribute
  paths, enum and entity-type literals, constructor targets).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jpql_lab.persistence.mapping import Attribute, EntityMeta


class Node:
    __slots__ = ()


# --- Expressions ------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True, slots=True)
class Parameter(Node):
    key: str | int


@dataclass(frozen=True, slots=True)
class Path(Node):
    """Dotted name as written; resolved by the compiler."""

    parts: tuple[str, ...]
    position: int


@dataclass(frozen=True, slots=True)
class AliasRef(Node):
    alias: str


@dataclass(frozen=True, slots=True)
class AttributePath(Node):
    alias: str
    attributes: tuple[Attribute, ...]
    # Name of the embedded field when the path ends inside an embedded value.
    field: str | None = None

    @property
    def crosses_association(self) -> bool:
        return any(a.kind == "many_to_one" for a in self.attributes)


@dataclass(frozen=True, slots=True)
class ResultVariable(Node):
    """ORDER BY reference to a SELECT item alias."""

    index: int


@dataclass(frozen=True, slots=True)
class EntityTypeLiteral(Node):
    meta: EntityMeta


@dataclass(frozen=True, slots=True)
class TypeOf(Node):
    operand: Node


@dataclass(frozen=True, slots=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True, slots=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class Between(Node):
    operand: Node
    low: Node
    high: Node
    negated: bool = False


@dataclass(frozen=True, slots=True)
class Like(Node):
    operand: Node
    pattern: Node
    escape: Node | None = None
    negated: bool = False


@dataclass(frozen=True, slots=True)
class InList(Node):
    operand: Node
    items: tuple[Node, ...]
    negated: bool = False


@dataclass(frozen=True, slots=True)
class InSubquery(Node):
    operand: Node
    subquery: SelectStatement
    negated: bool = False


@dataclass(frozen=True, slots=True)
class IsNull(Node):
    operand: Node
    negated: bool = False


@dataclass(frozen=True, slots=True)
class Exists(Node):
    subquery: SelectStatement
    negated: bool = False


@dataclass(frozen=True, slots=True)
class Quantified(Node):
    op: str
    operand: Node
    quantifier: str  # ALL | ANY | SOME
    subquery: SelectStatement


@dataclass(frozen=True, slots=True)
class Subquery(Node):
    statement: SelectStatement


@dataclass(frozen=True, slots=True)
class FunctionCall(Node):
    name: str
    args: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class Aggregate(Node):
    name: str
    operand: Node | None
    distinct: bool = False


@dataclass(frozen=True, slots=True)
class Case(Node):
    whens: tuple[tuple[Node, Node], ...]
    otherwise: Node | None = None


@dataclass(frozen=True, slots=True)
class Constructor(Node):
    class_name: str
    args: tuple[Node, ...]
    position: int
    target: type | None = None


# --- Clauses ----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RangeDecl(Node):
    entity_name: str
    alias: str
    position: int
    meta: EntityMeta | None = None


@dataclass(frozen=True, slots=True)
class PathDecl(Node):
    """`FROM m.team t` inside a subquery: iterate an outer alias' association."""

    path: Node
    alias: str


@dataclass(frozen=True, slots=True)
class Join(Node):
    kind: str  # INNER | LEFT
    target: Node  # Path (association) or RangeDecl (entity join)
    alias: str
    on: Node | None = None
    fetch: bool = False


@dataclass(frozen=True, slots=True)
class FromRoot(Node):
    decl: Node  # RangeDecl | PathDecl
    joins: tuple[Join, ...] = ()


@dataclass(frozen=True, slots=True)
class SelectItem(Node):
    expr: Node
    alias: str | None = None


@dataclass(frozen=True, slots=True)
class OrderItem(Node):
    expr: Node
    descending: bool = False
    nulls_first: bool | None = None


@dataclass(frozen=True, slots=True)
class SelectStatement(Node):
    items: tuple[SelectItem, ...]
    roots: tuple[FromRoot, ...]
    distinct: bool = False
    where: Node | None = None
    group_by: tuple[Node, ...] = ()
    having: Node | None = None
    order_by: tuple[OrderItem, ...] = ()
    # Filled in by the compiler.
    parameters: frozenset[str | int] = field(default_factory=frozenset)
    aggregated: bool = False


def children(node: Node):
    """Direct child expressions of a node, not descending into subqueries."""

    for name in node.__dataclass_fields__:
        value = getattr(node, name)
        if isinstance(value, SelectStatement):
            continue
        if isinstance(value, Node):
            yield value
        elif isinstance(value, tuple):
            for item in value:
                if isinstance(item, tuple):
                    yield from (x for x in item if isinstance(x, Node))
                elif isinstance(item, Node) and not isinstance(item, SelectStatement):
                    yield item


COMPARISON_OPS = frozenset({"=", "<>", "<", "<=", ">", ">="})
AGGREGATES = frozenset({"COUNT", "SUM", "AVG", "MIN", "MAX"})
FUNCTIONS = frozenset(
    {
        "CONCAT",
        "SUBSTRING",
        "TRIM",
        "LOWER",
        "UPPER",
        "LENGTH",
        "LOCATE",
        "ABS",
        "SQRT",
        "MOD",
        "COALESCE",
        "NULLIF",
    }
)


# --- Module Notes -----------------------------------------------------------
# Nodes are frozen so a compiled statement can be cached and shared between queries.
