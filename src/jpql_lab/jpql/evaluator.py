"""
jpql_lab.jpql.evaluator

In-memory execution of compiled statements.

Responsibilities:
- Enumerate FROM combinations (range variables, theta joins, association and entity joins).
- Evaluate predicates with three-valued logic (None is UNKNOWN).
- Group and aggregate, order, de-duplicate and project rows (entities, scalars, tuples,
  embedded values, constructor projections).
- Evaluate correlated subqueries against the enclosing row.
"""

from __future__ import annotations

import math
import operator
import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Any, Protocol

from jpql_lab.jpql import ast
from jpql_lab.jpql.compiler import accepts, admits_none, constructor_hints
from jpql_lab.persistence.errors import (
    ConstructorProjectionError,
    ParameterBindingError,
    QueryExecutionError,
)
from jpql_lab.persistence.mapping import EntityMeta, ManyToOne, is_entity, meta_of

Env = dict[str, Any]

_MISSING = object()

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class EntitySource(Protocol):
    def entities(self, meta: EntityMeta) -> list[Any]:
        """Managed instances of `meta` and its subtypes."""


class Evaluator:
    def __init__(self, source: EntitySource, parameters: Mapping[str | int, Any]) -> None:
        self._source = source
        self._parameters = parameters
        self._extents: dict[str, list[Any]] = {}

    def run(self, statement: ast.SelectStatement) -> list[Any]:
        return self.select(statement, {})

    # --- SELECT -------------------------------------------------------------

    def select(self, stmt: ast.SelectStatement, outer: Env) -> list[Any]:
        rows = [env for env in self._from(stmt.roots, outer) if self._where(stmt.where, env)]

        # (env, group, projected) triples; group is None for non-aggregated statements.
        records: list[tuple[Env, list[Env] | None, Any]] = []
        if stmt.aggregated:
            for key_env, group in self._groups(stmt, rows, outer):
                if stmt.having is not None and self._truth(stmt.having, key_env, group) is not True:
                    continue
                records.append((key_env, group, self._project(stmt, key_env, group)))
        else:
            joined_paths = _implicit_join_paths(stmt)
            for env in rows:
                if any(self._path(p, env, strict=True) is _MISSING for p in joined_paths):
                    continue
                records.append((env, None, self._project(stmt, env, None)))

        if stmt.order_by:
            records = self._order(stmt.order_by, records)

        results = [projected for _, _, projected in records]
        if stmt.distinct:
            results = _distinct(results)
        return results

    def _where(self, where: ast.Node | None, env: Env) -> bool:
        return where is None or self._truth(where, env) is True

    def _project(self, stmt: ast.SelectStatement, env: Env, group: list[Env] | None) -> Any:
        values = tuple(self._item(item.expr, env, group) for item in stmt.items)
        return values[0] if len(values) == 1 else values

    def _item(self, node: ast.Node, env: Env, group: list[Env] | None) -> Any:
        if isinstance(node, ast.Constructor):
            return self._construct(node, [self._eval(a, env, group) for a in node.args])
        return self._eval(node, env, group)

    def _construct(self, node: ast.Constructor, args: list[Any]) -> Any:
        target = node.target
        if target is None:
            raise QueryExecutionError(f"constructor {node.class_name} was not resolved")
        for index, (hint, value) in enumerate(zip(constructor_hints(target), args), start=1):
            if value is None:
                if not admits_none(hint):
                    raise ConstructorProjectionError(
                        f"argument {index} of {node.class_name} is NULL but the parameter is not optional"
                    )
            elif not accepts(hint, type(value)):
                raise ConstructorProjectionError(
                    f"argument {index} of {node.class_name} expects "
                    f"{getattr(hint, '__name__', hint)}, got {type(value).__name__} ({value!r})"
                )
        try:
            return target(*args)
        except TypeError as e:
            raise ConstructorProjectionError(f"cannot construct {node.class_name}: {e}") from e

    # --- FROM ---------------------------------------------------------------

    def extent(self, meta: EntityMeta) -> list[Any]:
        if meta.name not in self._extents:
            self._extents[meta.name] = self._source.entities(meta)
        return self._extents[meta.name]

    def _from(self, roots: Sequence[ast.FromRoot], outer: Env) -> list[Env]:
        envs: list[Env] = [dict(outer)]
        for root in roots:
            envs = [joined for env in envs for joined in self._root(root, env)]
        return envs

    def _root(self, root: ast.FromRoot, env: Env) -> Iterator[Env]:
        decl = root.decl
        if isinstance(decl, ast.RangeDecl):
            candidates = self.extent(_resolved(decl))
        else:
            value = self._eval(decl.path, env)
            candidates = [] if value is None else [value]
        for candidate in candidates:
            yield from self._joins(root.joins, {**env, decl.alias: candidate})

    def _joins(self, joins: Sequence[ast.Join], env: Env) -> Iterator[Env]:
        if not joins:
            yield env
            return
        join, rest = joins[0], joins[1:]
        if isinstance(join.target, ast.RangeDecl):
            candidates = self.extent(_resolved(join.target))
        else:
            value = self._eval(join.target, env)
            candidates = [] if value is None else [value]
        matched = False
        for candidate in candidates:
            joined = {**env, join.alias: candidate}
            if join.on is not None and self._truth(join.on, joined) is not True:
                continue
            matched = True
            yield from self._joins(rest, joined)
        if not matched and join.kind == "LEFT":
            yield from self._joins(rest, {**env, join.alias: None})

    # --- GROUP BY / ORDER BY ------------------------------------------------

    def _groups(
        self, stmt: ast.SelectStatement, rows: list[Env], outer: Env
    ) -> Iterator[tuple[Env, list[Env]]]:
        if not stmt.group_by:
            # One group over everything, even when there are no rows.
            yield (rows[0] if rows else outer), rows
            return
        groups: dict[tuple[Any, ...], list[Env]] = {}
        for env in rows:
            key = tuple(_hashable(self._eval(e, env)) for e in stmt.group_by)
            groups.setdefault(key, []).append(env)
        for members in groups.values():
            yield members[0], members

    def _order(
        self,
        order_by: Sequence[ast.OrderItem],
        records: list[tuple[Env, list[Env] | None, Any]],
    ) -> list[tuple[Env, list[Env] | None, Any]]:
        keyed = []
        for record in records:
            env, group, projected = record
            keys = []
            for item in order_by:
                if isinstance(item.expr, ast.ResultVariable):
                    value = projected[item.expr.index] if isinstance(projected, tuple) else projected
                else:
                    value = self._eval(item.expr, env, group)
                keys.append(value)
            keyed.append((keys, record))

        # Stable sorts from the least significant key to the most significant one.
        for position in reversed(range(len(order_by))):
            item = order_by[position]
            nulls_first = item.nulls_first if item.nulls_first is not None else not item.descending
            nulls = [k for k in keyed if k[0][position] is None]
            present = [k for k in keyed if k[0][position] is not None]
            try:
                present.sort(key=lambda k: _sort_key(k[0][position]), reverse=item.descending)
            except TypeError as e:
                raise QueryExecutionError(f"cannot order by mixed types: {e}") from e
            keyed = nulls + present if nulls_first else present + nulls
        return [record for _, record in keyed]

    # --- Expressions --------------------------------------------------------

    def _truth(self, node: ast.Node, env: Env, group: list[Env] | None = None) -> bool | None:
        value = self._eval(node, env, group)
        if value is None or isinstance(value, bool):
            return value
        raise QueryExecutionError(f"condition evaluated to non-boolean {value!r}")

    def _eval(self, node: ast.Node, env: Env, group: list[Env] | None = None) -> Any:
        if isinstance(node, ast.Literal):
            return node.value
        if isinstance(node, ast.Parameter):
            try:
                return self._parameters[node.key]
            except KeyError:
                raise ParameterBindingError(f"parameter {_param_label(node.key)} is not bound") from None
        if isinstance(node, ast.AliasRef):
            return env.get(node.alias)
        if isinstance(node, ast.AttributePath):
            return self._path(node, env)
        if isinstance(node, ast.EntityTypeLiteral):
            return node.meta
        if isinstance(node, ast.TypeOf):
            value = self._eval(node.operand, env, group)
            return meta_of(value) if value is not None else None
        if isinstance(node, ast.Unary):
            return self._unary(node, env, group)
        if isinstance(node, ast.Binary):
            return self._binary(node, env, group)
        if isinstance(node, ast.Between):
            value = self._eval(node.operand, env, group)
            low = self._eval(node.low, env, group)
            high = self._eval(node.high, env, group)
            result = _and(_compare(">=", value, low), _compare("<=", value, high))
            return _not(result) if node.negated else result
        if isinstance(node, ast.Like):
            return self._like(node, env, group)
        if isinstance(node, ast.IsNull):
            is_null = self._eval(node.operand, env, group) is None
            return not is_null if node.negated else is_null
        if isinstance(node, ast.InList):
            value = self._eval(node.operand, env, group)
            items: list[Any] = []
            for item in node.items:
                evaluated = self._eval(item, env, group)
                if isinstance(item, ast.Parameter) and isinstance(evaluated, (list, tuple, set, frozenset)):
                    items.extend(evaluated)
                else:
                    items.append(evaluated)
            result = _in(value, items)
            return _not(result) if node.negated else result
        if isinstance(node, ast.InSubquery):
            value = self._eval(node.operand, env, group)
            result = _in(value, self.select(node.subquery, env))
            return _not(result) if node.negated else result
        if isinstance(node, ast.Exists):
            found = bool(self.select(node.subquery, env))
            return not found if node.negated else found
        if isinstance(node, ast.Quantified):
            return self._quantified(node, env, group)
        if isinstance(node, ast.Subquery):
            values = self.select(node.statement, env)
            if len(values) > 1:
                raise QueryExecutionError("scalar subquery returned more than one row")
            return values[0] if values else None
        if isinstance(node, ast.FunctionCall):
            return _call(node.name, [self._eval(a, env, group) for a in node.args])
        if isinstance(node, ast.Aggregate):
            return self._aggregate(node, env, group)
        if isinstance(node, ast.Case):
            for condition, result in node.whens:
                if self._truth(condition, env, group) is True:
                    return self._eval(result, env, group)
            return self._eval(node.otherwise, env, group) if node.otherwise is not None else None
        raise QueryExecutionError(f"cannot evaluate {type(node).__name__}")

    def _path(self, path: ast.AttributePath, env: Env, *, strict: bool = False) -> Any:
        value = env.get(path.alias)
        for attr in path.attributes:
            if value is None:
                return _MISSING if strict else None
            value = getattr(value, attr.name)
            if strict and value is None and isinstance(attr, ManyToOne):
                return _MISSING
        if path.field is not None and value is not None:
            value = getattr(value, path.field)
        return value

    def _unary(self, node: ast.Unary, env: Env, group: list[Env] | None) -> Any:
        if node.op == "NOT":
            return _not(self._truth(node.operand, env, group))
        value = self._eval(node.operand, env, group)
        if value is None:
            return None
        return -value if node.op == "-" else value

    def _binary(self, node: ast.Binary, env: Env, group: list[Env] | None) -> Any:
        if node.op == "AND":
            left = self._truth(node.left, env, group)
            if left is False:
                return False
            return _and(left, self._truth(node.right, env, group))
        if node.op == "OR":
            left = self._truth(node.left, env, group)
            if left is True:
                return True
            return _or(left, self._truth(node.right, env, group))
        left = self._eval(node.left, env, group)
        right = self._eval(node.right, env, group)
        if node.op in ast.COMPARISON_OPS:
            return _compare(node.op, left, right)
        return _arithmetic(node.op, left, right)

    def _like(self, node: ast.Like, env: Env, group: list[Env] | None) -> bool | None:
        value = self._eval(node.operand, env, group)
        pattern = self._eval(node.pattern, env, group)
        escape = self._eval(node.escape, env, group) if node.escape is not None else None
        if value is None or pattern is None:
            return None
        matched = _like_regex(pattern, escape).fullmatch(str(value)) is not None
        return not matched if node.negated else matched

    def _quantified(self, node: ast.Quantified, env: Env, group: list[Env] | None) -> bool | None:
        value = self._eval(node.operand, env, group)
        results = [_compare(node.op, value, v) for v in self.select(node.subquery, env)]
        if node.quantifier == "ALL":
            if any(r is False for r in results):
                return False
            return None if any(r is None for r in results) else True
        if any(r is True for r in results):
            return True
        return None if any(r is None for r in results) else False

    def _aggregate(self, node: ast.Aggregate, env: Env, group: list[Env] | None) -> Any:
        if group is None:
            raise QueryExecutionError(f"{node.name}() used outside of an aggregate query")
        if node.operand is None:
            return len(group)
        values = [self._eval(node.operand, e) for e in group]
        values = [v for v in values if v is not None]
        if node.distinct:
            values = _distinct(values)
        if node.name == "COUNT":
            return len(values)
        if not values:
            return None
        if node.name == "SUM":
            return sum(values)
        if node.name == "AVG":
            return sum(values) / len(values)
        try:
            return min(values) if node.name == "MIN" else max(values)
        except TypeError as e:
            raise QueryExecutionError(f"{node.name}() over incomparable values: {e}") from e


# --- Helpers ----------------------------------------------------------------


def _implicit_join_paths(stmt: ast.SelectStatement) -> list[ast.AttributePath]:
    # Navigating an association in SELECT is an inner join: rows with a null link drop out.
    found: list[ast.AttributePath] = []

    def walk(node: ast.Node) -> None:
        if isinstance(node, ast.AttributePath):
            if node.crosses_association:
                found.append(node)
            return
        for child in ast.children(node):
            walk(child)

    for item in stmt.items:
        walk(item.expr)
    return found


def _resolved(decl: ast.RangeDecl) -> EntityMeta:
    if decl.meta is None:
        raise QueryExecutionError(f"entity {decl.entity_name} was not resolved")
    return decl.meta


def _param_label(key: str | int) -> str:
    return f"?{key}" if isinstance(key, int) else f":{key}"


def _equals(left: Any, right: Any) -> bool:
    if is_entity(left) or is_entity(right):
        if left is right:
            return True
        if not (is_entity(left) and is_entity(right)):
            return False
        left_meta, right_meta = meta_of(left), meta_of(right)
        left_id = left.__dict__.get(left_meta.id_attribute.name)
        return (
            left_meta.root is right_meta.root
            and left_id is not None
            and left_id == right.__dict__.get(right_meta.id_attribute.name)
        )
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool | None:
    if left is None or right is None:
        return None
    if op == "=":
        return _equals(left, right)
    if op == "<>":
        return not _equals(left, right)
    try:
        return _ORDERING[op](left, right)
    except TypeError as e:
        raise QueryExecutionError(f"cannot compare {left!r} {op} {right!r}") from e


def _in(value: Any, items: Sequence[Any]) -> bool | None:
    if value is None:
        return None
    if any(item is not None and _equals(value, item) for item in items):
        return True
    return None if any(item is None for item in items) else False


def _and(left: bool | None, right: bool | None) -> bool | None:
    if left is False or right is False:
        return False
    if left is None or right is None:
        return None
    return True


def _or(left: bool | None, right: bool | None) -> bool | None:
    if left is True or right is True:
        return True
    if left is None or right is None:
        return None
    return False


def _not(value: bool | None) -> bool | None:
    return None if value is None else not value


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if left is None or right is None:
        return None
    try:
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            if isinstance(left, int) and isinstance(right, int):
                # Integer division truncates toward zero, as SQL does.
                return int(left / right)
            return left / right
    except ZeroDivisionError as e:
        raise QueryExecutionError("division by zero") from e
    except TypeError as e:
        raise QueryExecutionError(f"cannot apply {op} to {left!r} and {right!r}") from e
    raise QueryExecutionError(f"unknown operator {op}")


def _call(name: str, args: list[Any]) -> Any:
    if name == "COALESCE":
        return next((a for a in args if a is not None), None)
    if name == "NULLIF":
        return None if args[0] is not None and _equals(args[0], args[1]) else args[0]
    if name == "TRIM":
        mode, char, value = args
        if value is None or char is None:
            return None
        if mode == "LEADING":
            return value.lstrip(char)
        if mode == "TRAILING":
            return value.rstrip(char)
        return value.strip(char)
    if any(a is None for a in args):
        return None
    if name == "CONCAT":
        return "".join(str(a) for a in args)
    if name == "SUBSTRING":
        start = args[1] - 1
        return args[0][start:] if len(args) == 2 else args[0][start : start + args[2]]
    if name == "LOWER":
        return args[0].lower()
    if name == "UPPER":
        return args[0].upper()
    if name == "LENGTH":
        return len(args[0])
    if name == "LOCATE":
        start = args[2] - 1 if len(args) == 3 else 0
        return args[1].find(args[0], start) + 1
    if name == "ABS":
        return abs(args[0])
    if name == "SQRT":
        return math.sqrt(args[0])
    if name == "MOD":
        return int(math.fmod(args[0], args[1]))
    raise QueryExecutionError(f"unknown function {name}")


def _like_regex(pattern: str, escape: str | None) -> re.Pattern[str]:
    out = []
    chars = iter(pattern)
    for ch in chars:
        if escape is not None and ch == escape:
            out.append(re.escape(next(chars, "")))
        elif ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return re.compile("".join(out), re.DOTALL)


def _sort_key(value: Any) -> Any:
    if is_entity(value):
        return value.__dict__.get(meta_of(value).id_attribute.name)
    return value


def _hashable(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


def _distinct(values: list[Any]) -> list[Any]:
    seen: set[Any] = set()
    out = []
    for value in values:
        key = _hashable(value)
        if key in seen:
            continue
        seen.add(key)
        out.append(value)
    return out


# --- Module Notes -----------------------------------------------------------
# Pagination is not applied here; `Query` slices the ordered result so that the compiled
# statement stays independent of first/max result settings.
