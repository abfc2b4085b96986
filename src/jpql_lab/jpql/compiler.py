"""
jpql_lab.jpql.compiler

Semantic analysis: turn a parsed statement into a resolved, executable one.

Responsibilities:
- Resolve entity names, identification variables and attribute paths (case-sensitive).
- Resolve fully-qualified enum constants and entity type literals.
- Resolve constructor-projection targets and check their arity and static argument types.
- Collect the parameters a query declares and infer its result type when possible.
"""

from __future__ import annotations

import dataclasses
import enum
import importlib
import inspect
import types
import typing
from dataclasses import dataclass
from typing import Any

from jpql_lab.jpql import ast
from jpql_lab.jpql.parser import parse
from jpql_lab.persistence.errors import (
    ConstructorProjectionError,
    QueryResolutionError,
    QueryResultTypeError,
)
from jpql_lab.persistence.mapping import (
    Column,
    Embedded,
    EntityMeta,
    EntityRegistry,
    Id,
    ManyToOne,
)


@dataclass(frozen=True, slots=True)
class CompiledQuery:
    text: str
    statement: ast.SelectStatement
    # None when the result type cannot be known before execution.
    result_type: type | None

    @property
    def parameters(self) -> frozenset[str | int]:
        return self.statement.parameters


def compile_query(
    text: str, entities: EntityRegistry, *, packages: tuple[str, ...] = ()
) -> CompiledQuery:
    """
    Compile `text` against the registered entities.

    Constructor targets and enum constants are looked up only inside `packages`.
    """

    compiler = _Compiler(text, entities, packages)
    statement = compiler.statement(parse(text), scope=None)
    statement = dataclasses.replace(statement, parameters=frozenset(compiler.parameters))
    return CompiledQuery(text, statement, result_type_of(statement))


def check_result_type(compiled: CompiledQuery, result_class: type) -> None:
    """Fail early when a TypedQuery's class cannot hold what the query selects."""

    if result_class is object:
        return
    if len(compiled.statement.items) > 1:
        if not issubclass(tuple, result_class):
            raise QueryResultTypeError(
                f"query selects {len(compiled.statement.items)} values; "
                f"{result_class.__name__} cannot hold a row"
            )
        return
    inferred = compiled.result_type
    if inferred is not None and not accepts(result_class, inferred):
        raise QueryResultTypeError(
            f"query selects {inferred.__name__}, not {result_class.__name__}: {compiled.text!r}"
        )


# --- Types ------------------------------------------------------------------


def accepts(hint: Any, value_type: type) -> bool:
    """Exact-ish compatibility: subclasses pass, numeric widening and bool-as-int do not."""

    hint = _strip_optional(hint)
    if hint is Any or not isinstance(hint, type):
        return True
    if value_type is bool and hint is not bool and hint is not object:
        return False
    return issubclass(value_type, hint)


def admits_none(hint: Any) -> bool:
    if hint is Any or hint is None or hint is type(None):
        return True
    origin = typing.get_origin(hint)
    if origin in (typing.Union, types.UnionType):
        return type(None) in typing.get_args(hint)
    return False


def _strip_optional(hint: Any) -> Any:
    origin = typing.get_origin(hint)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        return args[0] if len(args) == 1 else Any
    return hint


def constructor_hints(target: type) -> list[Any]:
    """Type hints of the constructor parameters, in order (Any when unannotated)."""

    params = [
        p
        for p in inspect.signature(target).parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    try:
        hints = typing.get_type_hints(target if dataclasses.is_dataclass(target) else target.__init__)
    except NameError:
        # Unresolvable forward references: fall back to runtime-only checks.
        hints = {}
    return [hints.get(p.name, Any) for p in params]


def result_type_of(statement: ast.SelectStatement) -> type | None:
    if len(statement.items) != 1:
        return tuple
    return static_type(statement.items[0].expr, statement)


def static_type(node: ast.Node, statement: ast.SelectStatement | None = None) -> type | None:
    if isinstance(node, ast.Literal):
        return None if node.value is None else type(node.value)
    if isinstance(node, ast.AliasRef):
        meta = _alias_meta(statement, node.alias) if statement is not None else None
        return meta.cls if meta is not None else None
    if isinstance(node, ast.AttributePath):
        last = node.attributes[-1]
        if node.field is not None:
            return last.fields()[node.field]
        return getattr(last, "python_type", None)
    if isinstance(node, ast.Constructor):
        return node.target
    if isinstance(node, ast.Aggregate):
        if node.name == "COUNT":
            return int
        if node.name == "AVG":
            return float
        return static_type(node.operand, statement) if node.operand is not None else None
    if isinstance(node, ast.FunctionCall):
        if node.name in ("CONCAT", "SUBSTRING", "TRIM", "LOWER", "UPPER"):
            return str
        if node.name in ("LENGTH", "LOCATE", "MOD"):
            return int
        if node.name == "SQRT":
            return float
        if node.name == "ABS":
            return static_type(node.args[0], statement)
        return None
    if isinstance(node, ast.Binary):
        if node.op in ("AND", "OR") or node.op in ast.COMPARISON_OPS:
            return bool
        left, right = static_type(node.left, statement), static_type(node.right, statement)
        if left is int and right is int:
            return float if node.op == "/" else int
        if left in (int, float) and right in (int, float):
            return float
        return None
    if isinstance(node, (ast.Between, ast.Like, ast.InList, ast.InSubquery, ast.IsNull, ast.Exists)):
        return bool
    return None


def _alias_meta(statement: ast.SelectStatement, alias: str) -> EntityMeta | None:
    for root in statement.roots:
        decl = root.decl
        if isinstance(decl, ast.RangeDecl) and decl.alias == alias:
            return decl.meta
        for join in root.joins:
            if join.alias != alias:
                continue
            if isinstance(join.target, ast.RangeDecl):
                return join.target.meta
            if isinstance(join.target, ast.AttributePath):
                return join.target.attributes[-1].target
    return None


# --- Compiler ---------------------------------------------------------------


class _Scope:
    def __init__(self, parent: _Scope | None) -> None:
        self.parent = parent
        self.aliases: dict[str, EntityMeta] = {}

    def lookup(self, alias: str) -> EntityMeta | None:
        scope: _Scope | None = self
        while scope is not None:
            if alias in scope.aliases:
                return scope.aliases[alias]
            scope = scope.parent
        return None


class _Compiler:
    def __init__(self, text: str, entities: EntityRegistry, packages: tuple[str, ...]) -> None:
        self.text = text
        self.entities = entities
        self.packages = packages
        self.parameters: set[str | int] = set()

    def fail(self, message: str) -> QueryResolutionError:
        return QueryResolutionError(f"{message} in query: {self.text!r}")

    # --- Statement ----------------------------------------------------------

    def statement(self, stmt: ast.SelectStatement, scope: _Scope | None) -> ast.SelectStatement:
        local = _Scope(scope)
        roots = tuple(self.from_root(root, local) for root in stmt.roots)

        items = tuple(
            ast.SelectItem(self.select_expr(item.expr, local), item.alias) for item in stmt.items
        )
        where = self.expr(stmt.where, local, allow_aggregates=False) if stmt.where else None
        group_by = tuple(self.expr(e, local, allow_aggregates=False) for e in stmt.group_by)
        having = self.expr(stmt.having, local) if stmt.having else None

        result_aliases = {item.alias: i for i, item in enumerate(items) if item.alias}
        order_by = tuple(
            dataclasses.replace(o, expr=self.order_expr(o.expr, local, result_aliases))
            for o in stmt.order_by
        )

        aggregated = bool(group_by) or any(
            _contains_aggregate(item.expr) for item in items
        ) or (having is not None)
        if aggregated:
            self.check_grouping(items, group_by, having, order_by, local)

        return ast.SelectStatement(
            items=items,
            roots=roots,
            distinct=stmt.distinct,
            where=where,
            group_by=group_by,
            having=having,
            order_by=order_by,
            aggregated=aggregated,
        )

    def check_grouping(
        self,
        items: tuple[ast.SelectItem, ...],
        group_by: tuple[ast.Node, ...],
        having: ast.Node | None,
        order_by: tuple[ast.OrderItem, ...],
        scope: _Scope,
    ) -> None:
        """Outside aggregates, an aggregate query may only use its GROUP BY expressions."""

        def visit(node: ast.Node, clause: str) -> None:
            if isinstance(node, ast.Aggregate) or node in group_by:
                return
            alias = node.alias if isinstance(node, (ast.AliasRef, ast.AttributePath)) else None
            if alias is not None:
                # Outer aliases are constant within a group; a grouped alias covers its paths.
                if alias in scope.aliases and ast.AliasRef(alias) not in group_by:
                    raise self.fail(
                        f"{_describe(node)} in the {clause} clause is neither aggregated "
                        "nor listed in GROUP BY"
                    )
                return
            for child in ast.children(node):
                visit(child, clause)

        for item in items:
            visit(item.expr, "SELECT")
        if having is not None:
            visit(having, "HAVING")
        for order in order_by:
            visit(order.expr, "ORDER BY")

    def declare(self, scope: _Scope, alias: str, meta: EntityMeta) -> None:
        if scope.lookup(alias) is not None:
            raise self.fail(f"identification variable {alias!r} is already defined")
        scope.aliases[alias] = meta

    def entity(self, name: str) -> EntityMeta:
        meta = self.entities.find(name)
        if meta is None:
            raise self.fail(f"unknown entity {name!r}")
        return meta

    def from_root(self, root: ast.FromRoot, scope: _Scope) -> ast.FromRoot:
        decl = root.decl
        if isinstance(decl, ast.RangeDecl):
            meta = self.entity(decl.entity_name)
            self.declare(scope, decl.alias, meta)
            compiled_decl: ast.Node = dataclasses.replace(decl, meta=meta)
        elif isinstance(decl, ast.PathDecl):
            if scope.parent is None:
                raise self.fail("a path in the FROM clause is only allowed in subqueries")
            path = self.association_path(decl.path, scope)
            self.declare(scope, decl.alias, path.attributes[-1].target)
            compiled_decl = ast.PathDecl(path, decl.alias)
        else:
            raise self.fail(f"unsupported FROM declaration {type(decl).__name__}")
        joins = tuple(self.join(join, scope) for join in root.joins)
        return ast.FromRoot(compiled_decl, joins)

    def join(self, join: ast.Join, scope: _Scope) -> ast.Join:
        if isinstance(join.target, ast.RangeDecl):
            meta = self.entity(join.target.entity_name)
            target: ast.Node = dataclasses.replace(join.target, meta=meta)
            if join.on is None:
                raise self.fail(f"join to entity {meta.name} requires an ON clause")
        else:
            target = self.association_path(join.target, scope)
            meta = target.attributes[-1].target
        self.declare(scope, join.alias, meta)
        on = self.expr(join.on, scope, allow_aggregates=False) if join.on is not None else None
        return dataclasses.replace(join, target=target, on=on)

    def association_path(self, path: ast.Node, scope: _Scope) -> ast.AttributePath:
        if not isinstance(path, ast.Path):
            raise self.fail("expected an association path")
        resolved = self.resolve_path(path, scope)
        if not isinstance(resolved, ast.AttributePath) or not isinstance(
            resolved.attributes[-1], ManyToOne
        ) or resolved.field is not None:
            raise self.fail(f"{'.'.join(path.parts)} is not an association")
        return resolved

    # --- Expressions --------------------------------------------------------

    def select_expr(self, node: ast.Node, scope: _Scope) -> ast.Node:
        if isinstance(node, ast.Constructor):
            return self.constructor(node, scope)
        return self.expr(node, scope)

    def order_expr(self, node: ast.Node, scope: _Scope, result_aliases: dict[str, int]) -> ast.Node:
        if (
            isinstance(node, ast.Path)
            and len(node.parts) == 1
            and node.parts[0] in result_aliases
            and scope.lookup(node.parts[0]) is None
        ):
            return ast.ResultVariable(result_aliases[node.parts[0]])
        return self.expr(node, scope)

    def expr(self, node: ast.Node, scope: _Scope, *, allow_aggregates: bool = True) -> ast.Node:
        def sub(n: ast.Node) -> ast.Node:
            return self.expr(n, scope, allow_aggregates=allow_aggregates)

        if isinstance(node, ast.Literal):
            return node
        if isinstance(node, ast.Parameter):
            self.parameters.add(node.key)
            return node
        if isinstance(node, ast.Path):
            return self.resolve_path(node, scope)
        if isinstance(node, ast.TypeOf):
            operand = sub(node.operand)
            is_entity = isinstance(operand, ast.AliasRef) or (
                isinstance(operand, ast.AttributePath)
                and isinstance(operand.attributes[-1], ManyToOne)
                and operand.field is None
            )
            if not is_entity:
                raise self.fail("TYPE() expects an entity-valued identification variable or path")
            return ast.TypeOf(operand)
        if isinstance(node, ast.Unary):
            return ast.Unary(node.op, sub(node.operand))
        if isinstance(node, ast.Binary):
            return ast.Binary(node.op, sub(node.left), sub(node.right))
        if isinstance(node, ast.Between):
            return ast.Between(sub(node.operand), sub(node.low), sub(node.high), node.negated)
        if isinstance(node, ast.Like):
            escape = sub(node.escape) if node.escape is not None else None
            return ast.Like(sub(node.operand), sub(node.pattern), escape, node.negated)
        if isinstance(node, ast.InList):
            return ast.InList(sub(node.operand), tuple(sub(i) for i in node.items), node.negated)
        if isinstance(node, ast.InSubquery):
            return ast.InSubquery(
                sub(node.operand), self.subquery(node.subquery, scope), node.negated
            )
        if isinstance(node, ast.IsNull):
            return ast.IsNull(sub(node.operand), node.negated)
        if isinstance(node, ast.Exists):
            return ast.Exists(self.subquery(node.subquery, scope), node.negated)
        if isinstance(node, ast.Quantified):
            return ast.Quantified(
                node.op, sub(node.operand), node.quantifier, self.subquery(node.subquery, scope)
            )
        if isinstance(node, ast.Subquery):
            return ast.Subquery(self.subquery(node.statement, scope))
        if isinstance(node, ast.FunctionCall):
            self.check_arity(node)
            return ast.FunctionCall(node.name, tuple(sub(a) for a in node.args))
        if isinstance(node, ast.Aggregate):
            if not allow_aggregates:
                raise self.fail(f"aggregate {node.name}() is not allowed here")
            operand = (
                self.expr(node.operand, scope, allow_aggregates=False)
                if node.operand is not None
                else None
            )
            return ast.Aggregate(node.name, operand, node.distinct)
        if isinstance(node, ast.Case):
            whens = tuple((sub(c), sub(r)) for c, r in node.whens)
            otherwise = sub(node.otherwise) if node.otherwise is not None else None
            return ast.Case(whens, otherwise)
        if isinstance(node, ast.Constructor):
            raise self.fail("NEW is only allowed as a SELECT item")
        raise self.fail(f"unsupported expression {type(node).__name__}")

    def subquery(self, stmt: ast.SelectStatement, scope: _Scope) -> ast.SelectStatement:
        if len(stmt.items) != 1:
            raise self.fail("a subquery must select exactly one value")
        compiled = self.statement(stmt, scope)
        if isinstance(compiled.items[0].expr, ast.Constructor):
            raise self.fail("NEW is not allowed in a subquery")
        return compiled

    _ARITY = {
        "CONCAT": (2, None),
        "SUBSTRING": (2, 3),
        "TRIM": (3, 3),
        "LOWER": (1, 1),
        "UPPER": (1, 1),
        "LENGTH": (1, 1),
        "LOCATE": (2, 3),
        "ABS": (1, 1),
        "SQRT": (1, 1),
        "MOD": (2, 2),
        "COALESCE": (2, None),
        "NULLIF": (2, 2),
    }

    def check_arity(self, node: ast.FunctionCall) -> None:
        low, high = self._ARITY[node.name]
        count = len(node.args)
        if count < low or (high is not None and count > high):
            raise self.fail(f"wrong number of arguments to {node.name}()")

    def resolve_path(self, path: ast.Path, scope: _Scope) -> ast.Node:
        head, rest = path.parts[0], path.parts[1:]
        meta = scope.lookup(head)
        if meta is None:
            if not rest and self.entities.find(head) is not None:
                return ast.EntityTypeLiteral(self.entities.get(head))
            constant = _import_enum_constant(path.parts, self.packages)
            if constant is not None:
                return ast.Literal(constant)
            raise self.fail(f"unknown identification variable {head!r}")
        if not rest:
            return ast.AliasRef(head)

        attributes = []
        current = meta
        field_name: str | None = None
        for i, name in enumerate(rest):
            attr = current.attributes.get(name)
            if attr is None:
                raise self.fail(f"{current.name} has no attribute {name!r}")
            attributes.append(attr)
            remaining = rest[i + 1 :]
            if isinstance(attr, ManyToOne):
                current = attr.target
                continue
            if isinstance(attr, Embedded):
                if remaining:
                    if len(remaining) > 1 or remaining[0] not in attr.fields():
                        raise self.fail(
                            f"{attr.python_type.__name__} has no attribute {'.'.join(remaining)!r}"
                        )
                    field_name = remaining[0]
                break
            if isinstance(attr, (Column, Id)) and remaining:
                raise self.fail(f"cannot navigate past {current.name}.{name}")
            break
        return ast.AttributePath(head, tuple(attributes), field_name)

    def constructor(self, node: ast.Constructor, scope: _Scope) -> ast.Constructor:
        target = _import_class(node.class_name, self.packages)
        if target is None:
            scope_names = ", ".join(self.packages) or "no package"
            raise self.fail(
                f"cannot resolve class {node.class_name!r} "
                f"(use the fully-qualified name of a class in {scope_names})"
            )
        args = tuple(self.expr(a, scope) for a in node.args)
        try:
            inspect.signature(target).bind(*args)
        except TypeError as e:
            raise ConstructorProjectionError(
                f"no constructor {node.class_name}({len(args)} arguments): {e}"
            ) from e
        for index, (hint, arg) in enumerate(zip(constructor_hints(target), args), start=1):
            inferred = static_type(arg)
            if inferred is not None and not accepts(hint, inferred):
                raise ConstructorProjectionError(
                    f"argument {index} of {node.class_name} expects {_type_name(hint)}, "
                    f"query provides {inferred.__name__}"
                )
        return ast.Constructor(node.class_name, args, node.position, target)


def _type_name(hint: Any) -> str:
    return getattr(hint, "__name__", repr(hint))


def _describe(node: ast.AliasRef | ast.AttributePath) -> str:
    if isinstance(node, ast.AliasRef):
        return node.alias
    parts = [node.alias, *(a.name for a in node.attributes)]
    if node.field is not None:
        parts.append(node.field)
    return ".".join(parts)


def _contains_aggregate(node: ast.Node) -> bool:
    if isinstance(node, ast.Aggregate):
        return True
    return any(_contains_aggregate(child) for child in ast.children(node))


def _within(module_name: str, packages: tuple[str, ...]) -> bool:
    return any(module_name == p or module_name.startswith(p + ".") for p in packages)


def _import_object(parts: tuple[str, ...], packages: tuple[str, ...]) -> Any:
    if any(part.startswith("_") for part in parts):
        return None
    for split in range(len(parts) - 1, 0, -1):
        module_name = ".".join(parts[:split])
        if not _within(module_name, packages):
            continue
        try:
            obj: Any = importlib.import_module(module_name)
        except ImportError:
            continue
        for name in parts[split:]:
            obj = getattr(obj, name, None)
            if obj is None:
                return None
        return obj
    return None


def _import_enum_constant(parts: tuple[str, ...], packages: tuple[str, ...]) -> enum.Enum | None:
    if len(parts) < 3:
        return None
    obj = _import_object(parts, packages)
    return obj if isinstance(obj, enum.Enum) else None


def _import_class(name: str, packages: tuple[str, ...]) -> type | None:
    obj = _import_object(tuple(name.split(".")), packages)
    return obj if isinstance(obj, type) else None


# --- Module Notes -----------------------------------------------------------
# Enum constants and constructor targets must be fully qualified (module path included),
# the same way the query language names Java types. Only modules of the unit's packages
# are ever imported by a query.
