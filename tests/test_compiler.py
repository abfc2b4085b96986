"""
tests.test_compiler

Name resolution and compile-time checks.

Responsibilities:
- Case-sensitive entity/attribute resolution and alias scoping.
- Parameter collection and result-type inference.
- Enum constants, entity type literals and constructor-projection checks.
- Grouping rules of aggregate queries; lookups confined to the unit's packages.
"""

from __future__ import annotations

import pytest

from jpql_lab.domain import MemberDto, MemberType, Team
from jpql_lab.jpql import ast
from jpql_lab.jpql.compiler import check_result_type, compile_query
from jpql_lab.jpql.evaluator import Evaluator
from jpql_lab.jpql.parser import parse
from jpql_lab.persistence.errors import (
    ConstructorProjectionError,
    QueryExecutionError,
    QueryResolutionError,
    QueryResultTypeError,
)
from jpql_lab.persistence.mapping import registry


def _compile(text: str):
    return compile_query(text, registry, packages=("jpql_lab.domain",))


def test_entity_names_are_case_sensitive() -> None:
    with pytest.raises(QueryResolutionError) as excinfo:
        _compile("select m from member m")
    assert "unknown entity 'member'" in str(excinfo.value)


def test_attribute_names_are_case_sensitive() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m.Username from Member m")


def test_unknown_alias() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select x from Member m")


def test_duplicate_alias() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m from Member m, Team m")


def test_aggregate_not_allowed_in_where() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m from Member m where count(m) > 1")


def test_entity_join_requires_on() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m from Member m join Team t")


def test_path_in_from_only_in_subqueries() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select t from m.team t")


def test_navigation_past_a_column_fails() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m.username.length from Member m")


def test_parameters_are_collected() -> None:
    compiled = _compile(
        "select m from Member m where m.username = :username and m.age > ?1 "
        "and exists (select t from m.team t where t.name = :teamName)"
    )
    assert compiled.parameters == frozenset({"username", 1, "teamName"})


def test_result_type_inference() -> None:
    assert _compile("select m from Member m").result_type.__name__ == "Member"
    assert _compile("select m.username from Member m").result_type is str
    assert _compile("select m.address.city from Member m").result_type is str
    assert _compile("select count(m) from Member m").result_type is int
    assert _compile("select avg(m.age) from Member m").result_type is float
    assert _compile("select m.username, m.age from Member m").result_type is tuple
    assert _compile("select m.team from Member m").result_type is Team


def test_enum_constant_resolves_to_literal() -> None:
    compiled = _compile(
        "select m from Member m where m.type = jpql_lab.domain.models.MemberType.ADMIN"
    )
    where = compiled.statement.where
    assert isinstance(where, ast.Binary)
    assert where.right == ast.Literal(MemberType.ADMIN)


def test_unknown_enum_constant() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m from Member m where m.type = jpql_lab.domain.models.MemberType.GUEST")


def test_entity_type_literal() -> None:
    compiled = _compile("select p from Product p where type(p) = Book")
    where = compiled.statement.where
    assert isinstance(where.right, ast.EntityTypeLiteral)
    assert where.right.meta.name == "Book"


def test_type_requires_entity_operand() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m from Member m where type(m.username) = Member")


def test_constructor_target_resolved() -> None:
    compiled = _compile(
        "select new jpql_lab.domain.dto.MemberDto(m.username, m.age) from Member m"
    )
    assert compiled.result_type is MemberDto


def test_constructor_requires_fully_qualified_name() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select new MemberDto(m.username, m.age) from Member m")


def test_constructor_arity_mismatch() -> None:
    with pytest.raises(ConstructorProjectionError):
        _compile("select new jpql_lab.domain.dto.MemberDto(m.username) from Member m")


def test_constructor_argument_type_mismatch() -> None:
    with pytest.raises(ConstructorProjectionError) as excinfo:
        _compile("select new jpql_lab.domain.dto.MemberDto(m.age, m.username) from Member m")
    assert "argument 1" in str(excinfo.value)


def test_constructor_not_allowed_in_subquery() -> None:
    with pytest.raises(QueryResolutionError):
        _compile(
            "select m from Member m where exists "
            "(select new jpql_lab.domain.dto.MemberDto(m2.username, m2.age) from Member m2)"
        )


def test_check_result_type() -> None:
    check_result_type(_compile("select m.username from Member m"), str)
    check_result_type(_compile("select m.username, m.age from Member m"), tuple)
    with pytest.raises(QueryResultTypeError):
        check_result_type(_compile("select m from Member m"), Team)
    with pytest.raises(QueryResultTypeError):
        check_result_type(_compile("select m.username, m.age from Member m"), str)
    with pytest.raises(QueryResultTypeError):
        check_result_type(_compile("select m.age from Member m"), float)


def test_aggregate_query_rejects_ungrouped_select_items() -> None:
    with pytest.raises(QueryResolutionError) as excinfo:
        _compile("select m.username, count(m) from Member m")
    assert "m.username" in str(excinfo.value)
    with pytest.raises(QueryResolutionError):
        _compile("select m.age from Member m group by m.username")


def test_aggregate_query_rejects_ungrouped_having_and_order_by() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m.username from Member m group by m.username having m.age > 1")
    with pytest.raises(QueryResolutionError):
        _compile("select m.username, count(m) from Member m group by m.username order by m.age")


def test_aggregate_query_accepts_grouped_expressions() -> None:
    _compile(
        "select t.name, count(m) from Member m join m.team t group by t.name "
        "having count(m) > 1 order by t.name"
    )
    _compile("select m.username, m.age from Member m group by m")
    # Correlated references to the outer query are constant within the subquery's group.
    _compile(
        "select m from Member m where m.age > (select max(m2.age) - m.age from Member m2)"
    )


def test_constructor_outside_unit_packages_is_not_imported() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select new subprocess.Popen(m.username) from Member m")
    with pytest.raises(QueryResolutionError):
        compile_query(
            "select new jpql_lab.domain.dto.MemberDto(m.username, m.age) from Member m", registry
        )


def test_enum_constant_outside_unit_packages_is_not_resolved() -> None:
    with pytest.raises(QueryResolutionError):
        _compile("select m from Member m where m.type = enum.Enum.name")


def test_evaluating_an_uncompiled_statement_fails() -> None:
    with pytest.raises(QueryExecutionError):
        Evaluator(source=None, parameters={}).run(parse("select m from Member m"))


# --- Module Notes -----------------------------------------------------------
# These tests need no storage: compilation only reads the entity registry.
