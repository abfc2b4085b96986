"""
tests.test_lexer_parser

Tokenizer and parser behaviour.

Responsibilities:
- Literal decoding (quote escapes, numeric suffixes) and parameter tokens.
- Case-insensitive keywords, optional AS, mandatory aliases.
- Syntax errors carry the offending position.
"""

from __future__ import annotations

import pytest

from jpql_lab.jpql import ast
from jpql_lab.jpql.lexer import TokenKind, tokenize
from jpql_lab.jpql.parser import parse
from jpql_lab.persistence.errors import QuerySyntaxError


def test_string_literal_doubles_quotes() -> None:
    tokens = tokenize("'She''s'")
    assert tokens[0].kind is TokenKind.string
    assert tokens[0].value == "She's"


def test_numeric_suffixes() -> None:
    values = [t.value for t in tokenize("10L 10D 1.5F 7 2.5")[:-1]]
    assert values == [10, 10.0, 1.5, 7, 2.5]
    assert isinstance(values[0], int)
    assert isinstance(values[1], float)


def test_parameter_tokens() -> None:
    named, positional, eof = tokenize(":username ?1")
    assert (named.kind, named.value) == (TokenKind.named_param, "username")
    assert (positional.kind, positional.value) == (TokenKind.positional_param, 1)
    assert eof.kind is TokenKind.eof


def test_unterminated_string_reports_position() -> None:
    with pytest.raises(QuerySyntaxError) as excinfo:
        tokenize("select m from Member m where m.username = 'abc")
    assert excinfo.value.position == 42


def test_keywords_are_case_insensitive_and_as_is_optional() -> None:
    stmt = parse("SeLeCt m FrOm Member AS m WhErE m.age > 18")
    root = stmt.roots[0].decl
    assert isinstance(root, ast.RangeDecl)
    assert (root.entity_name, root.alias) == ("Member", "m")
    assert isinstance(stmt.where, ast.Binary)
    assert stmt.where.op == ">"


def test_alias_is_mandatory() -> None:
    with pytest.raises(QuerySyntaxError) as excinfo:
        parse("select m from Member where m.age > 18")
    assert "identification variable" in str(excinfo.value)


def test_not_equals_is_normalized() -> None:
    stmt = parse("select m from Member m where m.age != 3")
    assert stmt.where == ast.Binary("<>", ast.Path(("m", "age"), 29), ast.Literal(3))


def test_join_kinds() -> None:
    stmt = parse(
        "select m from Member m left outer join m.team t on t.name = 'A' inner join fetch m.team"
    )
    left, fetch = stmt.roots[0].joins
    assert left.kind == "LEFT"
    assert left.on is not None
    assert fetch.kind == "INNER"
    assert fetch.fetch


def test_constructor_and_order_by() -> None:
    stmt = parse(
        "select new jpql_lab.domain.dto.MemberDto(m.username, m.age) from Member m "
        "order by m.age desc nulls first, m.username"
    )
    item = stmt.items[0].expr
    assert isinstance(item, ast.Constructor)
    assert item.class_name == "jpql_lab.domain.dto.MemberDto"
    assert len(item.args) == 2
    first, second = stmt.order_by
    assert first.descending and first.nulls_first is True
    assert not second.descending and second.nulls_first is None


def test_subquery_predicates() -> None:
    stmt = parse(
        "select m from Member m where exists (select t from m.team t) "
        "and m.age > all (select m2.age from Member m2) "
        "and m.id not in (select o.member.id from Order o)"
    )
    conjunction = stmt.where
    assert isinstance(conjunction, ast.Binary) and conjunction.op == "AND"
    assert isinstance(conjunction.right, ast.InSubquery)
    assert conjunction.right.negated
    assert isinstance(conjunction.left.right, ast.Quantified)
    assert conjunction.left.right.quantifier == "ALL"
    assert isinstance(conjunction.left.left, ast.Exists)


def test_not_requires_a_predicate_keyword() -> None:
    with pytest.raises(QuerySyntaxError):
        parse("select m from Member m where m.age not 3")


def test_trailing_tokens_are_rejected() -> None:
    with pytest.raises(QuerySyntaxError) as excinfo:
        parse("select m from Member m m2")
    assert excinfo.value.position == 23


# --- Module Notes -----------------------------------------------------------
# Positions are zero-based character offsets into the query text.
