"""
jpql_lab.jpql.parser

Recursive-descent parser for SELECT statements.

Responsibilities:
- Turn a token stream into an `ast.SelectStatement`.
- Report syntax errors with the offending position.

Names are kept as written; resolving entities, aliases and attributes is the compiler's job.
"""

from __future__ import annotations

from jpql_lab.jpql import ast
from jpql_lab.jpql.lexer import Token, TokenKind, tokenize
from jpql_lab.persistence.errors import QuerySyntaxError

# Words that end an expression or a FROM item; they can never be an implicit alias.
_RESERVED = frozenset(
    {
        "SELECT", "FROM", "WHERE", "GROUP", "BY", "HAVING", "ORDER", "ASC", "DESC", "JOIN",
        "INNER", "LEFT", "OUTER", "FETCH", "ON", "AND", "OR", "NOT", "AS", "DISTINCT", "NEW",
        "IN", "IS", "NULL", "LIKE", "ESCAPE", "BETWEEN", "EXISTS", "ALL", "ANY", "SOME",
        "CASE", "WHEN", "THEN", "ELSE", "END", "NULLS", "TRUE", "FALSE",
    }
)


def parse(query: str) -> ast.SelectStatement:
    return Parser(query).parse()


class Parser:
    def __init__(self, query: str) -> None:
        self.query = query
        self.tokens = tokenize(query)
        self.pos = 0

    # --- Token helpers ------------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind is not TokenKind.eof:
            self.pos += 1
        return tok

    def error(self, message: str, tok: Token | None = None) -> QuerySyntaxError:
        tok = tok or self.current
        found = tok.text or "end of query"
        return QuerySyntaxError(f"{message}, found {found!r}", query=self.query, position=tok.position)

    def accept_keyword(self, *words: str) -> Token | None:
        if self.current.is_keyword(*words):
            return self.advance()
        return None

    def expect_keyword(self, word: str) -> Token:
        tok = self.accept_keyword(word)
        if tok is None:
            raise self.error(f"expected {word}")
        return tok

    def accept_symbol(self, *symbols: str) -> Token | None:
        if self.current.is_symbol(*symbols):
            return self.advance()
        return None

    def expect_symbol(self, symbol: str) -> Token:
        tok = self.accept_symbol(symbol)
        if tok is None:
            raise self.error(f"expected {symbol!r}")
        return tok

    def expect_ident(self, what: str = "identifier") -> Token:
        tok = self.current
        if tok.kind is not TokenKind.ident:
            raise self.error(f"expected {what}")
        return self.advance()

    # --- Statement ----------------------------------------------------------

    def parse(self) -> ast.SelectStatement:
        stmt = self.select_statement()
        if self.current.kind is not TokenKind.eof:
            raise self.error("unexpected token")
        return stmt

    def select_statement(self) -> ast.SelectStatement:
        self.expect_keyword("SELECT")
        distinct = self.accept_keyword("DISTINCT") is not None
        items = [self.select_item()]
        while self.accept_symbol(","):
            items.append(self.select_item())

        self.expect_keyword("FROM")
        roots = [self.from_root()]
        while self.accept_symbol(","):
            roots.append(self.from_root())

        where = self.condition() if self.accept_keyword("WHERE") else None

        group_by: list[ast.Node] = []
        if self.accept_keyword("GROUP"):
            self.expect_keyword("BY")
            group_by.append(self.expression())
            while self.accept_symbol(","):
                group_by.append(self.expression())

        having = self.condition() if self.accept_keyword("HAVING") else None

        order_by: list[ast.OrderItem] = []
        if self.accept_keyword("ORDER"):
            self.expect_keyword("BY")
            order_by.append(self.order_item())
            while self.accept_symbol(","):
                order_by.append(self.order_item())

        return ast.SelectStatement(
            items=tuple(items),
            roots=tuple(roots),
            distinct=distinct,
            where=where,
            group_by=tuple(group_by),
            having=having,
            order_by=tuple(order_by),
        )

    def select_item(self) -> ast.SelectItem:
        new_tok = self.accept_keyword("NEW")
        if new_tok is not None:
            name_tok = self.current
            parts = [self.expect_ident("class name").text]
            while self.accept_symbol("."):
                parts.append(self.expect_ident("class name").text)
            self.expect_symbol("(")
            args = [self.expression()]
            while self.accept_symbol(","):
                args.append(self.expression())
            self.expect_symbol(")")
            expr: ast.Node = ast.Constructor(".".join(parts), tuple(args), name_tok.position)
        else:
            expr = self.expression()
        return ast.SelectItem(expr, self.optional_alias())

    def optional_alias(self) -> str | None:
        if self.accept_keyword("AS"):
            return self.expect_ident("alias").text
        tok = self.current
        if tok.kind is TokenKind.ident and tok.upper not in _RESERVED:
            return self.advance().text
        return None

    def required_alias(self) -> str:
        alias = self.optional_alias()
        if alias is None:
            raise self.error("expected identification variable")
        return alias

    def order_item(self) -> ast.OrderItem:
        expr = self.expression()
        descending = False
        if self.accept_keyword("DESC"):
            descending = True
        else:
            self.accept_keyword("ASC")
        nulls_first: bool | None = None
        if self.accept_keyword("NULLS"):
            tok = self.accept_keyword("FIRST", "LAST")
            if tok is None:
                raise self.error("expected FIRST or LAST")
            nulls_first = tok.upper == "FIRST"
        return ast.OrderItem(expr, descending, nulls_first)

    # --- FROM ---------------------------------------------------------------

    def from_root(self) -> ast.FromRoot:
        tok = self.expect_ident("entity name")
        if self.current.is_symbol("."):
            # Only valid in subqueries: FROM m.team t
            parts = [tok.text]
            while self.accept_symbol("."):
                parts.append(self.expect_ident("attribute").text)
            decl: ast.Node = ast.PathDecl(ast.Path(tuple(parts), tok.position), self.required_alias())
        else:
            decl = ast.RangeDecl(tok.text, self.required_alias(), tok.position)
        joins = []
        while self.current.is_keyword("JOIN", "INNER", "LEFT"):
            joins.append(self.join())
        return ast.FromRoot(decl, tuple(joins))

    def join(self) -> ast.Join:
        kind = "INNER"
        if self.accept_keyword("LEFT"):
            kind = "LEFT"
            self.accept_keyword("OUTER")
        else:
            self.accept_keyword("INNER")
        self.expect_keyword("JOIN")
        fetch = self.accept_keyword("FETCH") is not None
        tok = self.expect_ident("join target")
        if self.current.is_symbol("."):
            parts = [tok.text]
            while self.accept_symbol("."):
                parts.append(self.expect_ident("attribute").text)
            alias = self.optional_alias() if fetch else self.required_alias()
            target: ast.Node = ast.Path(tuple(parts), tok.position)
        else:
            alias = self.required_alias()
            target = ast.RangeDecl(tok.text, alias, tok.position)
        on = self.condition() if self.accept_keyword("ON") else None
        return ast.Join(kind, target, alias or f"_fetch{self.pos}", on, fetch)

    # --- Conditions ---------------------------------------------------------

    def condition(self) -> ast.Node:
        node = self.conjunction()
        while self.accept_keyword("OR"):
            node = ast.Binary("OR", node, self.conjunction())
        return node

    def conjunction(self) -> ast.Node:
        node = self.negation()
        while self.accept_keyword("AND"):
            node = ast.Binary("AND", node, self.negation())
        return node

    def negation(self) -> ast.Node:
        if self.accept_keyword("NOT"):
            return ast.Unary("NOT", self.negation())
        return self.predicate()

    def predicate(self) -> ast.Node:
        if self.current.is_keyword("EXISTS"):
            self.advance()
            return ast.Exists(self.parenthesized_subquery())

        left = self.expression()
        tok = self.current

        if tok.kind is TokenKind.symbol and tok.text in ("=", "<>", "!=", "<", "<=", ">", ">="):
            self.advance()
            op = "<>" if tok.text == "!=" else tok.text
            quantifier = self.accept_keyword("ALL", "ANY", "SOME")
            if quantifier is not None:
                return ast.Quantified(op, left, quantifier.upper, self.parenthesized_subquery())
            return ast.Binary(op, left, self.expression())

        if tok.is_keyword("IS"):
            self.advance()
            negated = self.accept_keyword("NOT") is not None
            self.expect_keyword("NULL")
            return ast.IsNull(left, negated)

        negated = False
        if tok.is_keyword("NOT") and self.peek().is_keyword("BETWEEN", "LIKE", "IN"):
            self.advance()
            negated = True

        if self.accept_keyword("BETWEEN"):
            low = self.expression()
            self.expect_keyword("AND")
            return ast.Between(left, low, self.expression(), negated)
        if self.accept_keyword("LIKE"):
            pattern = self.expression()
            escape = self.expression() if self.accept_keyword("ESCAPE") else None
            return ast.Like(left, pattern, escape, negated)
        if self.accept_keyword("IN"):
            if self.current.kind in (TokenKind.named_param, TokenKind.positional_param):
                return ast.InList(left, (self.primary(),), negated)
            self.expect_symbol("(")
            if self.current.is_keyword("SELECT"):
                sub = self.select_statement()
                self.expect_symbol(")")
                return ast.InSubquery(left, sub, negated)
            items = [self.expression()]
            while self.accept_symbol(","):
                items.append(self.expression())
            self.expect_symbol(")")
            return ast.InList(left, tuple(items), negated)
        if negated:
            raise self.error("expected BETWEEN, LIKE or IN after NOT")
        return left

    def parenthesized_subquery(self) -> ast.SelectStatement:
        self.expect_symbol("(")
        sub = self.select_statement()
        self.expect_symbol(")")
        return sub

    # --- Expressions --------------------------------------------------------

    def expression(self) -> ast.Node:
        node = self.term()
        while True:
            tok = self.accept_symbol("+", "-")
            if tok is None:
                return node
            node = ast.Binary(tok.text, node, self.term())

    def term(self) -> ast.Node:
        node = self.factor()
        while True:
            tok = self.accept_symbol("*", "/")
            if tok is None:
                return node
            node = ast.Binary(tok.text, node, self.factor())

    def factor(self) -> ast.Node:
        tok = self.accept_symbol("-", "+")
        if tok is not None:
            return ast.Unary(tok.text, self.factor())
        return self.primary()

    def primary(self) -> ast.Node:
        tok = self.current
        if tok.kind is TokenKind.string or tok.kind is TokenKind.number:
            self.advance()
            return ast.Literal(tok.value)
        if tok.kind is TokenKind.named_param or tok.kind is TokenKind.positional_param:
            self.advance()
            return ast.Parameter(tok.value)
        if tok.is_symbol("("):
            self.advance()
            if self.current.is_keyword("SELECT"):
                sub = self.select_statement()
                self.expect_symbol(")")
                return ast.Subquery(sub)
            node = self.condition()
            self.expect_symbol(")")
            return node
        if tok.kind is not TokenKind.ident:
            raise self.error("expected expression")

        word = tok.upper
        if word in ("TRUE", "FALSE"):
            self.advance()
            return ast.Literal(word == "TRUE")
        if word == "NULL":
            self.advance()
            return ast.Literal(None)
        if word == "CASE":
            return self.case_expression()
        if self.peek().is_symbol("("):
            if word in ast.AGGREGATES:
                return self.aggregate()
            if word == "TYPE":
                self.advance()
                self.expect_symbol("(")
                operand = self.path()
                self.expect_symbol(")")
                return ast.TypeOf(operand)
            if word == "TRIM":
                return self.trim()
            if word in ast.FUNCTIONS:
                return self.function_call()
            raise self.error("unknown function", tok)
        if word in _RESERVED:
            raise self.error("expected expression")
        return self.path()

    def path(self) -> ast.Path:
        tok = self.expect_ident()
        parts = [tok.text]
        while self.accept_symbol("."):
            parts.append(self.expect_ident("attribute").text)
        return ast.Path(tuple(parts), tok.position)

    def aggregate(self) -> ast.Aggregate:
        name = self.advance().upper
        self.expect_symbol("(")
        distinct = self.accept_keyword("DISTINCT") is not None
        operand: ast.Node | None
        if name == "COUNT" and self.accept_symbol("*"):
            operand = None
        else:
            operand = self.expression()
        self.expect_symbol(")")
        return ast.Aggregate(name, operand, distinct)

    def function_call(self) -> ast.FunctionCall:
        name = self.advance().upper
        self.expect_symbol("(")
        args = [self.expression()]
        while self.accept_symbol(","):
            args.append(self.expression())
        self.expect_symbol(")")
        return ast.FunctionCall(name, tuple(args))

    def trim(self) -> ast.FunctionCall:
        # TRIM([[LEADING|TRAILING|BOTH] [char] FROM] str)
        self.advance()
        self.expect_symbol("(")
        mode = "BOTH"
        char: ast.Node = ast.Literal(" ")
        side = self.accept_keyword("LEADING", "TRAILING", "BOTH")
        if side is not None:
            mode = side.upper
            if not self.current.is_keyword("FROM"):
                char = self.expression()
            self.expect_keyword("FROM")
            operand = self.expression()
        else:
            operand = self.expression()
            if self.accept_keyword("FROM"):
                char, operand = operand, self.expression()
        self.expect_symbol(")")
        return ast.FunctionCall("TRIM", (ast.Literal(mode), char, operand))

    def case_expression(self) -> ast.Case:
        self.expect_keyword("CASE")
        whens = []
        while self.accept_keyword("WHEN"):
            cond = self.condition()
            self.expect_keyword("THEN")
            whens.append((cond, self.expression()))
        if not whens:
            raise self.error("expected WHEN")
        otherwise = self.expression() if self.accept_keyword("ELSE") else None
        self.expect_keyword("END")
        return ast.Case(tuple(whens), otherwise)


# --- Module Notes -----------------------------------------------------------
# Subqueries are accepted wherever a parenthesized expression is; the compiler rejects
# subqueries in places the language does not allow (the FROM clause never parses one).
