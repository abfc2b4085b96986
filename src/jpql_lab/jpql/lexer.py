"""
jpql_lab.jpql.lexer

Tokenizer for the query language.

Responsibilities:
- Split query text into identifiers, literals, parameters and punctuation.
- Decode string literals ('' escapes a quote) and typed numeric suffixes (L, D, F).

Keywords are not special at this level: they are identifiers that the parser compares
case-insensitively. That keeps entity names such as `Order` usable.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any

from jpql_lab.persistence.errors import QuerySyntaxError


class TokenKind(enum.StrEnum):
    ident = "IDENT"
    string = "STRING"
    number = "NUMBER"
    named_param = "NAMED_PARAM"
    positional_param = "POSITIONAL_PARAM"
    symbol = "SYMBOL"
    eof = "EOF"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str
    position: int
    value: Any = None

    @property
    def upper(self) -> str:
        return self.text.upper()

    def is_keyword(self, *words: str) -> bool:
        return self.kind is TokenKind.ident and self.text.upper() in words

    def is_symbol(self, *symbols: str) -> bool:
        return self.kind is TokenKind.symbol and self.text in symbols


_NUMBER = re.compile(r"(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?([lLdDfF])?")
_IDENT = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_SYMBOLS = ("<>", "!=", "<=", ">=", "=", "<", ">", "(", ")", ",", ".", "+", "-", "*", "/")


def tokenize(query: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0
    n = len(query)
    while i < n:
        ch = query[i]
        if ch.isspace():
            i += 1
            continue
        if ch == "'":
            start = i
            i += 1
            chars: list[str] = []
            while True:
                if i >= n:
                    raise QuerySyntaxError("unterminated string literal", query=query, position=start)
                if query[i] == "'":
                    if i + 1 < n and query[i + 1] == "'":
                        chars.append("'")
                        i += 2
                        continue
                    i += 1
                    break
                chars.append(query[i])
                i += 1
            tokens.append(Token(TokenKind.string, query[start:i], start, "".join(chars)))
            continue
        if ch.isdigit() or (ch == "." and i + 1 < n and query[i + 1].isdigit()):
            m = _NUMBER.match(query, i)
            if m is None:
                raise QuerySyntaxError("malformed numeric literal", query=query, position=i)
            tokens.append(Token(TokenKind.number, m.group(0), i, _number_value(m)))
            i = m.end()
            continue
        if ch == ":":
            m = _IDENT.match(query, i + 1)
            if m is None:
                raise QuerySyntaxError("expected parameter name after ':'", query=query, position=i)
            tokens.append(Token(TokenKind.named_param, m.group(0), i, m.group(0)))
            i = m.end()
            continue
        if ch == "?":
            j = i + 1
            while j < n and query[j].isdigit():
                j += 1
            if j == i + 1:
                raise QuerySyntaxError("expected position after '?'", query=query, position=i)
            tokens.append(Token(TokenKind.positional_param, query[i:j], i, int(query[i + 1 : j])))
            i = j
            continue
        m = _IDENT.match(query, i)
        if m is not None:
            tokens.append(Token(TokenKind.ident, m.group(0), i))
            i = m.end()
            continue
        for symbol in _SYMBOLS:
            if query.startswith(symbol, i):
                tokens.append(Token(TokenKind.symbol, symbol, i))
                i += len(symbol)
                break
        else:
            raise QuerySyntaxError(f"unexpected character {ch!r}", query=query, position=i)
    tokens.append(Token(TokenKind.eof, "", n))
    return tokens


def _number_value(m: re.Match[str]) -> int | float:
    digits, exponent, suffix = m.group(1), m.group(2) or "", (m.group(3) or "").upper()
    if suffix in ("D", "F") or "." in digits or exponent:
        return float(digits + exponent)
    return int(digits)


# --- Module Notes -----------------------------------------------------------
# `10L` is an int, `10D`/`10F` are floats; Python has no separate long/float widths.
