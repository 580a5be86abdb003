"""
Access expressions: pure evaluation of the `amp-access` attribute against an authorization response.

Grammar (keywords are case-sensitive):

    expr    := or
    or      := and ("OR" and)*
    and     := not ("AND" not)*
    not     := "NOT" not | cmp
    cmp     := value (("=" | "!=" | "<" | "<=" | ">" | ">=") value)?
    value   := "(" expr ")" | STRING | NUMBER | "true" | "false" | "NULL" | FIELD

FIELD is a dotted path (`data.views`) looked up with get_value_for_expr.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op><=|>=|!=|=|<|>|\(|\))
      | (?P<word>[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"NOT", "AND", "OR"}
_LITERALS = {"true": True, "false": False, "NULL": None}


class AccessExprError(ValueError):
    """Expression could not be parsed."""


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str


def get_value_for_expr(data: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; None when any step is missing."""
    if path == ".":
        return data
    value = data
    for part in path.split("."):
        if not part or not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _is_truthy(value: Any) -> bool:
    # JSON truthiness: null, false, 0, "" are false; containers are true even if empty.
    if isinstance(value, (dict, list)):
        return True
    return bool(value)


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise AccessExprError(f"Unexpected character at {pos}: {text[pos:pos + 10]!r}")
        pos = m.end()
        kind = m.lastgroup
        tokens.append(_Token(kind, m.group(kind)))
    return tokens


Node = Callable[[dict], Any]


class _Parser:
    def __init__(self, tokens: list[_Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> _Token:
        token = self.peek()
        if token is None:
            raise AccessExprError("Unexpected end of expression")
        self.pos += 1
        return token

    def at_word(self, word: str) -> bool:
        token = self.peek()
        return token is not None and token.kind == "word" and token.value == word

    def parse(self) -> Node:
        if not self.tokens:
            raise AccessExprError("Empty expression")
        node = self.parse_or()
        if self.peek() is not None:
            raise AccessExprError(f"Unexpected token: {self.peek().value!r}")
        return node

    def parse_or(self) -> Node:
        left = self.parse_and()
        while self.at_word("OR"):
            self.take()
            right = self.parse_and()
            left = (lambda a, b: lambda d: _is_truthy(a(d)) or _is_truthy(b(d)))(left, right)
        return left

    def parse_and(self) -> Node:
        left = self.parse_not()
        while self.at_word("AND"):
            self.take()
            right = self.parse_not()
            left = (lambda a, b: lambda d: _is_truthy(a(d)) and _is_truthy(b(d)))(left, right)
        return left

    def parse_not(self) -> Node:
        if self.at_word("NOT"):
            self.take()
            inner = self.parse_not()
            return lambda d: not _is_truthy(inner(d))
        return self.parse_cmp()

    def parse_cmp(self) -> Node:
        left = self.parse_value()
        token = self.peek()
        if token is not None and token.kind == "op" and token.value not in ("(", ")"):
            op = self.take().value
            right = self.parse_value()
            return lambda d: _compare(op, left(d), right(d))
        return left

    def parse_value(self) -> Node:
        token = self.take()
        if token.kind == "op" and token.value == "(":
            inner = self.parse_or()
            closing = self.take()
            if closing.value != ")":
                raise AccessExprError("Expected ')'")
            return inner
        if token.kind == "string":
            literal = _unquote(token.value)
            return lambda d: literal
        if token.kind == "number":
            number = float(token.value) if "." in token.value else int(token.value)
            return lambda d: number
        if token.kind == "word":
            if token.value in _KEYWORDS:
                raise AccessExprError(f"Unexpected keyword: {token.value}")
            if token.value in _LITERALS:
                constant = _LITERALS[token.value]
                return lambda d: constant
            path = token.value
            return lambda d: get_value_for_expr(d, path)
        raise AccessExprError(f"Unexpected token: {token.value!r}")


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "=":
        return _strict_equal(left, right)
    if op == "!=":
        return not _strict_equal(left, right)
    # Ordering is defined only between two numbers or two strings.
    if not ((_is_number(left) and _is_number(right))
            or (isinstance(left, str) and isinstance(right, str))):
        return False
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


@lru_cache(maxsize=256)
def compile_access_expr(expr: str) -> Node:
    return _Parser(_tokenize(expr)).parse()


def evaluate_access_expr(expr: str, data: dict | None) -> bool:
    """Evaluate expr against the authorization response; a missing response evaluates as {}."""
    return _is_truthy(compile_access_expr(expr)(data or {}))
