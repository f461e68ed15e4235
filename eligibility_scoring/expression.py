"""Boolean expressions over rule identifiers.

Grammar (keywords are case-insensitive)::

    expr    := or_expr
    or_expr := and_expr ("OR" and_expr)*
    and_expr:= not_expr ("AND" not_expr)*
    not_expr:= "NOT" not_expr | atom
    atom    := IDENTIFIER | "(" expr ")"
"""

import re
from dataclasses import dataclass
from typing import Mapping

from .exceptions import ConfigurationError

_TOKEN = re.compile(r"\s*(?:(?P<lparen>\()|(?P<rparen>\))|(?P<word>[A-Za-z0-9_.\-]+)|(?P<bad>\S))")
_KEYWORDS = {"AND", "OR", "NOT"}


@dataclass(frozen=True)
class _Token:
    kind: str  # "(", ")", "AND", "OR", "NOT" or "ID"
    text: str


@dataclass(frozen=True)
class _Ident:
    name: str


@dataclass(frozen=True)
class _Not:
    operand: object


@dataclass(frozen=True)
class _And:
    left: object
    right: object


@dataclass(frozen=True)
class _Or:
    left: object
    right: object


def _tokenize(text: str) -> list[_Token]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None:
            break
        pos = match.end()
        if match.group("lparen"):
            tokens.append(_Token("(", "("))
        elif match.group("rparen"):
            tokens.append(_Token(")", ")"))
        elif match.group("word"):
            word = match.group("word")
            upper = word.upper()
            tokens.append(_Token(upper, word) if upper in _KEYWORDS else _Token("ID", word))
        else:
            raise ConfigurationError(f"Unexpected character {match.group('bad')!r} in expression {text!r}")
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._pos = 0

    def parse(self):
        if not self._tokens:
            raise ConfigurationError("Boolean expression must not be empty")
        node = self._or()
        if self._pos != len(self._tokens):
            raise ConfigurationError(
                f"Unexpected token {self._tokens[self._pos].text!r} in expression {self._text!r}"
            )
        return node

    def _peek(self) -> str | None:
        return self._tokens[self._pos].kind if self._pos < len(self._tokens) else None

    def _take(self) -> _Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _or(self):
        node = self._and()
        while self._peek() == "OR":
            self._take()
            node = _Or(node, self._and())
        return node

    def _and(self):
        node = self._not()
        while self._peek() == "AND":
            self._take()
            node = _And(node, self._not())
        return node

    def _not(self):
        if self._peek() == "NOT":
            self._take()
            return _Not(self._not())
        return self._atom()

    def _atom(self):
        kind = self._peek()
        if kind == "ID":
            return _Ident(self._take().text)
        if kind == "(":
            self._take()
            node = self._or()
            if self._peek() != ")":
                raise ConfigurationError(f"Unbalanced parentheses in expression {self._text!r}")
            self._take()
            return node
        if kind is None:
            raise ConfigurationError(f"Unexpected end of expression {self._text!r}")
        raise ConfigurationError(f"Unexpected token {self._tokens[self._pos].text!r} in expression {self._text!r}")


class BooleanExpression:
    """A parsed expression such as ``"(a AND b) OR NOT c"``.

    Parsing happens once, in the constructor, and raises ConfigurationError
    for malformed input. Evaluation never executes arbitrary code.
    """

    def __init__(self, text: str) -> None:
        if not isinstance(text, str):
            raise ConfigurationError("Boolean expression must be a string")
        self.text = text
        self._tree = _Parser(text).parse()

    @property
    def identifiers(self) -> set[str]:
        """All rule identifiers referenced by the expression."""
        found: set[str] = set()
        stack = [self._tree]
        while stack:
            node = stack.pop()
            if isinstance(node, _Ident):
                found.add(node.name)
            elif isinstance(node, _Not):
                stack.append(node.operand)
            else:
                stack.extend((node.left, node.right))
        return found

    def evaluate(self, values: Mapping[str, bool]) -> bool:
        """Evaluate against identifier outcomes. Unknown identifiers are False."""
        return _eval(self._tree, values)

    def __repr__(self) -> str:
        return f"BooleanExpression({self.text!r})"


def _eval(node, values: Mapping[str, bool]) -> bool:
    if isinstance(node, _Ident):
        return bool(values.get(node.name, False))
    if isinstance(node, _Not):
        return not _eval(node.operand, values)
    if isinstance(node, _And):
        return _eval(node.left, values) and _eval(node.right, values)
    return _eval(node.left, values) or _eval(node.right, values)
