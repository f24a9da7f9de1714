"""Tokenizer and recursive-descent parser for derived node expressions.

Grammar::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/" | "%") unary)*
    unary   := "-" unary | primary
    primary := NUMBER | DURATION | STRING | NAME | NAME "(" args ")" | "(" expr ")"
    args    := expr ("," expr)*

A NAME that is a single uppercase letter is a refId reference (``$A`` is
accepted for the same thing). Other names are functions, aggregations or
column names depending on where they appear.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from graphpipe.errors import InvalidExpressionError

DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


# ─────────────────────────────────────────────────
# AST
# ─────────────────────────────────────────────────


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Duration:
    seconds: int
    text: str


@dataclass(frozen=True)
class Str:
    value: str


@dataclass(frozen=True)
class Name:
    name: str

    @property
    def is_ref(self) -> bool:
        return len(self.name) == 1 and "A" <= self.name <= "Z"


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Call:
    func: str
    args: Tuple[Node, ...]


Node = Union[Number, Duration, Str, Name, UnaryOp, BinaryOp, Call]


# ─────────────────────────────────────────────────
# Tokenizer
# ─────────────────────────────────────────────────

_TOKEN_SPEC = [
    ("DURATION", r"\d+[smhdw](?![A-Za-z0-9_])"),
    ("NUMBER", r"\d+(?:\.\d*)?(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?"),
    ("NAME", r"\$?[A-Za-z_][A-Za-z0-9_]*"),
    ("STRING", r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\""),
    ("OP", r"[+\-*/%(),]"),
    ("WS", r"\s+"),
    ("MISMATCH", r"."),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC))


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    for match in _TOKEN_RE.finditer(expression):
        kind = match.lastgroup
        text = match.group()
        if kind == "WS":
            continue
        if kind == "MISMATCH":
            raise InvalidExpressionError(expression, f"Unexpected character {text!r} at position {match.start()}")
        tokens.append(Token(kind, text, match.start()))
    return tokens


# ─────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────


class _Parser:
    def __init__(self, expression: str, ref_id: Optional[str]) -> None:
        self.expression = expression
        self.ref_id = ref_id
        self.tokens = tokenize(expression)
        self.pos = 0

    def error(self, message: str) -> InvalidExpressionError:
        return InvalidExpressionError(self.expression, message, ref_id=self.ref_id)

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise self.error("Unexpected end of expression")
        self.pos += 1
        return token

    def accept(self, text: str) -> bool:
        token = self.peek()
        if token is not None and token.kind == "OP" and token.text == text:
            self.pos += 1
            return True
        return False

    def expect(self, text: str) -> None:
        if not self.accept(text):
            token = self.peek()
            found = repr(token.text) if token else "end of expression"
            raise self.error(f"Expected {text!r}, found {found}")

    def parse(self) -> Node:
        if not self.tokens:
            raise self.error("Expression is empty")
        node = self.expr()
        if self.peek() is not None:
            token = self.peek()
            raise self.error(f"Unexpected {token.text!r} at position {token.pos}")
        return node

    def expr(self) -> Node:
        node = self.term()
        while True:
            if self.accept("+"):
                node = BinaryOp("+", node, self.term())
            elif self.accept("-"):
                node = BinaryOp("-", node, self.term())
            else:
                return node

    def term(self) -> Node:
        node = self.unary()
        while True:
            token = self.peek()
            if token is not None and token.kind == "OP" and token.text in ("*", "/", "%"):
                self.pos += 1
                node = BinaryOp(token.text, node, self.unary())
            else:
                return node

    def unary(self) -> Node:
        if self.accept("-"):
            return UnaryOp("-", self.unary())
        if self.accept("+"):
            return self.unary()
        return self.primary()

    def primary(self) -> Node:
        token = self.advance()

        if token.kind == "NUMBER":
            return Number(float(token.text))

        if token.kind == "DURATION":
            amount, unit = int(token.text[:-1]), token.text[-1]
            if amount <= 0:
                raise self.error(f"Duration must be positive: {token.text}")
            return Duration(amount * DURATION_UNITS[unit], token.text)

        if token.kind == "STRING":
            return Str(token.text[1:-1])

        if token.kind == "NAME":
            name = token.text
            if name.startswith("$"):
                name = name[1:]
                if not Name(name).is_ref:
                    raise self.error(f"'${name}' is not a valid refId")
            if self.accept("("):
                args: List[Node] = []
                if not self.accept(")"):
                    args.append(self.expr())
                    while self.accept(","):
                        args.append(self.expr())
                    self.expect(")")
                return Call(name.lower(), tuple(args))
            return Name(name)

        if token.kind == "OP" and token.text == "(":
            node = self.expr()
            self.expect(")")
            return node

        raise self.error(f"Unexpected {token.text!r} at position {token.pos}")


def parse_expression(expression: str, ref_id: Optional[str] = None) -> Node:
    """
    Parse an expression string into an AST.

    Raises:
        InvalidExpressionError: If the expression is empty or malformed
    """
    if not isinstance(expression, str):
        raise InvalidExpressionError(str(expression), "Expression must be a string", ref_id=ref_id)
    return _Parser(expression, ref_id).parse()


def references(node: Node) -> List[str]:
    """refIds used by an expression, in first-appearance order."""
    found: List[str] = []

    def walk(n: Node) -> None:
        if isinstance(n, Name):
            if n.is_ref and n.name not in found:
                found.append(n.name)
        elif isinstance(n, UnaryOp):
            walk(n.operand)
        elif isinstance(n, BinaryOp):
            walk(n.left)
            walk(n.right)
        elif isinstance(n, Call):
            for arg in n.args:
                walk(arg)

    walk(node)
    return found
