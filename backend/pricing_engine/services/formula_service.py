"""Sandboxed arithmetic formulas for formula-type pricing conditions.

Formulas are parsed by a small recursive-descent parser into a closed AST and
evaluated with :mod:`decimal` arithmetic. The grammar only knows numbers, the
variables ``price``, ``qty`` and ``value``, the operators ``+ - * /``,
parentheses and the ``min``/``max`` functions::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | NAME | FUNC "(" expr ("," expr)+ ")" | "(" expr ")"
"""

from __future__ import annotations

import decimal
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Union

from pricing_engine.core.config import get_settings
from pricing_engine.services.errors import FormulaError

VARIABLES = frozenset({"price", "qty", "value"})
FUNCTIONS = frozenset({"min", "max"})

_TOKEN_PATTERN = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/(),]))"
)
_SPACE_PATTERN = re.compile(r"\s*")


@dataclass(frozen=True, slots=True)
class Number:
    value: Decimal


@dataclass(frozen=True, slots=True)
class Variable:
    name: str


@dataclass(frozen=True, slots=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True, slots=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True, slots=True)
class Call:
    func: str
    args: tuple["Node", ...]


Node = Union[Number, Variable, UnaryOp, BinaryOp, Call]


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str
    text: str
    pos: int


def _tokenize(formula: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(formula)
    # Trailing whitespace is not a token.
    stop = len(formula.rstrip())
    while pos < stop:
        match = _TOKEN_PATTERN.match(formula, pos)
        if match is None:
            offset = _SPACE_PATTERN.match(formula, pos).end()
            raise FormulaError(
                f"Unexpected character {formula[offset]!r} at position {offset}"
            )
        kind = match.lastgroup or ""
        tokens.append(_Token(kind, match.group(kind), match.start(kind)))
        pos = match.end()
    tokens.append(_Token("end", "", length))
    return tokens


class _Parser:
    def __init__(self, formula: str, max_depth: int) -> None:
        self._tokens = _tokenize(formula)
        self._index = 0
        self._depth = 0
        self._max_depth = max_depth

    def parse(self) -> Node:
        node = self._expr()
        token = self._peek()
        if token.kind != "end":
            raise FormulaError(f"Unexpected {token.text!r} at position {token.pos}")
        return node

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, text: str) -> bool:
        token = self._peek()
        if token.kind == "op" and token.text == text:
            self._index += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        if not self._accept(text):
            token = self._peek()
            found = token.text or "end of formula"
            raise FormulaError(f"Expected {text!r} at position {token.pos}, found {found!r}")

    def _enter(self) -> None:
        self._depth += 1
        if self._depth > self._max_depth:
            raise FormulaError(f"Formula nesting exceeds {self._max_depth} levels")

    def _expr(self) -> Node:
        node = self._term()
        while True:
            token = self._peek()
            if token.kind == "op" and token.text in "+-":
                self._advance()
                node = BinaryOp(token.text, node, self._term())
            else:
                return node

    def _term(self) -> Node:
        node = self._unary()
        while True:
            token = self._peek()
            if token.kind == "op" and token.text in "*/":
                self._advance()
                node = BinaryOp(token.text, node, self._unary())
            else:
                return node

    def _unary(self) -> Node:
        token = self._peek()
        if token.kind == "op" and token.text in "+-":
            self._advance()
            self._enter()
            operand = self._unary()
            self._depth -= 1
            return UnaryOp(token.text, operand)
        return self._primary()

    def _primary(self) -> Node:
        token = self._advance()
        if token.kind == "number":
            return Number(Decimal(token.text))
        if token.kind == "name":
            if token.text in FUNCTIONS:
                return self._call(token)
            if token.text in VARIABLES:
                return Variable(token.text)
            raise FormulaError(f"Unknown identifier {token.text!r}")
        if token.kind == "op" and token.text == "(":
            self._enter()
            node = self._expr()
            self._expect(")")
            self._depth -= 1
            return node
        found = token.text or "end of formula"
        raise FormulaError(f"Unexpected {found!r} at position {token.pos}")

    def _call(self, name: _Token) -> Node:
        self._expect("(")
        self._enter()
        args = [self._expr()]
        while self._accept(","):
            args.append(self._expr())
        self._expect(")")
        self._depth -= 1
        if len(args) < 2:
            raise FormulaError(f"{name.text}() takes at least two arguments")
        return Call(name.text, tuple(args))


@lru_cache(maxsize=512)
def _parse_cached(formula: str, max_length: int, max_depth: int) -> Node:
    if len(formula) > max_length:
        raise FormulaError(f"Formula longer than {max_length} characters")
    if not formula.strip():
        raise FormulaError("Formula is empty")
    return _Parser(formula, max_depth).parse()


def parse_formula(formula: str) -> Node:
    """Parse ``formula`` into an AST, raising :class:`FormulaError` when invalid."""
    settings = get_settings()
    return _parse_cached(
        formula, settings.formula_max_length, settings.formula_max_depth
    )


def _eval(node: Node, variables: Mapping[str, Decimal]) -> Decimal:
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Variable):
        return variables[node.name]
    if isinstance(node, UnaryOp):
        operand = _eval(node.operand, variables)
        return -operand if node.op == "-" else +operand
    if isinstance(node, BinaryOp):
        left = _eval(node.left, variables)
        right = _eval(node.right, variables)
        if node.op == "+":
            return left + right
        if node.op == "-":
            return left - right
        if node.op == "*":
            return left * right
        if right == 0:
            raise FormulaError("Division by zero")
        return left / right
    values = [_eval(arg, variables) for arg in node.args]
    return min(values) if node.func == "min" else max(values)


def evaluate(
    formula: str, variables: Mapping[str, Decimal | int | str]
) -> Decimal:
    """Evaluate ``formula`` against ``price``, ``qty`` and ``value``."""
    tree = parse_formula(formula)
    try:
        bound = {name: Decimal(str(variables[name])) for name in VARIABLES}
    except KeyError as exc:
        raise FormulaError(f"Missing variable {exc.args[0]!r}") from exc
    except decimal.InvalidOperation as exc:
        raise FormulaError("Formula variables must be numeric") from exc

    with decimal.localcontext() as ctx:
        ctx.traps[decimal.InvalidOperation] = True
        ctx.traps[decimal.DivisionByZero] = True
        ctx.traps[decimal.Overflow] = True
        try:
            result = _eval(tree, bound)
        except decimal.DivisionByZero as exc:
            raise FormulaError("Division by zero") from exc
        except (decimal.InvalidOperation, decimal.Overflow) as exc:
            raise FormulaError("Formula result is not a finite number") from exc

    if not result.is_finite():
        raise FormulaError("Formula result is not a finite number")
    return result
