# expression.py
# Arithmetic expression evaluator for the calculate tool.
#
# Recursive-descent parser over a tiny grammar. Nothing is ever handed to
# eval(). Parse and math errors come back as an Evaluation with error set.
#
#   expr   := term (("+" | "-") term)*
#   term   := unary (("*" | "/" | "//" | "%") unary)*
#   unary  := ("+" | "-") unary | power
#   power  := atom (("**" | "^") unary)?
#   atom   := NUMBER | "(" expr ")"

import math
import re
from typing import Union

from pydantic import BaseModel

Number = Union[int, float]

MAX_EXPONENT = 10_000
MAX_LENGTH = 500
MAX_RESULT_BITS = 100_000

_TOKEN_RE = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(\*\*|//|[-+*/%^()]))")


class ExpressionError(Exception):
    """Raised inside the parser; converted to Evaluation.error at the boundary."""


class Evaluation(BaseModel):
    expression: str
    value: Number | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def tokenize(expression: str) -> list[str]:
    tokens: list[str] = []
    pos = 0
    text = expression.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise ExpressionError(f"Unexpected character {text[pos:].lstrip()[:1]!r} at position {pos}")
        tokens.append(match.group(1) or match.group(2))
        pos = match.end()
    if not tokens:
        raise ExpressionError("Empty expression")
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, tokens: list[str]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> str:
        token = self.peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self.pos += 1
        return token

    def parse(self) -> Number:
        value = self.expr()
        if self.peek() is not None:
            raise ExpressionError(f"Unexpected token {self.peek()!r}")
        return value

    def expr(self) -> Number:
        value = self.term()
        while self.peek() in ("+", "-"):
            op = self.take()
            rhs = self.term()
            value = value + rhs if op == "+" else value - rhs
        return value

    def term(self) -> Number:
        value = self.unary()
        while self.peek() in ("*", "/", "//", "%"):
            op = self.take()
            rhs = self.unary()
            if op == "*":
                value = value * rhs
            elif rhs == 0:
                raise ExpressionError("Division by zero")
            elif op == "/":
                value = value / rhs
            elif op == "//":
                value = value // rhs
            else:
                value = value % rhs
        return value

    def unary(self) -> Number:
        if self.peek() == "-":
            self.take()
            return -self.unary()
        if self.peek() == "+":
            self.take()
            return self.unary()
        return self.power()

    def power(self) -> Number:
        base = self.atom()
        if self.peek() in ("**", "^"):
            self.take()
            exponent = self.unary()
            if abs(exponent) > MAX_EXPONENT:
                raise ExpressionError(f"Exponent {exponent} is too large")
            if base == 0 and exponent < 0:
                raise ExpressionError("Division by zero")
            if abs(base) > 1 and exponent > 0 and exponent * math.log2(abs(base)) > MAX_RESULT_BITS:
                raise ExpressionError("Result is too large")
            return base**exponent
        return base

    def atom(self) -> Number:
        token = self.take()
        if token == "(":
            value = self.expr()
            if self.peek() != ")":
                raise ExpressionError("Missing closing parenthesis")
            self.take()
            return value
        if token[0].isdigit() or token[0] == ".":
            return float(token) if "." in token else int(token)
        raise ExpressionError(f"Unexpected token {token!r}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def evaluate(expression: str) -> Evaluation:
    """Evaluate an arithmetic expression. Never raises for bad input."""
    if len(expression) > MAX_LENGTH:
        return Evaluation(expression=expression, error=f"Expression longer than {MAX_LENGTH} characters")
    try:
        value = _Parser(tokenize(expression)).parse()
    except ExpressionError as exc:
        return Evaluation(expression=expression, error=str(exc))
    except OverflowError:
        return Evaluation(expression=expression, error="Result is too large")

    if isinstance(value, complex) or (isinstance(value, float) and not math.isfinite(value)):
        return Evaluation(expression=expression, error="Result is not a finite real number")
    return Evaluation(expression=expression, value=value)
