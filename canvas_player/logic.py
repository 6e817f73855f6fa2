"""Directive parsing and boolean evaluation for edge labels.

Edge labels may embed two kinds of directive tags:

- ``{set:name=true}`` / ``{set:name=false}`` assign a variable when the edge is taken.
- ``{if:expr}`` gates the edge on a boolean expression. Several ``{if:...}`` tags
  on one label are ANDed together.

Expressions use ``|`` (or), ``&`` (and), ``!`` (not), parentheses and
``name`` / ``name=true`` / ``name=false`` atoms. Unknown variables read as false.
Parsing never raises: anything that does not parse is left as plain text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union

VariableState = Dict[str, bool]

TAG_PATTERN = re.compile(r"\{(set|if):([^{}]*)\}")
SET_BODY_PATTERN = re.compile(r"^\s*([A-Za-z0-9_]+)\s*=\s*(true|false)\s*$")
IDENT_PATTERN = re.compile(r"[A-Za-z0-9_]+")


# ---------- Directive variants ----------
@dataclass(frozen=True)
class SetOp:
    variable: str
    value: bool


@dataclass(frozen=True)
class Var:
    name: str
    expected: bool = True


@dataclass(frozen=True)
class Not:
    operand: "Expr"


@dataclass(frozen=True)
class And:
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Or:
    left: "Expr"
    right: "Expr"


Expr = Union[Var, Not, And, Or]


@dataclass(frozen=True)
class ParsedLabel:
    display_text: str
    set_ops: Tuple[SetOp, ...] = ()
    expression: Optional[Expr] = None
    dependencies: Tuple[str, ...] = ()


class ExpressionSyntaxError(ValueError):
    """Raised by :func:`parse_expression` for malformed expression text."""


# ---------- Tokenizer / parser ----------
def _tokenize(source: str) -> List[str]:
    tokens: List[str] = []
    index = 0
    length = len(source)
    while index < length:
        char = source[index]
        if char.isspace():
            index += 1
            continue
        if char in "&|":
            # `&&` and `||` are accepted as aliases.
            if index + 1 < length and source[index + 1] == char:
                index += 1
            tokens.append(char)
            index += 1
            continue
        if char in "!()=":
            tokens.append(char)
            index += 1
            continue
        match = IDENT_PATTERN.match(source, index)
        if not match:
            raise ExpressionSyntaxError(f"unexpected character {char!r} at {index}")
        tokens.append(match.group(0))
        index = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[str]) -> None:
        self.tokens = tokens
        self.position = 0

    def peek(self) -> Optional[str]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def take(self) -> str:
        token = self.peek()
        if token is None:
            raise ExpressionSyntaxError("unexpected end of expression")
        self.position += 1
        return token

    def parse(self) -> Expr:
        expr = self.expr()
        if self.peek() is not None:
            raise ExpressionSyntaxError(f"unexpected token {self.peek()!r}")
        return expr

    def expr(self) -> Expr:
        node = self.term()
        while self.peek() == "|":
            self.take()
            node = Or(node, self.term())
        return node

    def term(self) -> Expr:
        node = self.factor()
        while self.peek() == "&":
            self.take()
            node = And(node, self.factor())
        return node

    def factor(self) -> Expr:
        token = self.take()
        if token == "!":
            return Not(self.factor())
        if token == "(":
            node = self.expr()
            if self.take() != ")":
                raise ExpressionSyntaxError("missing closing parenthesis")
            return node
        if not IDENT_PATTERN.fullmatch(token):
            raise ExpressionSyntaxError(f"expected a variable name, got {token!r}")
        if self.peek() == "=":
            self.take()
            literal = self.take()
            if literal not in ("true", "false"):
                raise ExpressionSyntaxError(f"expected true or false, got {literal!r}")
            return Var(token, literal == "true")
        return Var(token)


def parse_expression(source: str) -> Expr:
    tokens = _tokenize(source)
    if not tokens:
        raise ExpressionSyntaxError("empty expression")
    return _Parser(tokens).parse()


def iter_variables(expression: Optional[Expr]) -> Iterator[str]:
    """Yield variable names in the order they appear (duplicates included)."""
    if expression is None:
        return
    if isinstance(expression, Var):
        yield expression.name
    elif isinstance(expression, Not):
        yield from iter_variables(expression.operand)
    else:
        yield from iter_variables(expression.left)
        yield from iter_variables(expression.right)


def format_expression(expression: Expr) -> str:
    if isinstance(expression, Var):
        return expression.name if expression.expected else f"{expression.name}=false"
    if isinstance(expression, Not):
        inner = format_expression(expression.operand)
        if isinstance(expression.operand, (And, Or)):
            inner = f"({inner})"
        return f"!{inner}"
    if isinstance(expression, And):
        parts = []
        for side in (expression.left, expression.right):
            text = format_expression(side)
            parts.append(f"({text})" if isinstance(side, Or) else text)
        return " & ".join(parts)
    return f"{format_expression(expression.left)} | {format_expression(expression.right)}"


# ---------- Public API ----------
def parse_label(raw: Optional[str]) -> ParsedLabel:
    if not raw:
        return ParsedLabel(display_text="")

    set_ops: List[SetOp] = []
    expression: Optional[Expr] = None

    def replace(match: re.Match[str]) -> str:
        nonlocal expression
        kind, body = match.group(1), match.group(2)
        if kind == "set":
            set_match = SET_BODY_PATTERN.match(body)
            if not set_match:
                return match.group(0)
            set_ops.append(SetOp(set_match.group(1), set_match.group(2) == "true"))
            return ""
        try:
            condition = parse_expression(body)
        except ExpressionSyntaxError:
            return match.group(0)
        expression = condition if expression is None else And(expression, condition)
        return ""

    # Removing a tag can splice a new one together; run until nothing changes.
    text = raw
    while True:
        stripped = TAG_PATTERN.sub(replace, text)
        if stripped == text:
            break
        text = stripped
    text = text.strip()
    dependencies = tuple(dict.fromkeys(iter_variables(expression)))
    return ParsedLabel(
        display_text=text,
        set_ops=tuple(set_ops),
        expression=expression,
        dependencies=dependencies,
    )


def evaluate(expression: Union[Expr, str, None], state: Mapping[str, bool]) -> bool:
    if expression is None:
        return True
    if isinstance(expression, str):
        try:
            expression = parse_expression(expression)
        except ExpressionSyntaxError:
            return False
    if isinstance(expression, Var):
        return bool(state.get(expression.name, False)) == expression.expected
    if isinstance(expression, Not):
        return not evaluate(expression.operand, state)
    if isinstance(expression, And):
        return evaluate(expression.left, state) and evaluate(expression.right, state)
    if isinstance(expression, Or):
        return evaluate(expression.left, state) or evaluate(expression.right, state)
    return False


def check_conditions(parsed: ParsedLabel, state: Mapping[str, bool]) -> bool:
    return parsed.expression is None or evaluate(parsed.expression, state)


def update_state(parsed: ParsedLabel, state: MutableMapping[str, bool]) -> None:
    for op in parsed.set_ops:
        state[op.variable] = op.value


def get_missing_variables(parsed: ParsedLabel, state: Mapping[str, bool]) -> List[str]:
    return [name for name in parsed.dependencies if name not in state]


def label_variables(parsed: ParsedLabel) -> List[str]:
    """Every variable a label touches, set or read."""
    names = [op.variable for op in parsed.set_ops]
    names.extend(parsed.dependencies)
    return list(dict.fromkeys(names))


def has_directives(raw: Optional[str]) -> bool:
    return bool(raw) and ("{if:" in raw or "{set:" in raw)


def upgrade_label(raw: Optional[str]) -> str:
    """Rewrite a label into the canonical single-condition form.

    Flat legacy labels such as ``{if:a=true}{if:!b} Go`` become
    ``{if:a & !b} Go``. Set directives are kept in their original order and
    unparseable tags stay in the text untouched.
    """
    parsed = parse_label(raw)
    parts: List[str] = [f"{{set:{op.variable}={str(op.value).lower()}}}" for op in parsed.set_ops]
    if parsed.expression is not None:
        parts.append(f"{{if:{format_expression(parsed.expression)}}}")
    if parsed.display_text:
        parts.append(parsed.display_text)
    return " ".join(parts)
