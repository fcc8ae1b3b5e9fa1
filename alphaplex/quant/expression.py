"""Reference expressions over reporter aliases.

A reference expression defines the baseline intensity of a quant block, e.g. ``ref``, ``(R1 + R2) / 2``,
``mean(R1, R2, R3)`` or ``1``. Expressions are parsed with :mod:`ast` and converted into a small typed tree,
allowing only numbers, aliases, unary minus, the four arithmetic operators and calls of :data:`FUNCTIONS`.
The referenced aliases are therefore known before any evaluation. Aliases that are not plain names, e.g.
``126C``, are accepted as is or quoted in backticks.
"""

import ast
import keyword
import re
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from alphaplex.exceptions import SchemaError

FUNCTIONS = {
    "mean": np.mean,
    "sum": np.sum,
    "median": np.median,
}

_OPERATORS = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
}

_TOKEN_PATTERN = re.compile(
    r"`(?P<quoted>[^`]+)`|(?P<number>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?(?![\w.]))|[\w.]+"
)


class Expression:
    def aliases(self) -> set[str]:
        """Reporter aliases referenced by the expression."""
        raise NotImplementedError("Subclasses must implement this method")

    def evaluate(self, values: Mapping[str, np.ndarray], n: int) -> np.ndarray:
        """Evaluate the expression row-wise.

        Parameters
        ----------
        values : Mapping[str, np.ndarray]
            Intensity array of length `n` per alias.

        n : int
            Number of rows.
        """
        raise NotImplementedError("Subclasses must implement this method")


@dataclass(frozen=True)
class Constant(Expression):
    value: float

    def aliases(self) -> set[str]:
        return set()

    def evaluate(self, values, n):
        return np.full(n, self.value, dtype=np.float64)


@dataclass(frozen=True)
class AliasRef(Expression):
    alias: str

    def aliases(self) -> set[str]:
        return {self.alias}

    def evaluate(self, values, n):
        return np.asarray(values[self.alias], dtype=np.float64)


@dataclass(frozen=True)
class Negate(Expression):
    operand: Expression

    def aliases(self) -> set[str]:
        return self.operand.aliases()

    def evaluate(self, values, n):
        return -self.operand.evaluate(values, n)


@dataclass(frozen=True)
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression

    def aliases(self) -> set[str]:
        return self.left.aliases() | self.right.aliases()

    def evaluate(self, values, n):
        left = self.left.evaluate(values, n)
        right = self.right.evaluate(values, n)
        with np.errstate(divide="ignore", invalid="ignore"):
            if self.op == "+":
                return left + right
            if self.op == "-":
                return left - right
            if self.op == "*":
                return left * right
            return left / right


@dataclass(frozen=True)
class Function(Expression):
    name: str
    args: tuple[Expression, ...]

    def aliases(self) -> set[str]:
        return set().union(*(arg.aliases() for arg in self.args))

    def evaluate(self, values, n):
        stacked = np.vstack([arg.evaluate(values, n) for arg in self.args])
        return FUNCTIONS[self.name](stacked, axis=0)


def _replace_aliases(text: str) -> tuple[str, dict[str, str]]:
    """Replace quoted aliases and aliases that are no valid identifiers by placeholder names."""
    placeholders = {}

    def replace(match: re.Match) -> str:
        token = match.group(0)
        if match.group("number") is not None or (
            match.group("quoted") is None
            and token.isidentifier()
            and not keyword.iskeyword(token)
        ):
            return token
        name = f"__alias{len(placeholders)}__"
        placeholders[name] = match.group("quoted") or token
        return name

    return _TOKEN_PATTERN.sub(replace, text), placeholders


def _to_expression(node: ast.AST, text: str, placeholders: dict[str, str]) -> Expression:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, int | float) and not isinstance(node.value, bool):
            return Constant(float(node.value))
        raise SchemaError(
            f"Unsupported constant {node.value!r} in reference expression '{text}'"
        )
    if isinstance(node, ast.Name):
        return AliasRef(placeholders.get(node.id, node.id))
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        return Negate(_to_expression(node.operand, text, placeholders))
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        return BinaryOp(
            _OPERATORS[type(node.op)],
            _to_expression(node.left, text, placeholders),
            _to_expression(node.right, text, placeholders),
        )
    if isinstance(node, ast.Call):
        name = node.func.id if isinstance(node.func, ast.Name) else None
        if name not in FUNCTIONS:
            raise SchemaError(
                f"Unknown function in reference expression '{text}', expected one of {sorted(FUNCTIONS)}"
            )
        if node.keywords or not node.args:
            raise SchemaError(
                f"Function '{name}' in reference expression '{text}' takes one or more positional arguments"
            )
        return Function(
            name, tuple(_to_expression(arg, text, placeholders) for arg in node.args)
        )

    # attributes, subscripts, comparisons and any other syntax
    raise SchemaError(
        f"Unsupported syntax '{ast.unparse(node)}' in reference expression '{text}'"
    )


def parse_reference(text: str) -> Expression:
    """Parse a reference expression into an expression tree.

    Raises
    ------
    SchemaError
        If the expression is empty, malformed or uses syntax other than arithmetic and known functions.
    """
    if not isinstance(text, str) or not text.strip():
        raise SchemaError(f"Empty reference expression: {text!r}")

    source, placeholders = _replace_aliases(text.strip())
    try:
        tree = ast.parse(source, mode="eval")
    except (SyntaxError, ValueError) as e:
        raise SchemaError(
            f"Invalid reference expression '{text}'", detail_msg=str(e)
        ) from e
    return _to_expression(tree.body, text, placeholders)
