"""Hybrid value model — concrete values shadowed by symbolic expressions.

A hybrid value is either a plain concrete Python value or a :class:`Symbolic`
carrying the concrete result together with an expression describing how it
was derived. The symbolic side never changes what the program observes: the
``value`` of a ``Symbolic`` is always what concrete evaluation would produce.

Expressions are immutable and freely shared between values. They are used
for display and for structural comparison across loop iterations, never
evaluated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..vm import Operators, _brief, _is_scalar
from ..vm_types import BuiltinFunction, FunctionValue, HostObject, VMRuntimeError
from .. import constants


# ── Expressions ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Literal:
    value: Any
    depth: int = field(default=1, init=False)

    def shape(self) -> tuple:
        return ("lit",)

    def identifiers(self) -> frozenset[str]:
        return frozenset()

    def has_opaque(self) -> bool:
        return False

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class Identifier:
    """A variable reference; ``key`` is the scope-qualified variable key."""

    key: str
    depth: int = field(default=1, init=False)

    @property
    def name(self) -> str:
        return self.key.rsplit(":", 1)[-1]

    def shape(self) -> tuple:
        return ("id", self.key)

    def identifiers(self) -> frozenset[str]:
        return frozenset({self.key})

    def has_opaque(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class UnaryExpr:
    op: str
    operand: Any
    depth: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "depth", self.operand.depth + 1)

    def shape(self) -> tuple:
        return ("un", self.op, self.operand.shape())

    def identifiers(self) -> frozenset[str]:
        return self.operand.identifiers()

    def has_opaque(self) -> bool:
        return self.operand.has_opaque()

    def __str__(self) -> str:
        return f"{self.op}{self.operand}"


@dataclass(frozen=True)
class BinaryExpr:
    op: str
    left: Any
    right: Any
    depth: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "depth", max(self.left.depth, self.right.depth) + 1)

    def shape(self) -> tuple:
        return ("bin", self.op, self.left.shape(), self.right.shape())

    def identifiers(self) -> frozenset[str]:
        return self.left.identifiers() | self.right.identifiers()

    def has_opaque(self) -> bool:
        return self.left.has_opaque() or self.right.has_opaque()

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"


@dataclass(frozen=True)
class Opaque:
    """An expression whose derivation is unknown (builtin results, untracked writes)."""

    reason: str = "unknown"
    depth: int = field(default=1, init=False)

    def shape(self) -> tuple:
        return ("opaque",)

    def identifiers(self) -> frozenset[str]:
        return frozenset()

    def has_opaque(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"<{self.reason}>"


Expression = Literal | Identifier | UnaryExpr | BinaryExpr | Opaque


# ── Values ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Symbolic:
    """A concrete value paired with the expression that produced it.

    ``operands`` keeps the hybrid operands of the operation that produced
    this value so guard analysis can read both concrete sides of a
    comparison; it takes no part in equality.
    """

    value: Any
    expr: Any
    valid_path: bool = True
    negation: Any = None
    operands: tuple = field(default=(), compare=False, repr=False)

    def __repr__(self) -> str:
        return f"Symbolic({_brief(self.value)}, {self.expr})"


# Binary operators for which an expression is built; others invalidate the path
SYMBOLIC_BINARY_OPS: frozenset[str] = frozenset(
    {"+", "-", "*", "/", "//", "%", "**", "and", "or"} | Operators.COMPARISONS
)
SYMBOLIC_UNARY_OPS: frozenset[str] = frozenset({"-", "+", "not"})


def is_function(value: Any) -> bool:
    return isinstance(value, (FunctionValue, BuiltinFunction, HostObject))


def concretize(value: Any) -> Any:
    """Strip the symbolic wrapper, if any."""
    if isinstance(value, Symbolic):
        return value.value
    return value


def deep_concretize(value: Any) -> Any:
    """Strip symbolic wrappers from *value* and, in place, from list cells it reaches."""
    value = concretize(value)
    if not isinstance(value, list):
        return value
    seen: set[int] = set()
    pending = [value]
    while pending:
        cells = pending.pop()
        if id(cells) in seen:
            continue
        seen.add(id(cells))
        for i, cell in enumerate(cells):
            if isinstance(cell, Symbolic):
                cell = cell.value
                cells[i] = cell
            if isinstance(cell, list):
                pending.append(cell)
    return value


def hybridize(key: str, value: Any) -> Any:
    """Wrap the concrete value read from variable *key* as an identifier.

    Function values and non-scalar values are returned unchanged.
    """
    if is_function(value) or not _is_scalar(value):
        return value
    return Symbolic(value=value, expr=Identifier(key))


def make_dummy(value: Any) -> Any:
    """A placeholder whose provenance is unknown; non-scalar values pass through."""
    if not _is_scalar(value):
        return value
    return Symbolic(value=value, expr=Opaque("builtin"))


def make_untracked(value: Any) -> Symbolic:
    """A value written from a source the analysis cannot follow."""
    return Symbolic(value=value, expr=Opaque("untracked"), valid_path=False)


def as_expression(value: Any) -> Any:
    if isinstance(value, Symbolic):
        return value.expr
    return Literal(value)


def _checked(result: Any, op: str, lhs: Any, rhs: Any = None, unary: bool = False) -> Any:
    if result is Operators.UNCOMPUTABLE:
        if unary:
            raise VMRuntimeError(f"cannot evaluate {op}{_brief(lhs)}")
        raise VMRuntimeError(f"cannot evaluate {_brief(lhs)} {op} {_brief(rhs)}")
    return result


def evaluate_binary(
    op: str,
    left: Any,
    right: Any,
    max_depth: int = constants.DEFAULT_MAX_EXPR_DEPTH,
) -> Any:
    """Apply *op* with concrete semantics, building an expression if either side is symbolic.

    Raises:
        VMRuntimeError: if the concrete operation itself fails.
    """
    lhs, rhs = concretize(left), concretize(right)
    result = _checked(Operators.eval_binop(op, lhs, rhs), op, lhs, rhs)
    if not isinstance(left, Symbolic) and not isinstance(right, Symbolic):
        return result

    canonical = Operators.canonical(op)
    valid = (
        getattr(left, "valid_path", True)
        and getattr(right, "valid_path", True)
        and canonical in SYMBOLIC_BINARY_OPS
        and _is_scalar(lhs)
        and _is_scalar(rhs)
    )
    if not valid:
        return Symbolic(value=result, expr=Opaque("unsupported"), valid_path=False)

    expr = BinaryExpr(canonical, as_expression(left), as_expression(right))
    if expr.depth > max_depth:
        return Symbolic(value=result, expr=Opaque("depth"), valid_path=False)
    negation = None
    if canonical in Operators.NEGATIONS:
        negation = BinaryExpr(Operators.NEGATIONS[canonical], expr.left, expr.right)
    return Symbolic(
        value=result,
        expr=expr,
        negation=negation,
        operands=(left, right),
    )


def evaluate_unary(
    op: str,
    operand: Any,
    max_depth: int = constants.DEFAULT_MAX_EXPR_DEPTH,
) -> Any:
    """Unary counterpart of :func:`evaluate_binary`."""
    val = concretize(operand)
    result = _checked(Operators.eval_unop(op, val), op, val, unary=True)
    if not isinstance(operand, Symbolic):
        return result

    canonical = Operators.canonical(op)
    if not operand.valid_path or canonical not in SYMBOLIC_UNARY_OPS or not _is_scalar(val):
        return Symbolic(value=result, expr=Opaque("unsupported"), valid_path=False)

    expr = UnaryExpr(canonical, operand.expr)
    if expr.depth > max_depth:
        return Symbolic(value=result, expr=Opaque("depth"), valid_path=False)
    negation = operand.expr if canonical == "not" else None
    return Symbolic(value=result, expr=expr, negation=negation, operands=(operand,))
