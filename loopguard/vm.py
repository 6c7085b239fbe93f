"""VM — state update application, operators and helpers."""

from __future__ import annotations

import ast
from typing import Any

from .vm_types import Environment, StackFrame, StateUpdate, VMState
from . import constants


def apply_update(vm: VMState, update: StateUpdate):
    """Mechanically apply a StateUpdate to the VM."""
    frame = vm.current_frame

    # Register writes: always to the CURRENT (caller's) frame
    for reg, val in update.register_writes.items():
        frame.registers[reg] = val

    # Index writes mutate the target sequence in place
    for iw in update.index_writes:
        _store_index(iw.target, iw.index, iw.value)

    # Call push: push BEFORE var_writes so parameter bindings go to the
    # new frame when dispatching a function call
    if update.call_push:
        push = update.call_push
        vm.call_stack.append(
            StackFrame(
                function_name=push.function_name,
                env=Environment(parent=push.closure),
                registers={constants.CALLEE_REG: push.callee},
            )
        )

    target_env = vm.current_frame.env
    for var, val in update.var_writes.items():
        target_env.define(var, val)
    for var, val in update.var_assigns.items():
        target_env.assign(var, val)

    if update.call_pop:
        vm.call_stack.pop()


def _store_index(target: list, index: int, value: Any):
    if index == len(target):
        target.append(value)
    elif index > len(target):
        target.extend([None] * (index - len(target)))
        target.append(value)
    else:
        target[index] = value


# ── Helpers ──────────────────────────────────────────────────────


def _resolve_reg(vm: VMState, operand: Any) -> Any:
    """Resolve a register name to its value, or return the operand as-is."""
    if isinstance(operand, str) and operand.startswith("%"):
        return vm.current_frame.registers[operand]
    return operand


def _parse_const(raw: str) -> Any:
    """Parse a constant literal string into a Python value."""
    if raw == "None":
        return None
    if raw == "True":
        return True
    if raw == "False":
        return False
    try:
        return int(raw)
    except (ValueError, TypeError):
        pass
    try:
        return float(raw)
    except (ValueError, TypeError):
        pass
    # String literal: unescape if it parses as one, else strip quotes
    if len(raw) >= 2 and raw[0] in ('"', "'") and raw[-1] == raw[0]:
        try:
            return ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            return raw[1:-1]
    return raw


def _is_scalar(val: Any) -> bool:
    return val is None or isinstance(val, (bool, int, float, str))


class Operators:
    """Binary and unary operator evaluation with an explicit UNCOMPUTABLE sentinel."""

    class _Uncomputable:
        """Sentinel value indicating an operation could not be computed."""

        def __repr__(self) -> str:
            return "UNCOMPUTABLE"

    UNCOMPUTABLE = _Uncomputable()

    BINOP_TABLE: dict[str, Any] = {
        "+": lambda a, b: a + b,
        "-": lambda a, b: a - b,
        "*": lambda a, b: a * b,
        "/": lambda a, b: a / b if b != 0 else Operators.UNCOMPUTABLE,
        "//": lambda a, b: a // b if b != 0 else Operators.UNCOMPUTABLE,
        "%": lambda a, b: a % b if b != 0 else Operators.UNCOMPUTABLE,
        "**": lambda a, b: a**b,
        "==": lambda a, b: a == b,
        "!=": lambda a, b: a != b,
        "<": lambda a, b: a < b,
        ">": lambda a, b: a > b,
        "<=": lambda a, b: a <= b,
        ">=": lambda a, b: a >= b,
        "and": lambda a, b: a and b,
        "or": lambda a, b: a or b,
        "in": lambda a, b: (
            a in b if hasattr(b, "__contains__") else Operators.UNCOMPUTABLE
        ),
        "not in": lambda a, b: (
            a not in b if hasattr(b, "__contains__") else Operators.UNCOMPUTABLE
        ),
        "is": lambda a, b: a is b,
        "is not": lambda a, b: a is not b,
        "&": lambda a, b: a & b,
        "|": lambda a, b: a | b,
        "^": lambda a, b: a ^ b,
        "<<": lambda a, b: a << b,
        ">>": lambda a, b: a >> b,
    }

    # JavaScript spellings of the same operators
    ALIASES: dict[str, str] = {
        "===": "==",
        "!==": "!=",
        "&&": "and",
        "||": "or",
        "!": "not",
    }

    # Relational operator → the operator that holds when it does not
    NEGATIONS: dict[str, str] = {
        "<": ">=",
        ">=": "<",
        ">": "<=",
        "<=": ">",
        "==": "!=",
        "!=": "==",
    }

    COMPARISONS: frozenset[str] = frozenset(NEGATIONS)

    @classmethod
    def canonical(cls, op: str) -> str:
        return cls.ALIASES.get(op, op)

    @classmethod
    def eval_binop(cls, op: str, lhs: Any, rhs: Any) -> Any:
        fn = cls.BINOP_TABLE.get(cls.canonical(op))
        if fn is None:
            return cls.UNCOMPUTABLE
        try:
            return fn(lhs, rhs)
        except (TypeError, ValueError, ArithmeticError):
            return cls.UNCOMPUTABLE

    @classmethod
    def eval_unop(cls, op: str, operand: Any) -> Any:
        op = cls.canonical(op)
        try:
            if op == "-":
                return -operand
            if op == "+":
                return +operand
            if op == "not":
                return not operand
            if op == "~":
                return ~operand
        except TypeError:
            pass
        return cls.UNCOMPUTABLE


def _brief(val: Any, limit: int = 40) -> str:
    """Bounded one-line rendering of a value for logs and messages."""
    if isinstance(val, list):
        return f"<list len={len(val)}>"
    text = repr(val)
    return text if len(text) <= limit else text[: limit - 3] + "..."
