"""Runtime hooks called by instrumented programs.

Every hook takes the run's :class:`ExecutionState` as its first argument;
the instrumented program loads the state and the hook table from globals
injected by the driver and calls hooks as host-object methods.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..vm import _is_scalar
from ..vm_types import FunctionValue, HostObject, VMRuntimeError
from .dispatch import dispatch_if_meets_threshold
from .errors import TimeoutExceeded
from .state import ExecutionState, Location
from .symbolic import (
    Identifier,
    Literal,
    Symbolic,
    deep_concretize,
    evaluate_binary,
    evaluate_unary,
    is_function,
)
from .symbolic import concretize as _concretize
from .symbolic import hybridize as _hybridize
from .symbolic import make_dummy as _make_dummy
from .. import constants

logger = logging.getLogger(__name__)


def _check_deadline(state: ExecutionState, name: str):
    if state.has_timed_out():
        raise TimeoutExceeded(
            "analysis deadline passed before a verdict was reached",
            name=name,
            location=state.location,
        )


# ── value hooks ──────────────────────────────────────────────────


def no_op(state: ExecutionState, value: Any = None) -> Any:
    return value


def concretize(state: ExecutionState, value: Any) -> Any:
    return _concretize(value)


def make_dummy(state: ExecutionState, value: Any) -> Any:
    return _make_dummy(_concretize(value))


def wrap_arg(state: ExecutionState, value: Any) -> Any:
    """Mark function values passed as arguments so their calls are tracked apart."""
    if isinstance(value, FunctionValue):
        return value.as_argument()
    return value


def hybridize(state: ExecutionState, key: str, value: Any) -> Any:
    """Hybrid view of a variable read.

    A variable marked for reset is re-read as a fresh identifier; otherwise
    a symbolic value is kept and a concrete scalar becomes an identifier.
    """
    if is_function(value) or not _is_scalar(_concretize(value)):
        return value
    if key in state.pending_reset:
        return Symbolic(value=deep_concretize(value), expr=Identifier(key))
    if isinstance(value, Symbolic):
        return value
    return _hybridize(key, value)


def eval_binary(state: ExecutionState, op: str, left: Any, right: Any) -> Any:
    return evaluate_binary(op, left, right, state.max_expr_depth)


def eval_unary(state: ExecutionState, op: str, operand: Any) -> Any:
    return evaluate_unary(op, operand, state.max_expr_depth)


# ── recording hooks ──────────────────────────────────────────────


def save_var(state: ExecutionState, key: str, value: Any, literal: bool = False) -> Any:
    """Record a write to *key* and hand the value back for the store."""
    state.save_variable(key, value, literal=literal)
    return value


def save_bool(state: ExecutionState, value: Any) -> bool:
    """Record the branch about to be taken on *value*; return its truthiness."""
    truth = bool(_concretize(value))
    if isinstance(value, Symbolic):
        if not value.valid_path:
            state.set_invalid_path()
        elif not isinstance(value.expr, Literal):
            state.save_path(value, truth)
    else:
        state.save_path(value, truth)
    return truth


def track_location(state: ExecutionState, location: Location) -> None:
    state.track_location(location)


# ── function hooks ───────────────────────────────────────────────


def pre_function(
    state: ExecutionState,
    name: str,
    display_name: str,
    callee: Any,
    param_keys: tuple[str, ...],
    *args: Any,
) -> None:
    """Open a frame for an invocation, checking the history of nested calls first."""
    _check_deadline(state, display_name)
    if state.forcing_tails:
        return
    passed = isinstance(callee, FunctionValue) and callee.passed_as_argument
    tracker_name = f"{constants.PASSED_FUNCTION_PREFIX}{name}" if passed else name
    tracker, first = state.enter_function(tracker_name, display_name)
    if not first:
        state.clean_up_variables()
        state.save_args_in_transition(zip(param_keys, args), tracker)
        if not passed:
            dispatch_if_meets_threshold(tracker.frames, state, display_name)
    state.mark_for_reset(param_keys)
    tracker.frames.append(state.new_stack_frame())
    state.push_function(tracker)


def return_function(state: ExecutionState) -> None:
    if state.forcing_tails:
        return
    state.return_last_function()
    state.clean_up_variables()


# ── loop hooks ───────────────────────────────────────────────────


def enter_loop(state: ExecutionState, location: Location | None = None) -> None:
    if location is not None:
        state.track_location(location)
    state.enter_loop(location)
    state.clean_up_variables()


def post_loop(state: ExecutionState, location: Location | None = None) -> None:
    """Close the current iteration, analyse the history on schedule, open the next."""
    _check_deadline(state, "loop")
    if location is not None:
        state.track_location(location)
    if not state.loop_trackers:
        return
    tracker = state.loop_trackers[-1]
    # Paths are not recorded while a stream is being forced
    if not state.forcing_tails:
        dispatch_if_meets_threshold(tracker.frames, state, tracker.display_name)
    state.clean_up_variables()
    tracker.frames.append(state.new_stack_frame())


def exit_loop(state: ExecutionState) -> None:
    state.clean_up_variables()
    state.exit_loop()


HOOKS: dict[str, Callable[..., Any]] = {
    "no_op": no_op,
    "concretize": concretize,
    "hybridize": hybridize,
    "wrap_arg": wrap_arg,
    "make_dummy": make_dummy,
    "save_bool": save_bool,
    "save_var": save_var,
    "pre_function": pre_function,
    "return_function": return_function,
    "post_loop": post_loop,
    "enter_loop": enter_loop,
    "exit_loop": exit_loop,
    "track_location": track_location,
    "eval_binary": eval_binary,
    "eval_unary": eval_unary,
}


class HookTable(HostObject):
    """Exposes :data:`HOOKS` to the running program as methods."""

    def call_method(self, name: str, args: list[Any], vm: Any) -> Any:
        hook = HOOKS.get(name)
        if hook is None:
            raise VMRuntimeError(f"unknown hook '{name}'")
        return hook(*args)
