"""Lazy-stream heuristic for repeated null tests inside one function."""

from __future__ import annotations

import logging
from typing import Any

from ..vm_types import BuiltinFunction, FunctionValue
from .errors import TimeoutExceeded
from .state import ExecutionState, StreamCounter
from .symbolic import concretize

logger = logging.getLogger(__name__)


def _is_pair(val: Any) -> bool:
    return isinstance(val, list) and len(val) == 2


def _stream_terminates(value: Any, limit: int, vm) -> bool:
    """Force up to *limit* lazy tails of *value*; True once the sequence ends.

    A pair whose tail is not a function is an ordinary list, which always
    ends.
    """
    node = value
    for _ in range(limit):
        if not _is_pair(node):
            return True
        tail = node[1]
        if not isinstance(tail, (FunctionValue, BuiltinFunction)):
            return True
        node = concretize(vm.apply(tail, []))
    return node is None or not _is_pair(node)


def _is_stream(val: Any) -> bool:
    """A pair whose tail is still to be computed."""
    return _is_pair(val) and isinstance(val[1], (FunctionValue, BuiltinFunction))


def null_test(state: ExecutionState, value: Any, vm) -> bool:
    """Count a null test on a lazy stream in the current function; force its tails once in stream mode.

    Only tests on a pair with a lazy tail are counted. Null tests reached
    while tails are being forced are not counted either.

    Raises:
        TimeoutExceeded: if forcing never reaches the end of the stream.
    """
    if not _is_stream(value) or state.forcing_tails:
        return value is None
    name = state.last_function_name()
    counter = state.stream_counters.setdefault(name, StreamCounter())
    if counter.in_stream:
        _force_tails(state, counter, state.last_function_display_name(), value, vm)
        return False
    counter.count += 1
    if counter.count > state.stream_threshold:
        logger.debug("Entering stream mode in %s after %d null tests", name, counter.count)
        counter.in_stream = True
    return False


def _force_tails(state: ExecutionState, counter: StreamCounter, name: str, value: Any, vm):
    # Tails may return from inside their own loops; those trackers are dropped with them
    loop_depth = len(state.loop_trackers)
    state.forcing_tails = True
    try:
        finished = _stream_terminates(value, state.threshold, vm)
    finally:
        state.forcing_tails = False
        del state.loop_trackers[loop_depth:]
    if not finished:
        raise TimeoutExceeded(
            f"stream consumed in {name} did not end within {state.threshold} forced elements",
            name=name,
            location=state.location,
        )
    logger.debug("Forced stream in %s reached the end; leaving stream mode", name)
    counter.count = 0
    counter.in_stream = False
