"""Exponential sample schedule deciding when history is analysed."""

from __future__ import annotations

from .detect import check_for_infinite_loop
from .state import ExecutionState, StackFrame


def meets_threshold(count: int, threshold: int) -> bool:
    """True when *count* is ``threshold * 2**k`` for some k >= 0."""
    if threshold <= 0 or count < threshold or count % threshold:
        return False
    ratio = count // threshold
    return ratio & (ratio - 1) == 0


def dispatch_if_meets_threshold(frames: list[StackFrame], state: ExecutionState, name: str):
    """Run the non-termination check when the history length hits the schedule."""
    if meets_threshold(len(frames), state.threshold):
        check_for_infinite_loop(frames, state, name)
