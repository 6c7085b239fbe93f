"""Diagnostic taxonomy raised out of an analysis run."""

from __future__ import annotations

from enum import Enum

from .state import Location


class LoopGuardError(Exception):
    """Base class for everything the detector raises."""


class NonTerminationKind(str, Enum):
    # Recursion or loop that never evaluates a guard
    NO_BASE_CASE = "no_base_case"
    # Every guard sees the same values on every iteration
    CYCLE = "cycle"
    # Guards drift away from the values that would end the loop
    DIVERGENT = "divergent"


class NonTerminationDetected(LoopGuardError):
    """A loop or recursive function was certified non-terminating."""

    def __init__(self, kind: NonTerminationKind, name: str, location: Location | None):
        where = f" at {location}" if location else ""
        super().__init__(f"{name} does not terminate ({kind.value}){where}")
        self.kind = kind
        self.name = name
        self.location = location


class TimeoutExceeded(LoopGuardError):
    """The analysis budget ran out before anything was certified."""

    def __init__(self, reason: str, name: str = "", location: Location | None = None):
        super().__init__(reason)
        self.reason = reason
        self.name = name
        self.location = location


class AnalysisInternalError(LoopGuardError):
    """The analysis itself failed, independent of the candidate program."""
