"""Execution state — per-run loop/function history for the detector."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..vm import Operators, _is_scalar
from .symbolic import (
    BinaryExpr,
    Literal,
    Opaque,
    Symbolic,
    UnaryExpr,
    concretize,
    make_untracked,
)
from .. import constants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Location:
    source: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.source}:{self.line}:{self.column}"


# ── Guard atoms ──────────────────────────────────────────────────


@dataclass(frozen=True)
class GuardAtom:
    """One elementary fact that held when a branch was taken.

    ``op`` is a comparison operator relating ``left`` and ``right``; a
    tracked atom with ``op == "=="`` and ``left is right`` is a bare value
    that has to stay put. Untracked atoms carry no evidence.
    """

    op: str
    left: Any = None
    right: Any = None
    tracked: bool = True

    @classmethod
    def untracked(cls) -> GuardAtom:
        return cls(op="?", tracked=False)


def _is_number(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool)


def guard_atoms(value: Any, truth: bool) -> list[GuardAtom]:
    """Decompose a branch condition into the atoms that held for *truth*."""
    if not isinstance(value, Symbolic) or not value.valid_path or value.expr.has_opaque():
        return [GuardAtom.untracked()]
    expr = value.expr
    if isinstance(expr, BinaryExpr) and len(value.operands) == 2:
        left, right = value.operands
        if expr.op in Operators.COMPARISONS:
            lhs, rhs = concretize(left), concretize(right)
            if not (_is_scalar(lhs) and _is_scalar(rhs)):
                return [GuardAtom.untracked()]
            op = expr.op if truth else Operators.NEGATIONS[expr.op]
            return [GuardAtom(op=op, left=lhs, right=rhs)]
        # a and b held: both held; a or b failed: both failed
        if (expr.op == "and" and truth) or (expr.op == "or" and not truth):
            return guard_atoms(left, truth) + guard_atoms(right, truth)
        if expr.op in ("and", "or"):
            return [GuardAtom.untracked()]
    if isinstance(expr, UnaryExpr) and expr.op == "not" and value.operands:
        return guard_atoms(value.operands[0], not truth)
    val = value.value
    if _is_number(val):
        return [GuardAtom(op="!=" if truth else "==", left=val, right=0)]
    if _is_scalar(val):
        return [GuardAtom(op="==", left=val, right=val)]
    return [GuardAtom.untracked()]


@dataclass(frozen=True)
class PathCondition:
    """A recorded guard, oriented to match the branch that was taken."""

    expr: Any
    atoms: tuple[GuardAtom, ...]
    keys: frozenset[str]

    @property
    def shape(self) -> tuple:
        return self.expr.shape()

    @classmethod
    def from_value(cls, value: Any, truth: bool) -> PathCondition:
        atoms = tuple(guard_atoms(value, truth))
        if not isinstance(value, Symbolic):
            return cls(expr=Opaque("untracked"), atoms=atoms, keys=frozenset())
        expr = value.expr
        if not truth:
            expr = value.negation or UnaryExpr("not", expr)
        return cls(expr=expr, atoms=atoms, keys=value.expr.identifiers())

    def __str__(self) -> str:
        return str(self.expr)


# ── Frames and trackers ──────────────────────────────────────────


@dataclass
class StackFrame:
    """One loop iteration or one active function invocation.

    ``bindings`` is the snapshot of known hybrids when the frame was taken;
    ``transitions`` collects the values written (or passed as arguments)
    while the frame was current.
    """

    location: Location | None
    bindings: dict[str, Any] = field(default_factory=dict)
    transitions: dict[str, Any] = field(default_factory=dict)
    path: list[PathCondition] = field(default_factory=list)
    path_valid: bool = True


@dataclass
class Tracker:
    name: str
    display_name: str
    location: Location | None = None
    frames: list[StackFrame] = field(default_factory=list)


@dataclass
class ActiveFunction:
    tracker: Tracker
    loop_depth: int


@dataclass
class StreamCounter:
    count: int = 0
    in_stream: bool = False


class ExecutionState:
    """All detector bookkeeping for one analysis run.

    Created fresh per run and handed to every hook explicitly.
    """

    def __init__(
        self,
        threshold: int = constants.DEFAULT_THRESHOLD,
        stream_threshold: int = constants.DEFAULT_STREAM_THRESHOLD,
        timeout: float = constants.DEFAULT_TIMEOUT_SECONDS,
        max_expr_depth: int = constants.DEFAULT_MAX_EXPR_DEPTH,
        classifier=None,
    ):
        self.threshold = threshold
        self.stream_threshold = stream_threshold
        self.max_expr_depth = max_expr_depth
        # None falls back to the default guard-trend classifier
        self.classifier = classifier
        self.deadline = time.monotonic() + timeout
        self.timed_out = False

        self.loop_trackers: list[Tracker] = []
        self.function_trackers: dict[str, Tracker] = {}
        self.active_functions: list[ActiveFunction] = []
        self._active_counts: Counter[str] = Counter()

        self.variables: dict[str, Any] = {}
        self.pending_reset: set[str] = set()
        self.stream_counters: dict[str, StreamCounter] = {}
        self.forcing_tails = False
        self.location: Location | None = None

    # ── functions ────────────────────────────────────────────────

    def enter_function(self, name: str, display_name: str = "") -> tuple[Tracker, bool]:
        """Look up or create the tracker for *name*; report whether this is its first call."""
        tracker = self.function_trackers.get(name)
        if tracker is None:
            tracker = Tracker(name=name, display_name=display_name or name)
            self.function_trackers[name] = tracker
        return tracker, not tracker.frames

    def push_function(self, tracker: Tracker):
        self.active_functions.append(ActiveFunction(tracker, len(self.loop_trackers)))
        self._active_counts[tracker.name] += 1

    def return_last_function(self):
        """Pop the innermost active invocation and any loops it left open."""
        if not self.active_functions:
            return
        active = self.active_functions.pop()
        self._active_counts[active.tracker.name] -= 1
        if active.tracker.frames:
            active.tracker.frames.pop()
        del self.loop_trackers[active.loop_depth :]

    def last_function_name(self) -> str:
        if not self.active_functions:
            return constants.TOP_LEVEL_FUNCTION
        return self.active_functions[-1].tracker.name

    def last_function_display_name(self) -> str:
        if not self.active_functions:
            return constants.TOP_LEVEL_FUNCTION
        return self.active_functions[-1].tracker.display_name

    # ── frames ───────────────────────────────────────────────────

    def new_stack_frame(self) -> StackFrame:
        return StackFrame(location=self.location, bindings=dict(self.variables))

    def active_trackers(self) -> Iterable[Tracker]:
        yield from self.loop_trackers
        for name, count in self._active_counts.items():
            if count > 0:
                yield self.function_trackers[name]

    def current_frames(self) -> Iterable[StackFrame]:
        for tracker in self.active_trackers():
            if tracker.frames:
                yield tracker.frames[-1]

    def save_args_in_transition(self, args: Iterable[tuple[str, Any]], tracker: Tracker):
        """Record argument values on the most recent frame of *tracker*."""
        if not tracker.frames:
            return
        frame = tracker.frames[-1]
        for key, value in args:
            if isinstance(value, Symbolic):
                frame.transitions[key] = value
            elif _is_scalar(value):
                frame.transitions[key] = Symbolic(value=value, expr=Literal(value))

    # ── variables ────────────────────────────────────────────────

    def clean_up_variables(self):
        """Mark every known variable for lazy re-hybridization on its next read."""
        self.pending_reset.update(self.variables)

    def mark_for_reset(self, keys: Iterable[str]):
        self.pending_reset.update(keys)

    def save_variable(self, key: str, value: Any, literal: bool = False):
        self.pending_reset.discard(key)
        if isinstance(value, Symbolic):
            hybrid = value
        elif not _is_scalar(value):
            return
        elif literal:
            hybrid = Symbolic(value=value, expr=Literal(value))
        else:
            hybrid = make_untracked(value)
        self.variables[key] = hybrid
        if self.forcing_tails:
            return
        for frame in self.current_frames():
            frame.transitions[key] = hybrid

    # ── loops ────────────────────────────────────────────────────

    def enter_loop(self, location: Location | None = None) -> Tracker:
        tracker = Tracker(
            name=f"loop@{location}" if location else "loop",
            display_name="loop",
            location=location,
        )
        self.loop_trackers.append(tracker)
        tracker.frames.append(self.new_stack_frame())
        return tracker

    def exit_loop(self):
        if self.loop_trackers:
            self.loop_trackers.pop()

    # ── paths ────────────────────────────────────────────────────

    def save_path(self, value: Any, truth: bool):
        if self.forcing_tails:
            return
        condition = PathCondition.from_value(value, truth)
        for frame in self.current_frames():
            frame.path.append(condition)

    def set_invalid_path(self):
        if self.forcing_tails:
            return
        for frame in self.current_frames():
            frame.path_valid = False

    # ── timeout / location ───────────────────────────────────────

    def has_timed_out(self) -> bool:
        if not self.timed_out and time.monotonic() > self.deadline:
            logger.info("Cooperative analysis deadline passed")
            self.timed_out = True
        return self.timed_out

    def track_location(self, location: Location):
        self.location = location
