"""Non-termination inference over a window of recorded frames."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import NonTerminationDetected, NonTerminationKind
from .state import ExecutionState, GuardAtom, StackFrame, _is_number, guard_atoms
from .symbolic import Symbolic

logger = logging.getLogger(__name__)


class Trend(Enum):
    STABLE = "stable"
    # Moving, but in the direction that keeps the atom true
    KEEPS = "keeps"


class _Writes(Enum):
    # Every followed write repeats one fixed expression
    STEADY = "steady"
    UNSTEADY = "unsteady"


@dataclass(frozen=True)
class Verdict:
    kind: NonTerminationKind
    reason: str


class TrendClassifier(ABC):
    """Decides from a window of frames whether termination is impossible."""

    @abstractmethod
    def classify(self, frames: list[StackFrame]) -> Verdict | None:
        """Return a verdict, or None for insufficient evidence."""


def _steps_diverge(diffs: list[float]) -> bool | None:
    """Direction of a strictly monotone, non-decelerating sequence.

    Returns True for increasing, False for decreasing, None otherwise.
    """
    steps = [b - a for a, b in zip(diffs, diffs[1:])]
    if any(s == 0 for s in steps):
        return None
    rising = steps[0] > 0
    if any((s > 0) != rising for s in steps):
        return None
    mags = [abs(s) for s in steps]
    for prev, cur in zip(mags, mags[1:]):
        if cur < prev and not math.isclose(cur, prev, rel_tol=1e-9):
            return None
    return rising


def _steady(values: list[Any]) -> bool:
    """True if *values* repeat, or are numbers moving one way with non-shrinking steps."""
    if all(v == values[0] for v in values):
        return True
    if not all(_is_number(v) for v in values):
        return False
    return _steps_diverge(values) is not None


def atom_trend(atoms: list[GuardAtom]) -> Trend | None:
    """Classify one guard atom's values across the window."""
    if not atoms or any(not a.tracked for a in atoms):
        return None
    op = atoms[0].op
    if any(a.op != op for a in atoms):
        return None

    if not all(_is_number(a.left) and _is_number(a.right) for a in atoms):
        first = atoms[0]
        if all(a.left == first.left and a.right == first.right for a in atoms):
            return Trend.STABLE
        return None

    diffs = [a.left - a.right for a in atoms]
    if all(d == diffs[0] for d in diffs):
        return Trend.STABLE
    if op == "==":
        return None
    rising = _steps_diverge(diffs)
    if rising is None:
        return None
    if op in ("<", "<="):
        return Trend.KEEPS if not rising else None
    if op in (">", ">="):
        return Trend.KEEPS if rising else None
    # !=: moving away from equality
    last = diffs[-1]
    return Trend.KEEPS if last != 0 and (last > 0) == rising else None


class GuardTrendClassifier(TrendClassifier):
    """Certifies non-termination from the trend of the recorded guards.

    Every frame must have a valid path and the same sequence of guard
    shapes. Each elementary comparison of the guards is then followed
    across the window: it must either keep the same values or drift,
    with a constant direction and a non-shrinking step, the way that keeps
    it true.

    The variables the guards read are followed through their writes, and
    so are the variables those writes read. A write that reads data the
    analysis cannot follow (a builtin result, a list element) leaves the
    window inconclusive. A drift is only trusted when every followed write
    uses the same expression, literals included, in every frame and every
    followed variable is itself stable or drifting with a non-shrinking
    step; otherwise only a repeating guard counts.
    Boolean flags written from a comparison contribute that comparison's
    atoms as well.
    """

    def __init__(self, min_frames: int = 3):
        self.min_frames = min_frames

    def classify(self, frames: list[StackFrame]) -> Verdict | None:
        if len(frames) < self.min_frames:
            return None
        if not all(f.path_valid for f in frames):
            return None

        paths = [f.path for f in frames]
        if not any(paths):
            return Verdict(NonTerminationKind.NO_BASE_CASE, "no guard is ever evaluated")
        if not all(paths):
            return None
        if len({tuple(pc.shape for pc in p) for p in paths}) > 1:
            return None

        rows: list[list[GuardAtom]] = [
            [atom for pc in path for atom in pc.atoms] for path in paths
        ]
        writes = self._follow_writes(
            frozenset().union(*(pc.keys for pc in paths[0])), frames, rows
        )
        if writes is None:
            return None

        if len({len(r) for r in rows}) > 1:
            return None
        trends = [atom_trend(list(column)) for column in zip(*rows)]
        if not trends or any(t is None for t in trends):
            return None
        if all(t is Trend.STABLE for t in trends):
            return Verdict(NonTerminationKind.CYCLE, "guards repeat the same values")
        if writes is _Writes.UNSTEADY:
            return None
        return Verdict(NonTerminationKind.DIVERGENT, "guards drift away from their exit")

    @staticmethod
    def _follow_writes(
        keys: frozenset[str], frames: list[StackFrame], rows: list[list[GuardAtom]]
    ) -> _Writes | None:
        """Check the writes reachable from *keys*, extending *rows* with flag atoms.

        Returns None if any of them is erratic or reads untracked data.
        """
        result = _Writes.STEADY
        pending = sorted(keys)
        seen: set[str] = set()
        while pending:
            key = pending.pop()
            if key in seen:
                continue
            seen.add(key)
            values: list[Any] = [f.transitions.get(key) for f in frames]
            if all(v is None for v in values):
                continue
            if any(
                not isinstance(v, Symbolic) or not v.valid_path or v.expr.has_opaque()
                for v in values
            ):
                return None
            first = values[0].expr
            if len({v.expr.shape() for v in values}) > 1:
                return None
            pending.extend(first.identifiers())
            if all(isinstance(v.value, bool) for v in values):
                for row, v in zip(rows, values):
                    row.extend(guard_atoms(v, v.value))
                continue
            if any(v.expr != first for v in values):
                result = _Writes.UNSTEADY
            elif not _steady([v.value for v in values]):
                result = _Writes.UNSTEADY
        return result


DEFAULT_CLASSIFIER = GuardTrendClassifier()


def check_for_infinite_loop(frames: list[StackFrame], state: ExecutionState, name: str):
    """Raise NonTerminationDetected if the classifier certifies *frames*."""
    classifier = state.classifier or DEFAULT_CLASSIFIER
    verdict = classifier.classify(frames)
    logger.debug(
        "Checked %s over %d frames: %s",
        name,
        len(frames),
        verdict.reason if verdict else "insufficient evidence",
    )
    if verdict is not None:
        raise NonTerminationDetected(verdict.kind, name, state.location)
