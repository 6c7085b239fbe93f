"""Tests for the sample schedule and the guard-trend classifier."""

from __future__ import annotations

import pytest

from loopguard.infinite_loops.detect import (
    DEFAULT_CLASSIFIER,
    GuardTrendClassifier,
    Trend,
    TrendClassifier,
    Verdict,
    atom_trend,
    check_for_infinite_loop,
)
from loopguard.infinite_loops.dispatch import dispatch_if_meets_threshold, meets_threshold
from loopguard.infinite_loops.errors import NonTerminationDetected, NonTerminationKind
from loopguard.infinite_loops.state import (
    ExecutionState,
    GuardAtom,
    Location,
    PathCondition,
    StackFrame,
)
from loopguard.infinite_loops.symbolic import (
    Identifier,
    Symbolic,
    evaluate_binary,
    make_dummy,
    make_untracked,
)


def _var(key: str, value):
    return Symbolic(value=value, expr=Identifier(key))


def _guarded_frames(
    values: list[int], op: str = "<", bound: int = 10, step: int = -1
) -> list[StackFrame]:
    """One frame per iteration of ``while (i <op> bound) { i = i + step; }``."""
    frames = []
    for v in values:
        i = _var("i", v)
        cond = evaluate_binary(op, i, bound)
        frames.append(
            StackFrame(
                location=None,
                transitions={"i": evaluate_binary("+", i, step)},
                path=[PathCondition.from_value(cond, True)],
            )
        )
    return frames


def _loop_frames(values: list[int], writes: list[dict]) -> list[StackFrame]:
    """Frames of ``while (i < 10)`` recording the given writes per iteration."""
    return [
        StackFrame(
            location=None,
            transitions=w,
            path=[PathCondition.from_value(evaluate_binary("<", _var("i", v), 10), True)],
        )
        for v, w in zip(values, writes)
    ]


def _flag_frames(values: list[int]) -> list[StackFrame]:
    """Frames of a loop guarded by a flag last written as ``n < 10``."""
    return [
        StackFrame(
            location=None,
            transitions={"go": evaluate_binary("<", _var("n", n), 10)},
            path=[PathCondition.from_value(_var("go", True), True)],
        )
        for n in values
    ]


class TestMeetsThreshold:
    @pytest.mark.parametrize("count", [3, 6, 12, 24, 48])
    def test_schedule_points(self, count):
        assert meets_threshold(count, 3)

    @pytest.mark.parametrize("count", [0, 1, 2, 4, 5, 9, 18, 36])
    def test_between_schedule_points(self, count):
        assert not meets_threshold(count, 3)

    def test_non_positive_threshold(self):
        assert not meets_threshold(4, 0)


class TestAtomTrend:
    def test_stable(self):
        atoms = [GuardAtom("<", 0, 10)] * 4
        assert atom_trend(atoms) is Trend.STABLE

    def test_less_than_drifting_down_keeps(self):
        atoms = [GuardAtom("<", v, 10) for v in (0, -1, -2, -3)]
        assert atom_trend(atoms) is Trend.KEEPS

    def test_less_than_drifting_up_is_unknown(self):
        atoms = [GuardAtom("<", v, 10) for v in (0, 1, 2, 3)]
        assert atom_trend(atoms) is None

    def test_greater_than_drifting_up_keeps(self):
        atoms = [GuardAtom(">", v, 0) for v in (1, 2, 4, 8)]
        assert atom_trend(atoms) is Trend.KEEPS

    def test_decelerating_is_unknown(self):
        atoms = [GuardAtom(">", v, 0) for v in (1, 5, 7, 8)]
        assert atom_trend(atoms) is None

    def test_not_equal_moving_away(self):
        atoms = [GuardAtom("!=", v, 0) for v in (1, 2, 3)]
        assert atom_trend(atoms) is Trend.KEEPS

    def test_not_equal_moving_toward(self):
        atoms = [GuardAtom("!=", v, 0) for v in (3, 2, 1)]
        assert atom_trend(atoms) is None

    def test_equality_changing_is_unknown(self):
        atoms = [GuardAtom("==", v, 0) for v in (1, 2, 3)]
        assert atom_trend(atoms) is None

    def test_strings_must_repeat(self):
        assert atom_trend([GuardAtom("==", "a", "a")] * 3) is Trend.STABLE
        assert atom_trend([GuardAtom("==", "a", "a"), GuardAtom("==", "b", "b")]) is None

    def test_untracked_atom(self):
        assert atom_trend([GuardAtom.untracked()] * 3) is None

    def test_mixed_operators(self):
        assert atom_trend([GuardAtom("<", 0, 1), GuardAtom("<=", 0, 1)]) is None


class TestGuardTrendClassifier:
    def test_too_few_frames(self):
        assert GuardTrendClassifier(min_frames=3).classify(_guarded_frames([0, -1])) is None

    def test_no_guard_is_no_base_case(self):
        frames = [StackFrame(location=None) for _ in range(4)]
        verdict = GuardTrendClassifier().classify(frames)
        assert verdict.kind is NonTerminationKind.NO_BASE_CASE

    def test_invalid_path_blocks_verdict(self):
        frames = [StackFrame(location=None) for _ in range(4)]
        frames[2].path_valid = False
        assert GuardTrendClassifier().classify(frames) is None

    def test_diverging_counter(self):
        verdict = GuardTrendClassifier().classify(_guarded_frames([0, -1, -2, -3]))
        assert verdict.kind is NonTerminationKind.DIVERGENT

    def test_converging_counter(self):
        frames = _guarded_frames([0, 1, 2, 3], step=1)
        assert GuardTrendClassifier().classify(frames) is None

    def test_repeating_guard_is_cycle(self):
        frames = [
            StackFrame(
                location=None,
                path=[PathCondition.from_value(evaluate_binary("<", _var("i", 0), 10), True)],
            )
            for _ in range(4)
        ]
        verdict = GuardTrendClassifier().classify(frames)
        assert verdict.kind is NonTerminationKind.CYCLE

    def test_guard_shapes_must_match(self):
        frames = _guarded_frames([0, -1, -2, -3])
        frames[1].path.append(frames[1].path[0])
        assert GuardTrendClassifier().classify(frames) is None

    def test_some_frames_without_guard(self):
        frames = _guarded_frames([0, -1, -2, -3])
        frames[3].path = []
        assert GuardTrendClassifier().classify(frames) is None

    def test_erratic_write_blocks_verdict(self):
        frames = _guarded_frames([0, -1, -2, -3])
        frames[2].transitions["i"] = make_untracked(-3)
        assert GuardTrendClassifier().classify(frames) is None

    def test_write_shape_must_match(self):
        frames = _guarded_frames([0, -1, -2, -3])
        frames[2].transitions["i"] = evaluate_binary("*", _var("i", -2), 1)
        assert GuardTrendClassifier().classify(frames) is None

    def test_flag_reaching_its_bound(self):
        # while (go) { go = n < 10; ... } with n rising to the bound
        assert GuardTrendClassifier().classify(_flag_frames([7, 8, 9, 10])) is None

    def test_flag_drifting_from_its_bound(self):
        verdict = GuardTrendClassifier().classify(_flag_frames([7, 6, 5, 4]))
        assert verdict.kind is NonTerminationKind.DIVERGENT

    def test_opaque_guard(self):
        frames = [
            StackFrame(location=None, path=[PathCondition.from_value(make_dummy(True), True)])
            for _ in range(4)
        ]
        assert GuardTrendClassifier().classify(frames) is None

    def test_step_read_from_data_blocks_verdict(self):
        # i = i + head(xs)
        values = [0, -1, -2, -3]
        writes = [{"i": evaluate_binary("+", _var("i", v), make_dummy(-1))} for v in values]
        assert GuardTrendClassifier().classify(_loop_frames(values, writes)) is None

    def test_changing_literal_step_is_not_a_drift(self):
        values = [0, -1, -3, -6]
        writes = [
            {"i": evaluate_binary("+", _var("i", v), step)}
            for v, step in zip(values, [-1, -2, -3, -4])
        ]
        assert GuardTrendClassifier().classify(_loop_frames(values, writes)) is None

    def test_drift_through_a_copy(self):
        # x = i; i = x - 1;
        values = [0, -1, -2, -3]
        writes = [
            {"x": _var("i", v), "i": evaluate_binary("-", _var("x", v), 1)} for v in values
        ]
        verdict = GuardTrendClassifier().classify(_loop_frames(values, writes))
        assert verdict.kind is NonTerminationKind.DIVERGENT

    def test_drift_fed_by_a_slowing_variable(self):
        # i = i + d; d = d + e; e = e + 1; with d, e starting at -20, -10
        values = [0, -20, -50, -89]
        ds = [-20, -30, -39, -47]
        es = [-10, -9, -8, -7]
        writes = [
            {
                "i": evaluate_binary("+", _var("i", v), _var("d", d)),
                "d": evaluate_binary("+", _var("d", d), _var("e", e)),
                "e": evaluate_binary("+", _var("e", e), 1),
            }
            for v, d, e in zip(values, ds, es)
        ]
        assert GuardTrendClassifier().classify(_loop_frames(values, writes)) is None


class TestCheckForInfiniteLoop:
    def test_raises_with_state_location(self):
        state = ExecutionState()
        state.track_location(Location("candidate", 5, 3))
        with pytest.raises(NonTerminationDetected) as exc_info:
            check_for_infinite_loop(_guarded_frames([0, -1, -2]), state, "loop")
        assert exc_info.value.kind is NonTerminationKind.DIVERGENT
        assert exc_info.value.location == Location("candidate", 5, 3)
        assert "loop does not terminate" in str(exc_info.value)

    def test_silent_without_verdict(self):
        state = ExecutionState()
        check_for_infinite_loop(_guarded_frames([0, 1, 2], step=1), state, "loop")

    def test_dispatch_only_on_schedule(self):
        state = ExecutionState(threshold=3)
        dispatch_if_meets_threshold(_guarded_frames([0, -1, -2, -3]), state, "loop")
        with pytest.raises(NonTerminationDetected):
            dispatch_if_meets_threshold(_guarded_frames([0, -1, -2]), state, "loop")

    def test_injected_classifier_is_consulted(self):
        class AlwaysCycle(TrendClassifier):
            def classify(self, frames):
                return Verdict(NonTerminationKind.CYCLE, "always")

        state = ExecutionState(classifier=AlwaysCycle())
        with pytest.raises(NonTerminationDetected) as exc_info:
            check_for_infinite_loop(_guarded_frames([0, 1, 2], step=1), state, "loop")
        assert exc_info.value.kind is NonTerminationKind.CYCLE

    def test_state_without_classifier_uses_default(self):
        assert ExecutionState().classifier is None
        assert isinstance(DEFAULT_CLASSIFIER, GuardTrendClassifier)
        with pytest.raises(NonTerminationDetected):
            check_for_infinite_loop(_guarded_frames([0, -1, -2]), ExecutionState(), "loop")
