"""Tests for ExecutionState bookkeeping and guard decomposition."""

from __future__ import annotations

from loopguard.infinite_loops.state import (
    ExecutionState,
    GuardAtom,
    Location,
    PathCondition,
    guard_atoms,
)
from loopguard.infinite_loops.symbolic import (
    Identifier,
    Literal,
    Symbolic,
    evaluate_binary,
    evaluate_unary,
    make_dummy,
)


def _var(key: str, value):
    return Symbolic(value=value, expr=Identifier(key))


def _state(**kwargs) -> ExecutionState:
    return ExecutionState(**kwargs)


class TestGuardAtoms:
    def test_comparison_true(self):
        cond = evaluate_binary("<", _var("i", 3), 10)
        assert guard_atoms(cond, True) == [GuardAtom("<", 3, 10)]

    def test_comparison_false_is_negated(self):
        cond = evaluate_binary("<", _var("i", 12), 10)
        assert guard_atoms(cond, False) == [GuardAtom(">=", 12, 10)]

    def test_conjunction_that_held_splits(self):
        cond = evaluate_binary(
            "and",
            evaluate_binary("<", _var("i", 1), 5),
            evaluate_binary(">", _var("j", 2), 0),
        )
        atoms = guard_atoms(cond, True)
        assert atoms == [GuardAtom("<", 1, 5), GuardAtom(">", 2, 0)]

    def test_disjunction_that_held_is_untracked(self):
        cond = evaluate_binary(
            "or",
            evaluate_binary("<", _var("i", 1), 5),
            evaluate_binary(">", _var("j", 2), 0),
        )
        assert guard_atoms(cond, True) == [GuardAtom.untracked()]

    def test_not_flips_truth(self):
        inner = evaluate_binary("==", _var("n", 4), 0)
        cond = evaluate_unary("!", inner)
        assert guard_atoms(cond, True) == [GuardAtom("!=", 4, 0)]

    def test_bare_number_compares_with_zero(self):
        assert guard_atoms(_var("n", 5), True) == [GuardAtom("!=", 5, 0)]

    def test_opaque_condition_is_untracked(self):
        assert guard_atoms(make_dummy(True), True) == [GuardAtom.untracked()]

    def test_concrete_condition_is_untracked(self):
        assert guard_atoms(True, True) == [GuardAtom.untracked()]


class TestPathCondition:
    def test_false_branch_uses_negation(self):
        cond = evaluate_binary("<", _var("i", 12), 10)
        pc = PathCondition.from_value(cond, False)
        assert str(pc) == "(i >= 10)"
        assert pc.keys == frozenset({"i"})

    def test_concrete_condition(self):
        pc = PathCondition.from_value(False, False)
        assert pc.keys == frozenset()
        assert pc.atoms == (GuardAtom.untracked(),)


class TestFunctionTracking:
    def test_first_call_then_repeat(self):
        state = _state()
        tracker, first = state.enter_function("func_f_0", "f")
        assert first
        tracker.frames.append(state.new_stack_frame())
        state.push_function(tracker)
        again, first = state.enter_function("func_f_0", "f")
        assert again is tracker
        assert not first

    def test_return_pops_frame_and_inner_loops(self):
        state = _state()
        tracker, _ = state.enter_function("func_f_0", "f")
        tracker.frames.append(state.new_stack_frame())
        state.push_function(tracker)
        state.enter_loop(Location("candidate", 2, 5))
        state.return_last_function()
        assert tracker.frames == []
        assert state.loop_trackers == []
        assert state.last_function_name() == "<main>"

    def test_return_outside_function_is_noop(self):
        state = _state()
        state.return_last_function()
        assert state.active_functions == []

    def test_args_recorded_as_literals(self):
        state = _state()
        tracker, _ = state.enter_function("func_f_0", "f")
        tracker.frames.append(state.new_stack_frame())
        state.save_args_in_transition([("func_f_0:n", 3), ("func_f_0:xs", [1])], tracker)
        transitions = tracker.frames[-1].transitions
        assert transitions == {"func_f_0:n": Symbolic(3, Literal(3))}


class TestVariables:
    def test_save_clears_pending_reset(self):
        state = _state()
        state.mark_for_reset(["x"])
        state.save_variable("x", 1, literal=True)
        assert "x" not in state.pending_reset
        assert state.variables["x"] == Symbolic(1, Literal(1))

    def test_concrete_non_literal_is_untracked(self):
        state = _state()
        state.save_variable("x", 1)
        assert not state.variables["x"].valid_path

    def test_lists_are_not_tracked(self):
        state = _state()
        state.save_variable("xs", [1, None])
        assert "xs" not in state.variables

    def test_writes_reach_every_current_frame(self):
        state = _state()
        outer = state.enter_loop(Location("candidate", 1, 1))
        inner = state.enter_loop(Location("candidate", 2, 5))
        state.save_variable("x", 2, literal=True)
        assert "x" in outer.frames[-1].transitions
        assert "x" in inner.frames[-1].transitions

    def test_writes_are_not_recorded_while_forcing_tails(self):
        state = _state()
        loop = state.enter_loop()
        state.forcing_tails = True
        state.save_variable("x", 2, literal=True)
        assert loop.frames[-1].transitions == {}

    def test_clean_up_marks_all_known(self):
        state = _state()
        state.save_variable("a", 1, literal=True)
        state.save_variable("b", 2, literal=True)
        state.clean_up_variables()
        assert state.pending_reset == {"a", "b"}


class TestLoopsAndPaths:
    def test_enter_loop_opens_first_frame(self):
        state = _state()
        loc = Location("candidate", 3, 1)
        tracker = state.enter_loop(loc)
        assert len(tracker.frames) == 1
        assert tracker.name == "loop@candidate:3:1"

    def test_save_path_on_current_frames(self):
        state = _state()
        tracker = state.enter_loop()
        state.save_path(evaluate_binary("<", _var("i", 1), 5), True)
        assert [str(pc) for pc in tracker.frames[-1].path] == ["(i < 5)"]

    def test_set_invalid_path(self):
        state = _state()
        tracker = state.enter_loop()
        state.set_invalid_path()
        assert not tracker.frames[-1].path_valid

    def test_exit_loop_on_empty_stack(self):
        state = _state()
        state.exit_loop()
        assert state.loop_trackers == []


class TestTimeout:
    def test_zero_timeout_expires(self):
        state = _state(timeout=-1.0)
        assert state.has_timed_out()

    def test_generous_timeout_does_not_expire(self):
        assert not _state(timeout=60.0).has_timed_out()

    def test_location_str(self):
        assert str(Location("prior[0]", 4, 9)) == "prior[0]:4:9"
