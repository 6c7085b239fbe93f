"""Tests for the runtime hooks and the host tables instrumented code calls."""

from __future__ import annotations

import pytest

from loopguard.builtins import Builtins
from loopguard.infinite_loops import hooks
from loopguard.infinite_loops.builtins import BuiltinStrategy, BuiltinTable
from loopguard.infinite_loops.errors import (
    NonTerminationDetected,
    NonTerminationKind,
    TimeoutExceeded,
)
from loopguard.infinite_loops.hooks import HookTable
from loopguard.infinite_loops.state import ExecutionState, Location
from loopguard.infinite_loops.symbolic import Identifier, Literal, Symbolic
from loopguard.vm_types import BuiltinFunction, Environment, FunctionValue, VMRuntimeError

LOOP_AT = Location("candidate", 2, 1)
_LAZY_PAIR = [1, BuiltinFunction(name="tail", fn=lambda args, vm: None)]


def _function(name: str = "f") -> FunctionValue:
    return FunctionValue(name=name, label=f"func_{name}_0", params=["n"], closure=Environment())


def _call(state: ExecutionState, arg, callee=None, name: str = "f"):
    label = f"func_{name}_0"
    hooks.pre_function(state, label, name, callee or _function(name), (f"{label}:n",), arg)


class TestValueHooks:
    def test_hybridize_concrete(self):
        state = ExecutionState()
        assert hooks.hybridize(state, "x", 3) == Symbolic(3, Identifier("x"))

    def test_hybridize_keeps_symbolic(self):
        state = ExecutionState()
        value = Symbolic(3, Literal(3))
        assert hooks.hybridize(state, "x", value) is value

    def test_hybridize_pending_reset_becomes_identifier(self):
        state = ExecutionState()
        state.mark_for_reset(["x"])
        assert hooks.hybridize(state, "x", Symbolic(3, Literal(3))).expr == Identifier("x")

    def test_hybridize_pending_is_sticky_until_write(self):
        state = ExecutionState()
        state.mark_for_reset(["x"])
        hooks.hybridize(state, "x", 1)
        assert "x" in state.pending_reset
        hooks.save_var(state, "x", 2, True)
        assert "x" not in state.pending_reset

    def test_hybridize_passes_functions(self):
        fn = _function()
        assert hooks.hybridize(ExecutionState(), "f", fn) is fn

    def test_wrap_arg_marks_functions(self):
        wrapped = hooks.wrap_arg(ExecutionState(), _function())
        assert wrapped.passed_as_argument
        assert hooks.wrap_arg(ExecutionState(), 4) == 4

    def test_eval_binary_uses_state_depth(self):
        state = ExecutionState(max_expr_depth=1)
        result = hooks.eval_binary(state, "+", Symbolic(1, Identifier("x")), 1)
        assert result.value == 2
        assert not result.valid_path

    def test_save_var_returns_value(self):
        state = ExecutionState()
        assert hooks.save_var(state, "x", 5, True) == 5
        assert state.variables["x"] == Symbolic(5, Literal(5))


class TestSaveBool:
    def test_records_symbolic_guard(self):
        state = ExecutionState()
        loop = state.enter_loop(LOOP_AT)
        cond = hooks.eval_binary(state, "<", Symbolic(1, Identifier("i")), 5)
        assert hooks.save_bool(state, cond) is True
        assert len(loop.frames[-1].path) == 1

    def test_invalid_guard_invalidates_frame(self):
        state = ExecutionState()
        loop = state.enter_loop(LOOP_AT)
        cond = hooks.eval_binary(state, "in", Symbolic(1, Identifier("i")), [1])
        hooks.save_bool(state, cond)
        assert not loop.frames[-1].path_valid

    def test_literal_guard_not_recorded(self):
        state = ExecutionState()
        loop = state.enter_loop(LOOP_AT)
        assert hooks.save_bool(state, Symbolic(0, Literal(0))) is False
        assert loop.frames[-1].path == []

    def test_concrete_guard_recorded(self):
        state = ExecutionState()
        loop = state.enter_loop(LOOP_AT)
        hooks.save_bool(state, "text")
        assert len(loop.frames[-1].path) == 1


class TestFunctionHooks:
    def test_first_call_opens_frame(self):
        state = ExecutionState()
        _call(state, 1)
        tracker = state.function_trackers["func_f_0"]
        assert len(tracker.frames) == 1
        assert state.last_function_name() == "func_f_0"
        assert "func_f_0:n" in state.pending_reset

    def test_return_closes_frame(self):
        state = ExecutionState()
        _call(state, 1)
        hooks.return_function(state)
        assert state.function_trackers["func_f_0"].frames == []
        assert state.active_functions == []

    def test_nested_call_records_argument_transition(self):
        state = ExecutionState()
        _call(state, 1)
        _call(state, Symbolic(2, Identifier("func_f_0:n")))
        first = state.function_trackers["func_f_0"].frames[0]
        assert first.transitions["func_f_0:n"].value == 2

    def test_recursion_without_guard_is_reported(self):
        state = ExecutionState(threshold=3)
        state.track_location(Location("candidate", 1, 30))
        with pytest.raises(NonTerminationDetected) as exc_info:
            for n in range(10):
                _call(state, n)
        assert exc_info.value.kind is NonTerminationKind.NO_BASE_CASE
        assert exc_info.value.name == "f"

    def test_passed_function_gets_own_tracker_without_dispatch(self):
        state = ExecutionState(threshold=3)
        callee = _function().as_argument()
        for n in range(10):
            _call(state, n, callee=callee)
        assert "*func_f_0" in state.function_trackers
        assert "func_f_0" not in state.function_trackers

    def test_forcing_tails_skips_function_bookkeeping(self):
        state = ExecutionState()
        state.forcing_tails = True
        _call(state, 1)
        hooks.return_function(state)
        assert state.function_trackers == {}

    def test_deadline(self):
        state = ExecutionState(timeout=-1.0)
        with pytest.raises(TimeoutExceeded):
            _call(state, 1)


class TestLoopHooks:
    def test_enter_post_exit(self):
        state = ExecutionState()
        hooks.enter_loop(state, LOOP_AT)
        assert state.location == LOOP_AT
        hooks.post_loop(state, LOOP_AT)
        assert len(state.loop_trackers[-1].frames) == 2
        hooks.exit_loop(state)
        assert state.loop_trackers == []

    def test_post_loop_outside_loop(self):
        state = ExecutionState()
        hooks.post_loop(state, LOOP_AT)
        assert state.loop_trackers == []

    def test_unguarded_loop_reported_on_schedule(self):
        state = ExecutionState(threshold=3)
        hooks.enter_loop(state, LOOP_AT)
        hooks.post_loop(state, LOOP_AT)
        hooks.post_loop(state, LOOP_AT)
        with pytest.raises(NonTerminationDetected) as exc_info:
            hooks.post_loop(state, LOOP_AT)
        assert exc_info.value.location == LOOP_AT

    def test_no_dispatch_while_forcing_tails(self):
        state = ExecutionState(threshold=3)
        hooks.enter_loop(state, LOOP_AT)
        state.forcing_tails = True
        for _ in range(6):
            hooks.post_loop(state, LOOP_AT)
        assert len(state.loop_trackers[-1].frames) == 7


class TestHookTable:
    def test_dispatches_by_name(self):
        state = ExecutionState()
        assert HookTable().call_method("eval_binary", [state, "+", 1, 2], vm=None) == 3

    def test_unknown_hook(self):
        with pytest.raises(VMRuntimeError):
            HookTable().call_method("nope", [ExecutionState()], vm=None)


class TestBuiltinTable:
    def _table(self, state=None) -> BuiltinTable:
        return BuiltinTable(Builtins.table_for("javascript"), state or ExecutionState())

    def test_strategies(self):
        table = self._table()
        assert table.strategy_of("is_null") is BuiltinStrategy.LIST_NULL_TEST
        assert table.strategy_of("display") is BuiltinStrategy.SIDE_EFFECT_SUPPRESSED
        assert table.strategy_of("pair") is BuiltinStrategy.DEFAULT_CONCRETIZE
        assert "head" in table.names()

    def test_default_concretizes_and_dummifies(self):
        result = self._table().invoke("abs", [Symbolic(-3, Identifier("x"))], vm=None)
        assert result.value == 3
        assert result.expr.has_opaque()

    def test_list_results_pass_through(self):
        result = self._table().invoke("pair", [Symbolic(1, Identifier("x")), None], vm=None)
        assert result == [1, None]

    def test_display_suppressed_returns_argument(self):
        assert self._table().invoke("display", [7], vm=None) == 7
        assert self._table().invoke("print", ["hi"], vm=None) is None

    def test_is_null_counts_streams(self):
        state = ExecutionState()
        table = self._table(state)
        assert table.invoke("is_null", [None], vm=None).value is True
        assert table.invoke("is_null", [_LAZY_PAIR], vm=None).value is False
        assert state.stream_counters["<main>"].count == 1

    def test_bad_arguments(self):
        with pytest.raises(VMRuntimeError):
            self._table().invoke("head", [5], vm=None)

    def test_unknown_builtin(self):
        with pytest.raises(VMRuntimeError):
            self._table().reference("nope")

    def test_reference_calls_back_through_table(self):
        state = ExecutionState()
        ref = self._table(state).call_method("reference", ["is_null"], vm=None)
        assert isinstance(ref, BuiltinFunction)
        ref.fn([_LAZY_PAIR], None)
        assert state.stream_counters["<main>"].count == 1
