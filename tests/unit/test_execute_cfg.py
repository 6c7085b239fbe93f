"""Tests for execute_cfg and VirtualMachine — running hand-built CFGs directly."""

import pytest

from loopguard.cfg import build_cfg
from loopguard.ir import IRInstruction, Opcode
from loopguard.registry import FunctionRegistry, build_registry
from loopguard.run import VirtualMachine, execute_cfg
from loopguard.run_types import ExecutionStats, VMConfig
from loopguard.vm_types import HostObject, StepLimitExceeded, VMRuntimeError


def _make_instructions(*specs):
    """Helper: build IRInstruction list from (opcode, kwargs) tuples."""
    return [IRInstruction(opcode=op, **kw) for op, kw in specs]


def _build_simple_cfg(instructions):
    """Build a CFG + registry from instructions."""
    cfg = build_cfg(instructions)
    registry = build_registry(cfg)
    return cfg, registry


class _Recorder(HostObject):
    def __init__(self):
        self.calls = []

    def call_method(self, name, args, vm):
        self.calls.append((name, args))
        return len(self.calls)


class TestExecuteCfgBasic:
    def test_const_and_store_sets_variable(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["42"]}),
            (Opcode.STORE_VAR, {"operands": ["x", "%0"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        vm, stats = execute_cfg(cfg, "entry", registry)

        assert vm.globals.bindings["x"] == 42

    def test_returns_execution_stats(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        vm, stats = execute_cfg(cfg, "entry", registry)

        assert isinstance(stats, ExecutionStats)
        assert stats.steps == 1

    def test_max_steps_raises(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.STORE_VAR, {"operands": ["x", "%0"]}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["2"]}),
            (Opcode.STORE_VAR, {"operands": ["y", "%1"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        with pytest.raises(StepLimitExceeded) as exc_info:
            execute_cfg(cfg, "entry", registry, VMConfig(max_steps=3))
        assert exc_info.value.steps == 3

    def test_default_config_uses_sensible_defaults(self):
        config = VMConfig()
        assert config.max_steps == 1_000_000
        assert config.builtins_enabled is True
        assert config.verbose is False

    def test_config_is_frozen(self):
        config = VMConfig()
        with pytest.raises(AttributeError):
            config.max_steps = 5

    def test_invalid_entry_point_raises(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        with pytest.raises(ValueError, match="not found in CFG"):
            execute_cfg(cfg, "nonexistent_label", registry)

    def test_empty_registry_works_for_simple_programs(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["7"]}),
            (Opcode.STORE_VAR, {"operands": ["v", "%0"]}),
        )
        cfg = build_cfg(instructions)

        vm, stats = execute_cfg(cfg, "entry", FunctionRegistry())

        assert vm.globals.bindings["v"] == 7


class TestControlFlow:
    def test_unconditional_branch_jumps_to_target(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.BRANCH, {"label": "target"}),
            (Opcode.LABEL, {"label": "skipped"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.STORE_VAR, {"operands": ["result", "%0"]}),
            (Opcode.LABEL, {"label": "target"}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["42"]}),
            (Opcode.STORE_VAR, {"operands": ["other", "%1"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        vm, _ = execute_cfg(cfg, "entry", registry)

        assert "result" not in vm.globals.bindings
        assert vm.globals.bindings["other"] == 42

    def test_conditional_branch_takes_true_path(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["True"]}),
            (Opcode.BRANCH_IF, {"operands": ["%0"], "label": "then_block, else_block"}),
            (Opcode.LABEL, {"label": "then_block"}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["10"]}),
            (Opcode.STORE_VAR, {"operands": ["result", "%1"]}),
            (Opcode.BRANCH, {"label": "done"}),
            (Opcode.LABEL, {"label": "else_block"}),
            (Opcode.CONST, {"result_reg": "%2", "operands": ["20"]}),
            (Opcode.STORE_VAR, {"operands": ["result", "%2"]}),
            (Opcode.LABEL, {"label": "done"}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        vm, _ = execute_cfg(cfg, "entry", registry)

        assert vm.globals.bindings["result"] == 10

    def test_binop(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["5"]}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["3"]}),
            (Opcode.BINOP, {"result_reg": "%2", "operands": ["+", "%0", "%1"]}),
            (Opcode.STORE_VAR, {"operands": ["sum", "%2"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        vm, _ = execute_cfg(cfg, "entry", registry)

        assert vm.globals.bindings["sum"] == 8

    def test_uncomputable_binop_is_runtime_error(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["0"]}),
            (Opcode.BINOP, {"result_reg": "%2", "operands": ["/", "%0", "%1"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        with pytest.raises(VMRuntimeError):
            execute_cfg(cfg, "entry", registry)

    def test_verbose_mode_produces_output(self, capsys):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        execute_cfg(cfg, "entry", registry, VMConfig(verbose=True))

        assert "step" in capsys.readouterr().out.lower()


class TestHostObjects:
    def test_injected_object_receives_method_calls(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.LOAD_VAR, {"result_reg": "%0", "operands": ["host"]}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["5"]}),
            (Opcode.CALL_METHOD, {"result_reg": "%2", "operands": ["%0", "ping", "%1"]}),
            (Opcode.STORE_VAR, {"operands": ["answer", "%2"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)
        recorder = _Recorder()

        machine = VirtualMachine(cfg, registry, injected={"host": recorder})
        machine.run()

        assert recorder.calls == [("ping", [5])]
        assert machine.state.globals.bindings["answer"] == 1

    def test_disabled_builtins_are_undefined(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.CALL_FUNCTION, {"result_reg": "%1", "operands": ["abs", "%0"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        machine = VirtualMachine(cfg, registry, VMConfig(builtins_enabled=False))
        with pytest.raises(VMRuntimeError, match="not defined"):
            machine.run()

    def test_method_on_plain_value_is_runtime_error(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "entry"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.CALL_METHOD, {"result_reg": "%1", "operands": ["%0", "ping"]}),
        )
        cfg, registry = _build_simple_cfg(instructions)

        with pytest.raises(VMRuntimeError, match="no method"):
            execute_cfg(cfg, "entry", registry)
