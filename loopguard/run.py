"""Orchestrator — VirtualMachine step loop and the run() entry point."""

from __future__ import annotations

import logging
import time
from typing import Any

from .builtins import Builtins
from .cfg import CFG, build_cfg
from .executor import LocalExecutor
from .frontend import get_frontend
from .ir import IRInstruction, Opcode
from .parser import Parser, TreeSitterParserFactory
from .registry import FunctionRegistry, build_registry
from .run_types import ExecutionStats, PipelineStats, VMConfig
from .vm import _brief, apply_update
from .vm_types import (
    BuiltinFunction,
    Environment,
    FunctionValue,
    StackFrame,
    StateUpdate,
    StepLimitExceeded,
    VMRuntimeError,
    VMState,
)
from . import constants

logger = logging.getLogger(__name__)

__all__ = [
    "VirtualMachine",
    "VMRuntimeError",
    "StepLimitExceeded",
    "execute_cfg",
    "run",
]


def _find_entry_point(cfg: CFG, entry_point: str) -> str:
    """Resolve the entry point label in the CFG."""
    entry = entry_point or cfg.entry
    if entry in cfg.blocks:
        return entry
    raise ValueError(
        f"Entry point '{entry}' not found in CFG. "
        f"Available: {list(cfg.blocks.keys())}"
    )


def _log_update(step: int, label: str, ip: int, instruction: IRInstruction, update: StateUpdate):
    """Print verbose step-by-step execution info."""
    print(f"[step {step}] {label}:{ip}  {instruction}")
    print(f"  {update.reasoning}")
    for reg, val in update.register_writes.items():
        print(f"    {reg} = {_brief(val)}")
    for var, val in {**update.var_writes, **update.var_assigns}.items():
        print(f"    ${var} = {_brief(val)}")
    if update.next_label:
        print(f"    → {update.next_label}")


class VirtualMachine:
    """Executes a CFG with lexical closures and a hard step budget.

    ``injected`` objects are bound in the global scope before execution; they
    are how a host hands the running program objects such as hook tables.
    The machine is re-entrant through :meth:`apply`, which builtins use to
    call back into program functions.
    """

    def __init__(
        self,
        cfg: CFG,
        registry: FunctionRegistry,
        config: VMConfig = VMConfig(),
        injected: dict[str, Any] | None = None,
    ):
        self.cfg = cfg
        self.registry = registry
        self.config = config
        self.state = VMState()
        self.builtins: dict[str, Any] = (
            Builtins.table_for(config.source_language) if config.builtins_enabled else {}
        )
        for name, obj in (injected or {}).items():
            self.state.globals.define(name, obj)
        self.steps = 0
        self.max_depth = 0

    # ── public API ───────────────────────────────────────────────

    def run(self, entry_point: str = "") -> ExecutionStats:
        """Run the program from *entry_point* until it falls off the end."""
        entry = _find_entry_point(self.cfg, entry_point)
        self.state.call_stack.append(
            StackFrame(function_name=constants.MAIN_FRAME_NAME, env=self.state.globals)
        )
        self._execute(entry, 0, base_depth=0)
        return ExecutionStats(
            steps=self.steps,
            max_call_depth=self.max_depth,
            output_lines=len(self.state.output),
        )

    def apply(self, fn: Any, args: list[Any]) -> Any:
        """Call *fn* with *args* synchronously and return its result."""
        if isinstance(fn, BuiltinFunction):
            return fn.fn(args, self)
        if not isinstance(fn, FunctionValue):
            raise VMRuntimeError(f"{_brief(fn)} is not a function")
        base_depth = len(self.state.call_stack)
        env = Environment(parent=fn.closure)
        for i, param in enumerate(fn.params):
            env.define(param, args[i] if i < len(args) else None)
        self.state.call_stack.append(
            StackFrame(
                function_name=fn.name,
                env=env,
                registers={constants.CALLEE_REG: fn},
            )
        )
        return self._execute(fn.label, 0, base_depth=base_depth)

    def emit_output(self, text: str):
        self.state.output.append(text)
        if self.config.echo_output:
            print(text)

    # ── step loop ────────────────────────────────────────────────

    def _tick(self):
        self.steps += 1
        if self.steps > self.config.max_steps:
            raise StepLimitExceeded(self.config.max_steps)

    def _execute(self, label: str, ip: int, base_depth: int) -> Any:
        """Run until the stack unwinds to *base_depth*; return the last return value."""
        vm = self.state
        while True:
            block = self.cfg.blocks[label]

            if ip >= len(block.instructions):
                if block.successors:
                    label = block.successors[0]
                    ip = 0
                    continue
                return None

            instruction = block.instructions[ip]
            if instruction.opcode == Opcode.LABEL:
                ip += 1
                continue

            self._tick()
            result = LocalExecutor.execute(
                instruction,
                vm,
                registry=self.registry,
                machine=self,
                current_label=label,
                ip=ip,
            )
            if not result.handled:
                raise VMRuntimeError(f"cannot execute {instruction}")
            update = result.update

            if self.config.verbose:
                _log_update(self.steps, label, ip, instruction, update)

            if instruction.opcode == Opcode.RETURN:
                return_frame = vm.current_frame
                apply_update(vm, update)
                if len(vm.call_stack) <= base_depth:
                    return update.return_value
                if return_frame.result_reg:
                    vm.current_frame.registers[return_frame.result_reg] = (
                        update.return_value
                    )
                label, ip = return_frame.return_label, return_frame.return_ip
                continue

            if update.call_push is not None and update.next_label is not None:
                apply_update(vm, update)
                new_frame = vm.current_frame
                new_frame.return_label = label
                new_frame.return_ip = ip + 1
                new_frame.result_reg = instruction.result_reg
                self.max_depth = max(self.max_depth, len(vm.call_stack))
                label, ip = update.next_label, 0
                continue

            apply_update(vm, update)
            if update.next_label and update.next_label in self.cfg.blocks:
                label, ip = update.next_label, 0
            else:
                ip += 1


def execute_cfg(
    cfg: CFG,
    entry_point: str,
    registry: FunctionRegistry,
    config: VMConfig = VMConfig(),
) -> tuple[VMState, ExecutionStats]:
    """Execute a pre-built CFG from the given entry point.

    Args:
        cfg: Pre-built control flow graph.
        entry_point: Label of the block to start execution from.
        registry: Pre-built function registry.
        config: Execution configuration (step budget, verbosity, language).

    Returns:
        Tuple of (final VMState, ExecutionStats).
    """
    machine = VirtualMachine(cfg, registry, config)
    stats = machine.run(entry_point)
    if config.verbose:
        print(f"\n({stats.steps} steps)")
    return machine.state, stats


def run(
    source: str,
    language: str = "python",
    entry_point: str = "",
    max_steps: int = 1_000_000,
    verbose: bool = False,
    echo_output: bool = False,
) -> VMState:
    """End-to-end: parse → lower → CFG → execute.

    Args:
        source: Raw source code string.
        language: Source language name.
        entry_point: Entry point label.
        max_steps: Maximum interpretation steps.
        verbose: Print IR, CFG, and step-by-step info.
        echo_output: Print program output as it is produced.
    """
    pipeline_start = time.perf_counter()
    stats = PipelineStats(
        source_bytes=len(source.encode("utf-8")),
        source_lines=source.count("\n")
        + (1 if source and not source.endswith("\n") else 0),
        language=language,
    )

    # 1. Parse + Lower
    t0 = time.perf_counter()
    tree = Parser(TreeSitterParserFactory()).parse_strict(source, language)
    t1 = time.perf_counter()
    stats.parse_time = t1 - t0
    frontend = get_frontend(language)
    instructions = frontend.lower(tree, source.encode("utf-8"))
    stats.lower_time = time.perf_counter() - t1
    stats.ir_instruction_count = len(instructions)
    logger.info(
        "Frontend produced %d IR instructions in %.1fms",
        stats.ir_instruction_count,
        (stats.parse_time + stats.lower_time) * 1000,
    )

    if verbose:
        print("═══ IR ═══")
        for inst in instructions:
            print(f"  {inst}")
        print()

    # 2. Build CFG
    t0 = time.perf_counter()
    cfg = build_cfg(instructions)
    stats.cfg_time = time.perf_counter() - t0
    stats.cfg_block_count = len(cfg.blocks)

    if verbose:
        print("═══ CFG ═══")
        print(cfg)

    # 3. Build function registry
    t0 = time.perf_counter()
    registry = build_registry(cfg)
    stats.registry_time = time.perf_counter() - t0
    stats.registry_functions = len(registry.func_params)

    # 4. Execute
    vm_config = VMConfig(
        max_steps=max_steps,
        verbose=verbose,
        source_language=language,
        echo_output=echo_output,
    )
    exec_start = time.perf_counter()
    vm, exec_stats = execute_cfg(cfg, entry_point, registry, vm_config)
    stats.execution_time = time.perf_counter() - exec_start
    stats.execution_steps = exec_stats.steps
    stats.max_call_depth = exec_stats.max_call_depth
    stats.total_time = time.perf_counter() - pipeline_start

    if verbose:
        print()
        print(stats.report())

    return vm


def format_output(vm: VMState) -> str:
    """Join the lines a program printed."""
    return "\n".join(vm.output)
