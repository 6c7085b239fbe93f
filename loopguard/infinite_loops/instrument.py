"""IR → IR instrumentation pass.

Rewrites lowered programs so every observable variable read, write,
operator application, branch, call and loop boundary goes through the
hook table. The programs are concatenated in order into one instruction
stream that shares a single global scope; each must have been lowered
with its own namespace so labels do not collide.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..ir import NO_SOURCE_LOCATION, IRInstruction, Opcode, SourceLocation
from ..registry import _parse_func_ref
from .state import Location
from .. import constants

logger = logging.getLogger(__name__)

_CONCRETE_OPERAND_OPS: frozenset[Opcode] = frozenset({Opcode.STORE_INDEX, Opcode.NEW_ARRAY})
_LOADED_DATA_OPS: frozenset[Opcode] = frozenset(
    {Opcode.LOAD_INDEX, Opcode.LOAD_FIELD, Opcode.CALL_METHOD}
)


@dataclass(frozen=True)
class LoweredProgram:
    source_name: str
    instructions: list[IRInstruction]


@dataclass(frozen=True)
class InstrumentedProgram:
    instructions: list[IRInstruction]
    hooks_id: str = constants.HOOKS_ID
    state_id: str = constants.STATE_ID
    builtins_id: str = constants.BUILTINS_ID

    def __str__(self) -> str:
        return "\n".join(str(inst) for inst in self.instructions)


def _is_hidden(name: str) -> bool:
    return name.startswith(constants.TEMP_VAR_PREFIX)


def _location(source_name: str, loc: SourceLocation) -> Location | None:
    if loc.is_unknown():
        return None
    return Location(source_name, loc.start_line, loc.start_col + 1)


# ── scope analysis ───────────────────────────────────────────────


@dataclass
class ScopeTable:
    """Static resolution of variable names to scope-qualified keys.

    ``nesting[source][i]`` is the stack of function labels enclosing
    instruction ``i`` of program ``source``.
    """

    declared: dict[str, set[str]] = field(default_factory=dict)
    global_declared: set[str] = field(default_factory=set)
    nesting: dict[str, list[tuple[str, ...]]] = field(default_factory=dict)
    func_names: dict[str, str] = field(default_factory=dict)

    def resolve(self, name: str, stack: tuple[str, ...]) -> str | None:
        """Innermost enclosing function label that declares *name*, or None for globals."""
        for func in reversed(stack):
            if name in self.declared.get(func, ()):
                return func
        return None

    def key_for(self, name: str, stack: tuple[str, ...], opcode: Opcode = Opcode.LOAD_VAR) -> str:
        if opcode == Opcode.STORE_VAR:
            scope = stack[-1] if stack else None
        else:
            scope = self.resolve(name, stack)
        return f"{scope}:{name}" if scope else name

    def is_global_declared(self, name: str) -> bool:
        return name in self.global_declared


def _function_nesting(instructions: list[IRInstruction]) -> list[tuple[str, ...]]:
    """Enclosing function labels of every instruction.

    A function body is lowered as ``BRANCH end; LABEL func_*; ...; LABEL end``.
    """
    result: list[tuple[str, ...]] = []
    stack: list[tuple[str, str]] = []
    for i, inst in enumerate(instructions):
        if inst.opcode == Opcode.LABEL:
            if stack and inst.label == stack[-1][1]:
                stack.pop()
            elif inst.label.startswith(constants.FUNC_LABEL_PREFIX) and i > 0:
                prev = instructions[i - 1]
                if prev.opcode == Opcode.BRANCH and prev.label:
                    stack.append((inst.label, prev.label))
        result.append(tuple(func for func, _ in stack))
    return result


def build_scope_table(programs: list[LoweredProgram]) -> ScopeTable:
    table = ScopeTable()
    for program in programs:
        table.nesting[program.source_name] = _function_nesting(program.instructions)
        for inst in program.instructions:
            if inst.opcode == Opcode.CONST and inst.operands:
                ref = _parse_func_ref(inst.operands[0])
                if ref.matched:
                    table.func_names[ref.label] = ref.name

    for program in programs:
        nesting = table.nesting[program.source_name]
        for inst, stack in zip(program.instructions, nesting):
            if inst.opcode != Opcode.STORE_VAR:
                continue
            name = inst.operands[0]
            if stack:
                table.declared.setdefault(stack[-1], set()).add(name)
            else:
                table.global_declared.add(name)

    for program in programs:
        nesting = table.nesting[program.source_name]
        for inst, stack in zip(program.instructions, nesting):
            if inst.opcode == Opcode.ASSIGN_VAR and table.resolve(inst.operands[0], stack) is None:
                table.global_declared.add(inst.operands[0])
    return table


# ── rewriting ────────────────────────────────────────────────────


class _Rewriter:
    """Emits the instrumented instruction stream for one concatenation."""

    def __init__(self, scopes: ScopeTable, builtin_names: frozenset[str]):
        self.scopes = scopes
        self.builtin_names = builtin_names
        self.out: list[IRInstruction] = []
        self._counter = 0

    # ── emit helpers ─────────────────────────────────────────────

    def _fresh(self) -> str:
        reg = f"{constants.HOOK_REG_PREFIX}{self._counter}"
        self._counter += 1
        return reg

    def _emit(self, opcode: Opcode, result_reg: str | None = None, operands: list[Any] | None = None,
              label: str | None = None, source_location: SourceLocation = NO_SOURCE_LOCATION):
        self.out.append(
            IRInstruction(
                opcode=opcode,
                result_reg=result_reg,
                operands=list(operands or []),
                label=label,
                source_location=source_location,
            )
        )

    def _hook(self, name: str, *args: Any, result: bool = True) -> str | None:
        reg = self._fresh() if result else None
        self._emit(
            Opcode.CALL_METHOD,
            result_reg=reg,
            operands=[constants.HOOKS_REG, name, constants.STATE_REG, *args],
        )
        return reg

    def _load_injected(self):
        for reg, name in (
            (constants.HOOKS_REG, constants.HOOKS_ID),
            (constants.STATE_REG, constants.STATE_ID),
            (constants.BUILTINS_REG, constants.BUILTINS_ID),
        ):
            self._emit(Opcode.LOAD_VAR, result_reg=reg, operands=[name])

    def _concrete(self, reg: Any, const_regs: set[str]) -> Any:
        if not isinstance(reg, str) or not reg.startswith("%") or reg in const_regs:
            return reg
        return self._hook("concretize", reg)

    def _is_builtin_ref(self, name: str, stack: tuple[str, ...]) -> bool:
        return (
            name in self.builtin_names
            and self.scopes.resolve(name, stack) is None
            and not self.scopes.is_global_declared(name)
        )

    # ── driver ───────────────────────────────────────────────────

    def prologue(self):
        self._emit(Opcode.LABEL, label=constants.CFG_ENTRY_LABEL)
        self._load_injected()

    def rewrite(self, program: LoweredProgram):
        source = program.source_name
        insts = program.instructions
        nesting = self.scopes.nesting[source]
        loop_locations = {
            inst.label: _location(source, inst.source_location)
            for inst in insts
            if inst.opcode == Opcode.BRANCH
            and inst.label
            and inst.label.startswith(constants.LOOP_COND_PREFIX)
        }
        const_regs: set[str] = set()

        i = 0
        while i < len(insts):
            inst, stack = insts[i], nesting[i]
            loc = _location(source, inst.source_location)
            op = inst.opcode

            if op == Opcode.CONST:
                const_regs.add(inst.result_reg)
                self.out.append(inst)

            elif op == Opcode.LABEL:
                i = self._rewrite_label(insts, i, stack, loop_locations)
                continue

            elif op == Opcode.LOAD_VAR:
                name = inst.operands[0]
                if _is_hidden(name):
                    self.out.append(inst)
                elif self._is_builtin_ref(name, stack):
                    self._emit(
                        Opcode.CALL_METHOD,
                        result_reg=inst.result_reg,
                        operands=[constants.BUILTINS_REG, constants.BUILTIN_REFERENCE_METHOD, name],
                        source_location=inst.source_location,
                    )
                else:
                    raw = self._fresh()
                    self._emit(Opcode.LOAD_VAR, result_reg=raw, operands=[name],
                               source_location=inst.source_location)
                    key = self.scopes.key_for(name, stack)
                    self._emit(
                        Opcode.CALL_METHOD,
                        result_reg=inst.result_reg,
                        operands=[constants.HOOKS_REG, "hybridize", constants.STATE_REG, key, raw],
                    )

            elif op in (Opcode.STORE_VAR, Opcode.ASSIGN_VAR):
                name, val = inst.operands[0], inst.operands[1]
                if _is_hidden(name):
                    self.out.append(inst)
                else:
                    key = self.scopes.key_for(name, stack, op)
                    saved = self._hook("save_var", key, val, val in const_regs)
                    self._emit(op, operands=[name, saved], source_location=inst.source_location)

            elif op == Opcode.BINOP:
                oper, lhs, rhs = inst.operands
                if oper.startswith("%"):
                    # Plain strings starting with % are read as registers
                    oper_reg = self._fresh()
                    self._emit(Opcode.CONST, result_reg=oper_reg, operands=[repr(oper)])
                    oper = oper_reg
                self._emit(
                    Opcode.CALL_METHOD,
                    result_reg=inst.result_reg,
                    operands=[constants.HOOKS_REG, "eval_binary", constants.STATE_REG, oper, lhs, rhs],
                    source_location=inst.source_location,
                )

            elif op == Opcode.UNOP:
                oper, operand = inst.operands
                self._emit(
                    Opcode.CALL_METHOD,
                    result_reg=inst.result_reg,
                    operands=[constants.HOOKS_REG, "eval_unary", constants.STATE_REG, oper, operand],
                    source_location=inst.source_location,
                )

            elif op == Opcode.BRANCH_IF:
                cond = inst.operands[0]
                if cond in const_regs:
                    self.out.append(inst)
                else:
                    truth = self._hook("save_bool", cond)
                    self._emit(Opcode.BRANCH_IF, operands=[truth], label=inst.label,
                               source_location=inst.source_location)

            elif op == Opcode.BRANCH:
                if inst.label and inst.label.startswith(constants.LOOP_COND_PREFIX):
                    self._hook("post_loop", loc, result=False)
                self.out.append(inst)

            elif op == Opcode.RETURN:
                if stack:
                    if loc is not None:
                        self._hook("track_location", loc, result=False)
                    self._hook("return_function", result=False)
                self.out.append(inst)

            elif op == Opcode.CALL_FUNCTION:
                name, args = inst.operands[0], inst.operands[1:]
                if loc is not None:
                    self._hook("track_location", loc, result=False)
                if self._is_builtin_ref(name, stack):
                    self._emit(
                        Opcode.CALL_METHOD,
                        result_reg=inst.result_reg,
                        operands=[constants.BUILTINS_REG, name, *args],
                        source_location=inst.source_location,
                    )
                else:
                    wrapped = [self._hook("wrap_arg", a) for a in args]
                    self._emit(Opcode.CALL_FUNCTION, result_reg=inst.result_reg,
                               operands=[name, *wrapped], source_location=inst.source_location)

            elif op == Opcode.CALL_UNKNOWN:
                if loc is not None:
                    self._hook("track_location", loc, result=False)
                target = self._concrete(inst.operands[0], const_regs)
                wrapped = [self._hook("wrap_arg", a) for a in inst.operands[1:]]
                self._emit(Opcode.CALL_UNKNOWN, result_reg=inst.result_reg,
                           operands=[target, *wrapped], source_location=inst.source_location)

            elif op in _LOADED_DATA_OPS and inst.result_reg:
                # Elements, fields and method results are data the analysis cannot follow
                operands = [self._concrete(a, const_regs) for a in inst.operands]
                raw = self._fresh()
                self._emit(op, result_reg=raw, operands=operands,
                           source_location=inst.source_location)
                self._emit(
                    Opcode.CALL_METHOD,
                    result_reg=inst.result_reg,
                    operands=[constants.HOOKS_REG, "make_dummy", constants.STATE_REG, raw],
                )

            elif op in _CONCRETE_OPERAND_OPS or op in _LOADED_DATA_OPS:
                # Containers and method receivers only ever hold concrete values
                operands = [self._concrete(a, const_regs) for a in inst.operands]
                self._emit(op, result_reg=inst.result_reg, operands=operands,
                           source_location=inst.source_location)

            else:
                self.out.append(inst)
            i += 1

    def _rewrite_label(self, insts: list[IRInstruction], i: int, stack: tuple[str, ...],
                       loop_locations: dict[str, Location | None]) -> int:
        """Rewrite the label at *i* and return the index of the next unconsumed instruction."""
        label = insts[i].label
        if label.startswith(constants.LOOP_COND_PREFIX):
            self._hook("enter_loop", loop_locations.get(label), result=False)
            self.out.append(insts[i])
            return i + 1

        self.out.append(insts[i])
        if label.startswith(constants.LOOP_END_PREFIX):
            self._hook("exit_loop", result=False)
            return i + 1
        if not (label.startswith(constants.FUNC_LABEL_PREFIX) and stack and stack[-1] == label):
            return i + 1

        self._load_injected()
        j = i + 1
        params: list[tuple[str, str]] = []
        while (
            j + 1 < len(insts)
            and insts[j].opcode == Opcode.SYMBOLIC
            and str(insts[j].operands[0]).startswith(constants.PARAM_PREFIX)
            and insts[j + 1].opcode == Opcode.STORE_VAR
            and insts[j + 1].operands[1] == insts[j].result_reg
        ):
            self.out.extend(insts[j : j + 2])
            params.append((insts[j + 1].operands[0], insts[j].result_reg))
            j += 2

        keys = tuple(self.scopes.key_for(name, stack, Opcode.STORE_VAR) for name, _ in params)
        self._hook(
            "pre_function",
            label,
            self.scopes.func_names.get(label, label),
            constants.CALLEE_REG,
            keys,
            *(reg for _, reg in params),
            result=False,
        )
        return j


def instrument(
    programs: list[LoweredProgram],
    builtin_names: frozenset[str] = frozenset(),
) -> InstrumentedProgram:
    """Concatenate *programs* and route their observable operations through the hooks.

    Args:
        programs: Lowered programs in execution order.
        builtin_names: Names the builtin table resolves; a reference to one of
            these that no program declares becomes a builtin-table lookup.
    """
    scopes = build_scope_table(programs)
    rewriter = _Rewriter(scopes, builtin_names)
    rewriter.prologue()
    for program in programs:
        rewriter.rewrite(program)
    logger.debug(
        "Instrumented %d programs: %d → %d instructions",
        len(programs),
        sum(len(p.instructions) for p in programs),
        len(rewriter.out),
    )
    return InstrumentedProgram(instructions=rewriter.out)
