"""Per-opcode instruction handlers for the host VM."""

from __future__ import annotations

import logging
from typing import Any

from .ir import IRInstruction, Opcode
from .registry import FunctionRegistry, _parse_func_ref
from .vm import Operators, _brief, _parse_const, _resolve_reg
from .vm_types import (
    BuiltinFunction,
    ExecutionResult,
    FunctionValue,
    HostObject,
    IndexWrite,
    StackFramePush,
    StateUpdate,
    VMRuntimeError,
    VMState,
)
from . import constants

logger = logging.getLogger(__name__)


def _as_index(val: Any) -> int:
    if isinstance(val, bool):
        raise VMRuntimeError(f"invalid index {_brief(val)}")
    if isinstance(val, float) and val.is_integer():
        return int(val)
    if not isinstance(val, int):
        raise VMRuntimeError(f"invalid index {_brief(val)}")
    return val


def _handle_const(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    raw = inst.operands[0] if inst.operands else "None"
    fr = _parse_func_ref(raw)
    if fr.matched:
        registry: FunctionRegistry = kwargs["registry"]
        val: Any = FunctionValue(
            name=fr.name,
            label=fr.label,
            params=registry.params_of(fr.label),
            closure=vm.current_frame.env,
        )
    else:
        val = _parse_const(raw)
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: val},
            reasoning=f"const {raw!r} → {inst.result_reg}",
        )
    )


def _lookup(name: str, vm: VMState, machine) -> Any:
    env = vm.current_frame.env.find(name)
    if env is not None:
        return env.bindings[name]
    if name in machine.builtins:
        return BuiltinFunction(name=name, fn=machine.builtins[name])
    raise VMRuntimeError(f"name '{name}' is not defined")


def _handle_load_var(
    inst: IRInstruction, vm: VMState, machine, **kwargs: Any
) -> ExecutionResult:
    name = inst.operands[0]
    val = _lookup(name, vm, machine)
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: val},
            reasoning=f"load {name} = {_brief(val)} → {inst.result_reg}",
        )
    )


def _handle_store_var(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    name = inst.operands[0]
    val = _resolve_reg(vm, inst.operands[1])
    return ExecutionResult.success(
        StateUpdate(
            var_writes={name: val},
            reasoning=f"store {name} = {_brief(val)}",
        )
    )


def _handle_assign_var(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    name = inst.operands[0]
    val = _resolve_reg(vm, inst.operands[1])
    return ExecutionResult.success(
        StateUpdate(
            var_assigns={name: val},
            reasoning=f"assign {name} = {_brief(val)}",
        )
    )


def _handle_branch(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    return ExecutionResult.success(
        StateUpdate(
            next_label=inst.label,
            reasoning=f"branch → {inst.label}",
        )
    )


def _handle_branch_if(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    cond_val = _resolve_reg(vm, inst.operands[0])
    true_label, false_label = inst.branch_targets()
    chosen = true_label if cond_val else false_label
    return ExecutionResult.success(
        StateUpdate(
            next_label=chosen,
            reasoning=f"branch_if {_brief(cond_val)} → {chosen}",
        )
    )


def _handle_symbolic(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    hint = str(inst.operands[0]) if inst.operands else ""
    if hint.startswith(constants.PARAM_PREFIX):
        # Parameters are bound by the caller before the body runs
        param_name = hint[len(constants.PARAM_PREFIX) :]
        val = vm.current_frame.env.bindings.get(param_name)
        return ExecutionResult.success(
            StateUpdate(
                register_writes={inst.result_reg: val},
                reasoning=f"param {param_name} = {_brief(val)} (bound by caller)",
            )
        )
    what = hint[len(constants.UNSUPPORTED_PREFIX) :] if hint.startswith(
        constants.UNSUPPORTED_PREFIX
    ) else hint
    raise VMRuntimeError(f"unsupported construct: {what} at {inst.source_location}")


def _handle_new_array(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    size = _resolve_reg(vm, inst.operands[1]) if len(inst.operands) > 1 else 0
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: [None] * _as_index(size)},
            reasoning=f"new array[{size}] → {inst.result_reg}",
        )
    )


def _handle_load_field(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    obj_val = _resolve_reg(vm, inst.operands[0])
    field_name = inst.operands[1]
    if field_name == "length" and isinstance(obj_val, (list, str)):
        return ExecutionResult.success(
            StateUpdate(
                register_writes={inst.result_reg: len(obj_val)},
                reasoning=f"load {_brief(obj_val)}.length",
            )
        )
    raise VMRuntimeError(f"cannot read field '{field_name}' of {_brief(obj_val)}")


def _handle_store_index(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    arr_val = _resolve_reg(vm, inst.operands[0])
    idx_val = _resolve_reg(vm, inst.operands[1])
    val = _resolve_reg(vm, inst.operands[2])
    if not isinstance(arr_val, list):
        raise VMRuntimeError(f"cannot assign index of {_brief(arr_val)}")
    idx = _as_index(idx_val)
    if idx < 0:
        raise VMRuntimeError(f"negative index {idx}")
    return ExecutionResult.success(
        StateUpdate(
            index_writes=[IndexWrite(target=arr_val, index=idx, value=val)],
            reasoning=f"store [{idx}] = {_brief(val)}",
        )
    )


def _handle_load_index(
    inst: IRInstruction, vm: VMState, **kwargs: Any
) -> ExecutionResult:
    arr_val = _resolve_reg(vm, inst.operands[0])
    idx_val = _resolve_reg(vm, inst.operands[1])
    if not isinstance(arr_val, (list, tuple, str)):
        raise VMRuntimeError(f"cannot index {_brief(arr_val)}")
    idx = _as_index(idx_val)
    try:
        val = arr_val[idx]
    except IndexError as exc:
        raise VMRuntimeError(f"index {idx} out of range") from exc
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: val},
            reasoning=f"load [{idx}] = {_brief(val)}",
        )
    )


def _handle_return(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    val = _resolve_reg(vm, inst.operands[0]) if inst.operands else None
    return ExecutionResult.success(
        StateUpdate(
            return_value=val,
            call_pop=True,
            reasoning=f"return {_brief(val)}",
        )
    )


def _handle_throw(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    val = _resolve_reg(vm, inst.operands[0]) if inst.operands else None
    raise VMRuntimeError(f"uncaught exception: {_brief(val)}")


def _handle_binop(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    oper = inst.operands[0]
    lhs = _resolve_reg(vm, inst.operands[1])
    rhs = _resolve_reg(vm, inst.operands[2])
    result = Operators.eval_binop(oper, lhs, rhs)
    if result is Operators.UNCOMPUTABLE:
        raise VMRuntimeError(f"cannot evaluate {_brief(lhs)} {oper} {_brief(rhs)}")
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: result},
            reasoning=f"binop {_brief(lhs)} {oper} {_brief(rhs)} = {_brief(result)}",
        )
    )


def _handle_unop(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    oper = inst.operands[0]
    operand = _resolve_reg(vm, inst.operands[1])
    result = Operators.eval_unop(oper, operand)
    if result is Operators.UNCOMPUTABLE:
        raise VMRuntimeError(f"cannot evaluate {oper}{_brief(operand)}")
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: result},
            reasoning=f"unop {oper}{_brief(operand)} = {_brief(result)}",
        )
    )


# ── Calls ────────────────────────────────────────────────────────


def _call_value(
    func_val: Any,
    args: list[Any],
    inst: IRInstruction,
    vm: VMState,
    machine,
) -> ExecutionResult:
    """Dispatch a call to a user-defined function or invoke a builtin."""
    if isinstance(func_val, BuiltinFunction):
        result = func_val.fn(args, machine)
        if result is Operators.UNCOMPUTABLE:
            raise VMRuntimeError(
                f"bad arguments to {func_val.name}"
                f"({', '.join(_brief(a) for a in args)})"
            )
        return ExecutionResult.success(
            StateUpdate(
                register_writes={inst.result_reg: result},
                reasoning=f"builtin {func_val.name} = {_brief(result)}",
            )
        )

    if not isinstance(func_val, FunctionValue):
        raise VMRuntimeError(f"{_brief(func_val)} is not a function")
    if len(vm.call_stack) >= machine.config.max_call_depth:
        raise VMRuntimeError("maximum call stack size exceeded")

    new_vars = {
        param: args[i] if i < len(args) else None
        for i, param in enumerate(func_val.params)
    }
    return ExecutionResult.success(
        StateUpdate(
            call_push=StackFramePush(
                function_name=func_val.name,
                closure=func_val.closure,
                callee=func_val,
            ),
            next_label=func_val.label,
            reasoning=(
                f"call {func_val.name}"
                f"({', '.join(_brief(a) for a in args)}),"
                f" dispatch to {func_val.label}"
            ),
            var_writes=new_vars,
        )
    )


def _handle_call_function(
    inst: IRInstruction, vm: VMState, machine, **kwargs: Any
) -> ExecutionResult:
    func_name = inst.operands[0]
    args = [_resolve_reg(vm, a) for a in inst.operands[1:]]
    return _call_value(_lookup(func_name, vm, machine), args, inst, vm, machine)


def _handle_call_unknown(
    inst: IRInstruction, vm: VMState, machine, **kwargs: Any
) -> ExecutionResult:
    target = _resolve_reg(vm, inst.operands[0])
    args = [_resolve_reg(vm, a) for a in inst.operands[1:]]
    return _call_value(target, args, inst, vm, machine)


# List methods shared by both student languages
_LIST_METHODS: dict[str, Any] = {
    "append": lambda xs, args: xs.append(*args),
    "push": lambda xs, args: xs.append(*args),
    "pop": lambda xs, args: xs.pop(*args),
}


def _handle_call_method(
    inst: IRInstruction, vm: VMState, machine, **kwargs: Any
) -> ExecutionResult:
    obj_val = _resolve_reg(vm, inst.operands[0])
    method_name = inst.operands[1]
    args = [_resolve_reg(vm, a) for a in inst.operands[2:]]

    if isinstance(obj_val, HostObject):
        result = obj_val.call_method(method_name, args, machine)
    elif isinstance(obj_val, list) and method_name in _LIST_METHODS:
        try:
            result = _LIST_METHODS[method_name](obj_val, args)
        except (TypeError, IndexError) as exc:
            raise VMRuntimeError(f"{method_name} failed: {exc}") from exc
    else:
        raise VMRuntimeError(f"{_brief(obj_val)} has no method '{method_name}'")
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: result} if inst.result_reg else {},
            reasoning=f"call .{method_name} = {_brief(result)}",
        )
    )


class LocalExecutor:
    """Dispatches IR instructions to handler functions."""

    DISPATCH: dict[Opcode, Any] = {
        Opcode.CONST: _handle_const,
        Opcode.LOAD_VAR: _handle_load_var,
        Opcode.STORE_VAR: _handle_store_var,
        Opcode.ASSIGN_VAR: _handle_assign_var,
        Opcode.BRANCH: _handle_branch,
        Opcode.BRANCH_IF: _handle_branch_if,
        Opcode.SYMBOLIC: _handle_symbolic,
        Opcode.NEW_ARRAY: _handle_new_array,
        Opcode.LOAD_FIELD: _handle_load_field,
        Opcode.STORE_INDEX: _handle_store_index,
        Opcode.LOAD_INDEX: _handle_load_index,
        Opcode.RETURN: _handle_return,
        Opcode.THROW: _handle_throw,
        Opcode.BINOP: _handle_binop,
        Opcode.UNOP: _handle_unop,
        Opcode.CALL_FUNCTION: _handle_call_function,
        Opcode.CALL_METHOD: _handle_call_method,
        Opcode.CALL_UNKNOWN: _handle_call_unknown,
    }

    @classmethod
    def execute(
        cls,
        inst: IRInstruction,
        vm: VMState,
        registry: FunctionRegistry,
        machine,
        current_label: str = "",
        ip: int = 0,
    ) -> ExecutionResult:
        handler = cls.DISPATCH.get(inst.opcode)
        if not handler:
            return ExecutionResult.not_handled()
        return handler(
            inst=inst,
            vm=vm,
            registry=registry,
            machine=machine,
            current_label=current_label,
            ip=ip,
        )
