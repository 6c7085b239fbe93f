"""VM — data types (pure data, no business logic)."""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict


# ── Errors ───────────────────────────────────────────────────────


class VMRuntimeError(RuntimeError):
    """The executing program faulted (bad operand, unknown name, uncaught throw)."""


class StepLimitExceeded(RuntimeError):
    """The VM's hard step budget ran out."""

    def __init__(self, steps: int):
        super().__init__(f"step budget of {steps} exhausted")
        self.steps = steps


# ── Data types ───────────────────────────────────────────────────


@dataclass(eq=False)
class Environment:
    """One lexical scope; closures keep a reference to their defining scope."""

    bindings: dict[str, Any] = field(default_factory=dict)
    parent: Environment | None = None

    def find(self, name: str) -> Environment | None:
        env: Environment | None = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env.parent
        return None

    def root(self) -> Environment:
        env = self
        while env.parent is not None:
            env = env.parent
        return env

    def define(self, name: str, value: Any):
        self.bindings[name] = value

    def assign(self, name: str, value: Any):
        """Rebind the nearest existing binding, or create a global one."""
        env = self.find(name) or self.root()
        env.bindings[name] = value


@dataclass(eq=False)
class FunctionValue:
    name: str
    label: str
    params: list[str]
    closure: Environment
    passed_as_argument: bool = False

    def as_argument(self) -> FunctionValue:
        if self.passed_as_argument:
            return self
        return dataclasses.replace(self, passed_as_argument=True)

    def __repr__(self) -> str:
        return f"<function {self.name}>"


@dataclass(frozen=True)
class BuiltinFunction:
    name: str
    fn: Callable[..., Any] = field(compare=False)

    def __repr__(self) -> str:
        return f"<builtin {self.name}>"


class HostObject(ABC):
    """An object supplied by the host whose methods the program may call."""

    @abstractmethod
    def call_method(self, name: str, args: list[Any], vm: Any) -> Any: ...


@dataclass
class StackFrame:
    function_name: str
    env: Environment
    registers: dict[str, Any] = field(default_factory=dict)
    return_label: str | None = None
    return_ip: int | None = None  # ip to resume at in caller block
    result_reg: str | None = None  # caller's register for return value


@dataclass
class VMState:
    globals: Environment = field(default_factory=Environment)
    call_stack: list[StackFrame] = field(default_factory=list)
    output: list[str] = field(default_factory=list)

    @property
    def current_frame(self) -> StackFrame:
        return self.call_stack[-1]


# ── StateUpdate schema ───────────────────────────────────────────


class IndexWrite(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    target: Any
    index: Any
    value: Any


class StackFramePush(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    function_name: str
    closure: Any = None
    callee: Any = None


class StateUpdate(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    register_writes: dict[str, Any] = {}
    var_writes: dict[str, Any] = {}
    var_assigns: dict[str, Any] = {}
    index_writes: list[IndexWrite] = []
    next_label: str | None = None
    call_push: StackFramePush | None = None
    call_pop: bool = False
    return_value: Any | None = None
    reasoning: str = ""


# ── ExecutionResult ──────────────────────────────────────────────────


@dataclass
class ExecutionResult:
    """Result of attempting to execute one instruction."""

    handled: bool
    update: StateUpdate = field(default_factory=lambda: StateUpdate(reasoning=""))

    @classmethod
    def not_handled(cls) -> ExecutionResult:
        return cls(handled=False)

    @classmethod
    def success(cls, update: StateUpdate) -> ExecutionResult:
        return cls(handled=True, update=update)
