"""Builtin table injected into instrumented programs.

Each builtin is resolved once, when the table is built, to a strategy:
ordinary builtins see concretized arguments and return dummified results,
the list null test feeds the stream heuristic, and output builtins are
replaced so analysis runs produce no output.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..vm import Operators, _brief
from ..vm_types import BuiltinFunction, HostObject, VMRuntimeError
from .hooks import no_op
from .state import ExecutionState
from .streams import null_test
from .symbolic import concretize, make_dummy
from .. import constants

logger = logging.getLogger(__name__)


class BuiltinStrategy(Enum):
    DEFAULT_CONCRETIZE = "default_concretize"
    LIST_NULL_TEST = "list_null_test"
    SIDE_EFFECT_SUPPRESSED = "side_effect_suppressed"


@dataclass(frozen=True)
class BuiltinEntry:
    name: str
    fn: Callable[..., Any]
    strategy: BuiltinStrategy
    # Suppressed builtins that hand their argument back, like display
    returns_argument: bool = False


class BuiltinTable(HostObject):
    """Concretizing front for the host builtins, keyed by builtin name."""

    STRATEGY_OVERRIDES: dict[str, BuiltinStrategy] = {
        "is_null": BuiltinStrategy.LIST_NULL_TEST,
        "print": BuiltinStrategy.SIDE_EFFECT_SUPPRESSED,
        "display": BuiltinStrategy.SIDE_EFFECT_SUPPRESSED,
        "display_list": BuiltinStrategy.SIDE_EFFECT_SUPPRESSED,
    }
    RETURNS_ARGUMENT: frozenset[str] = frozenset({"display", "display_list"})

    def __init__(self, table: dict[str, Callable[..., Any]], state: ExecutionState):
        self.state = state
        self._entries: dict[str, BuiltinEntry] = {
            name: BuiltinEntry(
                name=name,
                fn=fn,
                strategy=self.STRATEGY_OVERRIDES.get(
                    name, BuiltinStrategy.DEFAULT_CONCRETIZE
                ),
                returns_argument=name in self.RETURNS_ARGUMENT,
            )
            for name, fn in table.items()
        }

    def names(self) -> frozenset[str]:
        return frozenset(self._entries)

    def strategy_of(self, name: str) -> BuiltinStrategy:
        return self._entries[name].strategy

    def call_method(self, name: str, args: list[Any], vm) -> Any:
        if name == constants.BUILTIN_REFERENCE_METHOD:
            return self.reference(args[0])
        return self.invoke(name, args, vm)

    def reference(self, name: str) -> BuiltinFunction:
        """A first-class value for builtin *name* that calls back through this table."""
        if name not in self._entries:
            raise VMRuntimeError(f"name '{name}' is not defined")
        return BuiltinFunction(name=name, fn=functools.partial(self.invoke, name))

    def invoke(self, name: str, args: list[Any], vm) -> Any:
        entry = self._entries.get(name)
        if entry is None:
            raise VMRuntimeError(f"name '{name}' is not defined")

        if entry.strategy is BuiltinStrategy.SIDE_EFFECT_SUPPRESSED:
            if entry.returns_argument and args:
                return no_op(self.state, args[0])
            return no_op(self.state)

        concrete = [concretize(a) for a in args]
        if entry.strategy is BuiltinStrategy.LIST_NULL_TEST:
            if len(concrete) != 1:
                raise VMRuntimeError(f"bad arguments to {name}")
            return make_dummy(null_test(self.state, concrete[0], vm))

        result = entry.fn(concrete, vm)
        if result is Operators.UNCOMPUTABLE:
            raise VMRuntimeError(
                f"bad arguments to {name}({', '.join(_brief(a) for a in concrete)})"
            )
        return make_dummy(result)
