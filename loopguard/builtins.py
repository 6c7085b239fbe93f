"""Built-in function implementations for the host VM.

Every builtin takes ``(args, vm)`` where ``vm`` is the running
``VirtualMachine``; builtins that need to call back into the program (e.g.
forcing a lazy stream tail) use ``vm.apply``.
"""

from __future__ import annotations

import math
from typing import Any

from .vm import Operators

_UNCOMPUTABLE = Operators.UNCOMPUTABLE


def _is_pair(val: Any) -> bool:
    return isinstance(val, list) and len(val) == 2


def format_value(val: Any, language: str = "python") -> str:
    """Render a value the way the source language would display it."""
    if language == "javascript":
        if val is None:
            return "null"
        if isinstance(val, bool):
            return "true" if val else "false"
    if isinstance(val, float) and val.is_integer() and language == "javascript":
        return str(int(val))
    if isinstance(val, list):
        return "[" + ", ".join(format_value(v, language) for v in val) + "]"
    if isinstance(val, (str, bool, int, float)):
        return str(val)
    return repr(val)


# ── Python-flavoured builtins ────────────────────────────────────


def _builtin_len(args: list[Any], vm) -> Any:
    if not args:
        return _UNCOMPUTABLE
    val = args[0]
    if isinstance(val, (list, tuple, str)):
        return len(val)
    return _UNCOMPUTABLE


def _builtin_range(args: list[Any], vm) -> Any:
    if not 1 <= len(args) <= 3 or not all(isinstance(a, int) for a in args):
        return _UNCOMPUTABLE
    if len(args) == 3 and args[2] == 0:
        return _UNCOMPUTABLE
    return list(range(*args))


def _builtin_print(args: list[Any], vm) -> Any:
    vm.emit_output(" ".join(format_value(a, vm.config.source_language) for a in args))
    return None


def _builtin_int(args: list[Any], vm) -> Any:
    if args:
        try:
            return int(args[0])
        except (ValueError, TypeError, OverflowError):
            pass
    return _UNCOMPUTABLE


def _builtin_float(args: list[Any], vm) -> Any:
    if args:
        try:
            return float(args[0])
        except (ValueError, TypeError):
            pass
    return _UNCOMPUTABLE


def _builtin_str(args: list[Any], vm) -> Any:
    if args:
        return format_value(args[0], vm.config.source_language)
    return _UNCOMPUTABLE


def _builtin_bool(args: list[Any], vm) -> Any:
    if args:
        return bool(args[0])
    return _UNCOMPUTABLE


def _builtin_abs(args: list[Any], vm) -> Any:
    if args:
        try:
            return abs(args[0])
        except TypeError:
            pass
    return _UNCOMPUTABLE


def _builtin_max(args: list[Any], vm) -> Any:
    items = args[0] if len(args) == 1 and isinstance(args[0], list) else args
    try:
        return max(items)
    except (ValueError, TypeError):
        return _UNCOMPUTABLE


def _builtin_min(args: list[Any], vm) -> Any:
    items = args[0] if len(args) == 1 and isinstance(args[0], list) else args
    try:
        return min(items)
    except (ValueError, TypeError):
        return _UNCOMPUTABLE


def _builtin_math_floor(args: list[Any], vm) -> Any:
    if args and isinstance(args[0], (int, float)):
        return math.floor(args[0])
    return _UNCOMPUTABLE


def _builtin_math_sqrt(args: list[Any], vm) -> Any:
    if args and isinstance(args[0], (int, float)) and args[0] >= 0:
        return math.sqrt(args[0])
    return _UNCOMPUTABLE


def _builtin_py_list(args: list[Any], vm) -> Any:
    if not args:
        return []
    if isinstance(args[0], (list, tuple, str)):
        return list(args[0])
    return _UNCOMPUTABLE


# ── Pair / list / stream library ─────────────────────────────────


def _builtin_pair(args: list[Any], vm) -> Any:
    if len(args) != 2:
        return _UNCOMPUTABLE
    return [args[0], args[1]]


def _builtin_head(args: list[Any], vm) -> Any:
    if args and _is_pair(args[0]):
        return args[0][0]
    return _UNCOMPUTABLE


def _builtin_tail(args: list[Any], vm) -> Any:
    if args and _is_pair(args[0]):
        return args[0][1]
    return _UNCOMPUTABLE


def _builtin_is_null(args: list[Any], vm) -> Any:
    if len(args) != 1:
        return _UNCOMPUTABLE
    return args[0] is None


def _builtin_is_pair(args: list[Any], vm) -> Any:
    if len(args) != 1:
        return _UNCOMPUTABLE
    return _is_pair(args[0])


def _builtin_list(args: list[Any], vm) -> Any:
    result = None
    for item in reversed(args):
        result = [item, result]
    return result


def _builtin_display(args: list[Any], vm) -> Any:
    if not args:
        return _UNCOMPUTABLE
    vm.emit_output(format_value(args[0], vm.config.source_language))
    return args[0]


def _builtin_display_list(args: list[Any], vm) -> Any:
    if not args:
        return _UNCOMPUTABLE
    items = []
    node = args[0]
    while _is_pair(node):
        items.append(format_value(node[0], vm.config.source_language))
        node = node[1]
    vm.emit_output("list(" + ", ".join(items) + ")")
    return args[0]


def _builtin_stream_tail(args: list[Any], vm) -> Any:
    if not args or not _is_pair(args[0]):
        return _UNCOMPUTABLE
    return vm.apply(args[0][1], [])


class Builtins:
    """Table of built-in function implementations."""

    TABLE: dict[str, Any] = {
        "len": _builtin_len,
        "range": _builtin_range,
        "print": _builtin_print,
        "int": _builtin_int,
        "float": _builtin_float,
        "str": _builtin_str,
        "bool": _builtin_bool,
        "abs": _builtin_abs,
        "max": _builtin_max,
        "min": _builtin_min,
        "math_floor": _builtin_math_floor,
        "math_sqrt": _builtin_math_sqrt,
        "pair": _builtin_pair,
        "head": _builtin_head,
        "tail": _builtin_tail,
        "is_null": _builtin_is_null,
        "is_pair": _builtin_is_pair,
        "list": _builtin_list,
        "display": _builtin_display,
        "display_list": _builtin_display_list,
        "stream_tail": _builtin_stream_tail,
    }

    # Per-language replacements where a name means something else
    LANGUAGE_OVERRIDES: dict[str, dict[str, Any]] = {
        "python": {"list": _builtin_py_list},
    }

    @classmethod
    def table_for(cls, language: str) -> dict[str, Any]:
        return {**cls.TABLE, **cls.LANGUAGE_OVERRIDES.get(language, {})}
