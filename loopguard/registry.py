"""Function registry and function-reference parsing."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .cfg import CFG
from .ir import Opcode
from . import constants

logger = logging.getLogger(__name__)


# ── Parse helpers ────────────────────────────────────────────────


@dataclass
class RefParseResult:
    """Result of parsing a function reference string."""

    matched: bool
    name: str = ""
    label: str = ""


class RefPatterns:
    """Compiled regex patterns for function references."""

    FUNC_RE = re.compile(constants.FUNC_REF_PATTERN)


def _parse_func_ref(val: Any) -> RefParseResult:
    """Parse '<function:name@label>' → RefParseResult."""
    if not isinstance(val, str):
        return RefParseResult(matched=False)
    m = RefPatterns.FUNC_RE.fullmatch(val)
    if not m:
        return RefParseResult(matched=False)
    return RefParseResult(matched=True, name=m.group(1), label=m.group(2))


# ── Registry ─────────────────────────────────────────────────────


@dataclass
class FunctionRegistry:
    # func_label → ordered list of parameter names
    func_params: dict[str, list[str]] = field(default_factory=dict)

    def params_of(self, label: str) -> list[str]:
        return self.func_params.get(label, [])


def _scan_func_params(cfg: CFG) -> dict[str, list[str]]:
    """Extract parameter names from function entry blocks in the CFG."""
    result: dict[str, list[str]] = {}
    for label, block in cfg.blocks.items():
        if not label.startswith(constants.FUNC_LABEL_PREFIX):
            continue
        params = [
            str(inst.operands[0])[len(constants.PARAM_PREFIX) :]
            for inst in block.instructions
            if inst.opcode == Opcode.SYMBOLIC
            and inst.operands
            and str(inst.operands[0]).startswith(constants.PARAM_PREFIX)
        ]
        result[label] = params
    return result


def build_registry(cfg: CFG) -> FunctionRegistry:
    """Scan the CFG to build the function registry."""
    reg = FunctionRegistry()
    reg.func_params = _scan_func_params(cfg)
    logger.debug("Registry: %d functions", len(reg.func_params))
    return reg
