"""CFG Builder."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .ir import IRInstruction, Opcode
from . import constants

logger = logging.getLogger(__name__)


@dataclass
class BasicBlock:
    label: str
    instructions: list[IRInstruction] = field(default_factory=list)
    successors: list[str] = field(default_factory=list)
    predecessors: list[str] = field(default_factory=list)


@dataclass
class CFG:
    blocks: dict[str, BasicBlock] = field(default_factory=dict)
    entry: str = constants.CFG_ENTRY_LABEL

    def __str__(self) -> str:
        lines = []
        for label, block in self.blocks.items():
            preds = ", ".join(block.predecessors) if block.predecessors else "(none)"
            succs = ", ".join(block.successors) if block.successors else "(none)"
            lines.append(f"[{label}]  preds={preds}  succs={succs}")
            for inst in block.instructions:
                lines.append(f"  {inst}")
            lines.append("")
        return "\n".join(lines)


def build_cfg(instructions: list[IRInstruction]) -> CFG:
    """Partition instructions into basic blocks and wire edges.

    Raises:
        ValueError: if two LABEL pseudo-instructions share a name.
    """
    cfg = CFG()

    # Phase 1: identify block starts
    seen_labels: set[str] = set()
    block_starts: set[int] = {0}

    for i, inst in enumerate(instructions):
        if inst.opcode == Opcode.LABEL:
            if inst.label in seen_labels:
                raise ValueError(f"Duplicate label in IR: {inst.label}")
            seen_labels.add(inst.label)
            block_starts.add(i)
        elif inst.opcode in (
            Opcode.BRANCH,
            Opcode.BRANCH_IF,
            Opcode.RETURN,
            Opcode.THROW,
        ):
            if i + 1 < len(instructions):
                block_starts.add(i + 1)

    sorted_starts = sorted(block_starts)

    # Phase 2: create blocks
    for si, start in enumerate(sorted_starts):
        end = (
            sorted_starts[si + 1] if si + 1 < len(sorted_starts) else len(instructions)
        )
        block_insts = instructions[start:end]

        if block_insts and block_insts[0].opcode == Opcode.LABEL:
            label = block_insts[0].label
            block_insts = block_insts[1:]  # don't include LABEL pseudo-inst
        else:
            label = f"__block_{start}"

        cfg.blocks[label] = BasicBlock(label=label, instructions=block_insts)

    # Phase 3: wire edges
    block_labels = list(cfg.blocks.keys())
    for i, label in enumerate(block_labels):
        block = cfg.blocks[label]
        last = block.instructions[-1] if block.instructions else None

        if last is not None and last.opcode in (Opcode.BRANCH, Opcode.BRANCH_IF):
            for target in last.branch_targets():
                if target in cfg.blocks:
                    _add_edge(cfg, label, target)
                else:
                    logger.warning("Branch in %s targets unknown label %s", label, target)
        elif last is not None and last.opcode in (Opcode.RETURN, Opcode.THROW):
            pass  # no successors
        elif i + 1 < len(block_labels):
            # Fall through (also for empty blocks)
            _add_edge(cfg, label, block_labels[i + 1])

    if block_labels:
        cfg.entry = block_labels[0]

    logger.debug("Built CFG with %d blocks", len(cfg.blocks))
    return cfg


def _add_edge(cfg: CFG, src: str, dst: str):
    if dst not in cfg.blocks[src].successors:
        cfg.blocks[src].successors.append(dst)
    if src not in cfg.blocks[dst].predecessors:
        cfg.blocks[dst].predecessors.append(src)
