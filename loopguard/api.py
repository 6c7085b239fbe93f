"""Composable API functions for the loopguard pipelines.

Each function corresponds to a CLI workflow (``ir``, ``ir --instrumented``,
``cfg``) but is callable programmatically without argparse.
"""

from __future__ import annotations

import logging

from .cfg import CFG, build_cfg
from .frontend import get_frontend
from .ir import IRInstruction
from .parser import Parser, TreeSitterParserFactory
from .registry import FunctionRegistry, build_registry

logger = logging.getLogger(__name__)


def lower_source(
    source: str,
    language: str = "python",
    namespace: str = "",
) -> list[IRInstruction]:
    """Parse and lower source code to IR instructions.

    Args:
        source: The source code text.
        language: Source language name ("python" or "javascript").
        namespace: Label namespace, needed when several lowered programs
            are concatenated.

    Returns:
        A list of IR instructions.

    Raises:
        SourceParseError: if the source does not parse cleanly.
    """
    logger.debug("Lowering source (%s, namespace=%r)", language, namespace)
    tree = Parser(TreeSitterParserFactory()).parse_strict(source, language)
    frontend = get_frontend(language, namespace=namespace)
    return frontend.lower(tree, source.encode("utf-8"))


def dump_ir(source: str, language: str = "python") -> str:
    """Lower source to IR and return a human-readable text dump."""
    instructions = lower_source(source, language)
    return "\n".join(f"  {inst}" for inst in instructions)


def dump_instrumented_ir(
    source: str,
    language: str = "javascript",
    previous: list[str] | tuple[str, ...] = (),
) -> str:
    """Return the instrumented IR the detector would execute for *source*.

    The dump includes the prelude and every program in *previous*.
    """
    from .infinite_loops.runtime import instrument_sources

    program = instrument_sources(source, list(previous), language)
    return "\n".join(f"  {inst}" for inst in program.instructions)


def build_program(instructions: list[IRInstruction]) -> tuple[CFG, FunctionRegistry]:
    """Build the CFG and function registry for lowered (or instrumented) IR."""
    cfg = build_cfg(instructions)
    return cfg, build_registry(cfg)


def dump_cfg(source: str, language: str = "python") -> str:
    """Build a CFG from source and return its text representation."""
    cfg, _ = build_program(lower_source(source, language))
    return str(cfg)
