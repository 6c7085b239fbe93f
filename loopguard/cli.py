"""Command-line entry point: ``loopguard check|run|ir``."""

from __future__ import annotations

import argparse
import logging
import sys

from .api import dump_ir, dump_instrumented_ir
from .infinite_loops import AnalysisInternalError, DetectorConfig, run_analysis
from .parser import SourceParseError
from .run import format_output, run
from .vm_types import StepLimitExceeded, VMRuntimeError
from . import constants

logger = logging.getLogger(__name__)


def _read(path: str) -> str:
    with open(path) as f:
        return f.read()


def _add_language(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--language",
        "-l",
        default="javascript",
        choices=constants.SUPPORTED_LANGUAGES,
        help="Source language (default: javascript)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loopguard", description="Run-time infinite-loop detector"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Analyse a program for infinite loops")
    check.add_argument("file", help="Candidate program")
    check.add_argument(
        "--prior",
        action="append",
        default=[],
        metavar="FILE",
        help="Earlier program of the same session (repeatable, oldest first)",
    )
    _add_language(check)
    check.add_argument("--threshold", type=int, default=constants.DEFAULT_THRESHOLD)
    check.add_argument(
        "--stream-threshold", type=int, default=constants.DEFAULT_STREAM_THRESHOLD
    )
    check.add_argument(
        "--timeout",
        type=float,
        default=constants.DEFAULT_TIMEOUT_SECONDS,
        help="Cooperative deadline in seconds",
    )
    check.add_argument(
        "--max-steps", "-n", type=int, default=constants.DEFAULT_ANALYSIS_MAX_STEPS
    )

    run_cmd = sub.add_parser("run", help="Execute a program without analysis")
    run_cmd.add_argument("file")
    _add_language(run_cmd)
    run_cmd.add_argument("--max-steps", "-n", type=int, default=1_000_000)

    ir = sub.add_parser("ir", help="Print the IR of a program")
    ir.add_argument("file")
    _add_language(ir)
    ir.add_argument(
        "--instrumented",
        action="store_true",
        help="Print the instrumented program, prelude included",
    )
    return parser


def _check(args) -> int:
    try:
        config = DetectorConfig(
            threshold=args.threshold,
            stream_threshold=args.stream_threshold,
            timeout=args.timeout,
            max_steps=args.max_steps,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return 2
    previous = [_read(path) for path in args.prior]
    try:
        result = run_analysis(_read(args.file), previous, args.language, config)
    except AnalysisInternalError as exc:
        logger.error("Analysis failed: %s", exc)
        return 2
    if result.diagnostic is not None:
        print(result.diagnostic)
        return 1
    if result.error:
        print(f"no infinite loop detected ({result.outcome.value}: {result.error})")
    else:
        print("no infinite loop detected")
    return 0


def _run(args) -> int:
    try:
        vm = run(
            _read(args.file),
            language=args.language,
            max_steps=args.max_steps,
            echo_output=True,
            verbose=args.verbose,
        )
    except (SourceParseError, VMRuntimeError, StepLimitExceeded) as exc:
        logger.error("%s", exc)
        return 1
    logger.debug("Program printed %d lines", len(format_output(vm).splitlines()))
    return 0


def _ir(args) -> int:
    source = _read(args.file)
    try:
        if args.instrumented:
            print(dump_instrumented_ir(source, args.language))
        else:
            print(dump_ir(source, args.language))
    except SourceParseError as exc:
        logger.error("%s", exc)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    handlers = {"check": _check, "run": _run, "ir": _ir}
    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
