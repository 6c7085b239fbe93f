"""Driver — one analysis run over a candidate program and its session history.

The prelude, every prior program of the session and the candidate are
lowered separately, instrumented as one concatenated program, and executed
in a fresh VM whose only way to reach builtins is the injected builtin
table. Whatever the run raises is converted here, and only here, into the
caller-visible result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from ..api import build_program, lower_source
from ..builtins import Builtins
from ..parser import SourceParseError
from ..run import VirtualMachine
from ..run_types import VMConfig
from ..vm_types import StepLimitExceeded, VMRuntimeError
from .builtins import BuiltinTable
from .detect import GuardTrendClassifier
from .errors import (
    AnalysisInternalError,
    NonTerminationDetected,
    NonTerminationKind,
    TimeoutExceeded,
)
from .hooks import HookTable
from .instrument import InstrumentedProgram, LoweredProgram, instrument
from .prelude import prelude_for
from .state import ExecutionState, Location
from .. import constants

logger = logging.getLogger(__name__)

PRELUDE_NAMESPACE = "prelude"
CANDIDATE_NAMESPACE = "c"


class DiagnosticKind(str, Enum):
    # Certified: the loop or recursion cannot end
    NON_TERMINATION = "non_termination"
    # Budget ran out first; possibly infinite, not certified
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    message: str
    name: str = ""
    location: Location | None = None
    verdict: NonTerminationKind | None = None

    def __str__(self) -> str:
        where = f"{self.location}: " if self.location else ""
        return f"{where}{self.message}"


@dataclass(frozen=True)
class DetectorConfig:
    """Tuning knobs for one analysis run."""

    threshold: int = constants.DEFAULT_THRESHOLD
    stream_threshold: int = constants.DEFAULT_STREAM_THRESHOLD
    timeout: float = constants.DEFAULT_TIMEOUT_SECONDS
    max_steps: int = constants.DEFAULT_ANALYSIS_MAX_STEPS
    max_expr_depth: int = constants.DEFAULT_MAX_EXPR_DEPTH
    max_call_depth: int = 10_000

    def __post_init__(self):
        if self.threshold < constants.MIN_THRESHOLD:
            raise ValueError(
                f"threshold must be at least {constants.MIN_THRESHOLD}, got {self.threshold}"
            )
        if self.stream_threshold < 1:
            raise ValueError(f"stream_threshold must be positive, got {self.stream_threshold}")


class RunOutcome(Enum):
    COMPLETED = "completed"
    DIAGNOSED = "diagnosed"
    PROGRAM_ERROR = "program_error"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AnalysisResult:
    outcome: RunOutcome
    diagnostic: Diagnostic | None = None
    steps: int = 0
    error: str = field(default="", compare=False)


# ── lowering ─────────────────────────────────────────────────────


def _lower_history(previous: Sequence[str], language: str) -> list[LoweredProgram]:
    """Lower the prelude and the prior programs, in execution order.

    Raises:
        AnalysisInternalError: if any of them fails to parse.
    """
    sources = [(constants.PRELUDE_SOURCE, PRELUDE_NAMESPACE, prelude_for(language))]
    sources += [
        (constants.PRIOR_SOURCE_TEMPLATE.format(index=i), f"p{i}", code)
        for i, code in enumerate(previous)
    ]
    programs = []
    for source_name, namespace, code in sources:
        try:
            instructions = lower_source(code, language, namespace=namespace)
        except SourceParseError as exc:
            raise AnalysisInternalError(f"cannot replay {source_name}: {exc}") from exc
        programs.append(LoweredProgram(source_name, instructions))
    return programs


def instrument_sources(
    code: str,
    previous: Sequence[str] = (),
    language: str = "javascript",
) -> InstrumentedProgram:
    """Lower and instrument the prelude, *previous* and *code* as one program.

    Raises:
        SourceParseError: if *code* does not parse.
        AnalysisInternalError: if the prelude or a prior program does not parse.
    """
    candidate = LoweredProgram(
        constants.CANDIDATE_SOURCE,
        lower_source(code, language, namespace=CANDIDATE_NAMESPACE),
    )
    programs = _lower_history(previous, language) + [candidate]
    return instrument(programs, frozenset(Builtins.table_for(language)))


# ── running ──────────────────────────────────────────────────────


def _new_state(config: DetectorConfig) -> ExecutionState:
    return ExecutionState(
        threshold=config.threshold,
        stream_threshold=config.stream_threshold,
        timeout=config.timeout,
        max_expr_depth=config.max_expr_depth,
        classifier=GuardTrendClassifier(),
    )


def run_analysis(
    code: str,
    previous: Sequence[str] = (),
    language: str = "javascript",
    config: DetectorConfig | None = None,
) -> AnalysisResult:
    """Analyse *code* after replaying *previous*; report how the run ended.

    Raises:
        ValueError: if *language* is not supported.
        AnalysisInternalError: if the history cannot be replayed or the
            analysis itself fails.
    """
    config = config or DetectorConfig()
    if language not in constants.SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")

    try:
        program = instrument_sources(code, previous, language)
    except SourceParseError as exc:
        logger.warning("Candidate program rejected: %s", exc)
        return AnalysisResult(RunOutcome.REJECTED, error=str(exc))

    logger.info(
        "Analysing %s candidate with %d prior programs (%d instrumented instructions)",
        language,
        len(previous),
        len(program.instructions),
    )
    try:
        cfg, registry = build_program(program.instructions)
    except ValueError as exc:
        raise AnalysisInternalError(f"cannot build instrumented program: {exc}") from exc

    state = _new_state(config)
    vm = VirtualMachine(
        cfg,
        registry,
        VMConfig(
            max_steps=config.max_steps,
            max_call_depth=config.max_call_depth,
            source_language=language,
            builtins_enabled=False,
        ),
        injected={
            program.hooks_id: HookTable(),
            program.state_id: state,
            program.builtins_id: BuiltinTable(Builtins.table_for(language), state),
        },
    )

    try:
        vm.run()
    except NonTerminationDetected as exc:
        logger.info("Non-termination certified after %d steps: %s", vm.steps, exc)
        diagnostic = Diagnostic(
            kind=DiagnosticKind.NON_TERMINATION,
            message=f"infinite loop detected: {exc.name} does not terminate ({exc.kind.value})",
            name=exc.name,
            location=exc.location or state.location,
            verdict=exc.kind,
        )
        return AnalysisResult(RunOutcome.DIAGNOSED, diagnostic, vm.steps)
    except TimeoutExceeded as exc:
        logger.info("Analysis timed out after %d steps: %s", vm.steps, exc.reason)
        diagnostic = Diagnostic(
            kind=DiagnosticKind.TIMEOUT,
            message=f"possible infinite loop: {exc.reason}",
            name=exc.name,
            location=exc.location or state.location,
        )
        return AnalysisResult(RunOutcome.DIAGNOSED, diagnostic, vm.steps)
    except StepLimitExceeded as exc:
        logger.info("Step budget exhausted: %s", exc)
        diagnostic = Diagnostic(
            kind=DiagnosticKind.TIMEOUT,
            message=f"possible infinite loop: {exc}",
            location=state.location,
        )
        return AnalysisResult(RunOutcome.DIAGNOSED, diagnostic, vm.steps)
    except VMRuntimeError as exc:
        logger.info("Program error during analysis: %s", exc)
        return AnalysisResult(RunOutcome.PROGRAM_ERROR, steps=vm.steps, error=str(exc))
    except RecursionError as exc:
        raise AnalysisInternalError("host recursion limit reached") from exc

    logger.info("Run completed in %d steps without a diagnostic", vm.steps)
    return AnalysisResult(RunOutcome.COMPLETED, steps=vm.steps)


def analyze(
    code: str,
    previous: Sequence[str] = (),
    language: str = "javascript",
    config: DetectorConfig | None = None,
) -> Diagnostic | None:
    """Run *code* under observation and return a diagnostic if it does not terminate.

    ``None`` means nothing was detected, which is not a termination proof.
    A candidate that fails to parse or faults at run time also gives ``None``.

    Args:
        code: Candidate program source.
        previous: Earlier programs of the same session, oldest first; they
            are replayed so their declarations are visible to *code*.
        language: "javascript" or "python".
        config: Detector tuning; defaults to :class:`DetectorConfig`.

    Raises:
        AnalysisInternalError: if a prior program cannot be replayed or the
            analysis itself fails.
    """
    return run_analysis(code, previous, language, config).diagnostic


class Session:
    """Ordered submissions of one student, replayed ahead of each new one.

    Only submissions that ran to completion without a diagnostic or a
    program error join the history.
    """

    def __init__(self, language: str = "javascript", config: DetectorConfig | None = None):
        self.language = language
        self.config = config or DetectorConfig()
        self.history: list[str] = []

    def submit(self, code: str) -> Diagnostic | None:
        result = run_analysis(code, self.history, self.language, self.config)
        if result.outcome is RunOutcome.COMPLETED:
            self.history.append(code)
        else:
            logger.debug("Submission not kept in history (%s)", result.outcome.value)
        return result.diagnostic
