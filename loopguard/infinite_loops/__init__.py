"""Run-time infinite-loop detection for student programs."""

from .errors import (  # noqa: F401
    AnalysisInternalError,
    LoopGuardError,
    NonTerminationDetected,
    NonTerminationKind,
    TimeoutExceeded,
)
from .runtime import (  # noqa: F401
    AnalysisResult,
    DetectorConfig,
    Diagnostic,
    DiagnosticKind,
    RunOutcome,
    Session,
    analyze,
    run_analysis,
)
