"""loopguard — infinite-loop detection for an educational interpreter."""

from .run import run  # noqa: F401
from .api import (  # noqa: F401
    lower_source,
    dump_ir,
    dump_cfg,
    dump_instrumented_ir,
)
from .infinite_loops import (  # noqa: F401
    DetectorConfig,
    Diagnostic,
    DiagnosticKind,
    Session,
    analyze,
)
