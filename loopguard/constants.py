"""Named constants — eliminates magic strings across the codebase."""

from __future__ import annotations

PARAM_PREFIX = "param:"
UNSUPPORTED_PREFIX = "unsupported:"

FUNC_REF_PATTERN = r"<function:(\w+)@(\w+)>"
FUNC_REF_TEMPLATE = "<function:{name}@{label}>"

FUNC_LABEL_PREFIX = "func_"
END_FUNC_LABEL_PREFIX = "end_func_"
LAMBDA_NAME_PREFIX = "__lambda"

# Loop labels share a numeric suffix: loop_cond_N / loop_body_N / loop_step_N / loop_end_N
LOOP_COND_PREFIX = "loop_cond_"
LOOP_BODY_PREFIX = "loop_body_"
LOOP_STEP_PREFIX = "loop_step_"
LOOP_END_PREFIX = "loop_end_"

# Compiler temporaries and injected objects; never observed by the detector
TEMP_VAR_PREFIX = "__"

# Register the VM pre-populates with the function value being invoked
CALLEE_REG = "%callee"

MAIN_FRAME_NAME = "<main>"
CFG_ENTRY_LABEL = "entry"

SUPPORTED_LANGUAGES: tuple[str, ...] = (
    "javascript",
    "python",
)

# ── detector defaults ─────────────────────────────────────────────

DEFAULT_THRESHOLD = 20
DEFAULT_STREAM_THRESHOLD = 20
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_ANALYSIS_MAX_STEPS = 2_000_000
DEFAULT_MAX_EXPR_DEPTH = 32
MIN_THRESHOLD = 3

# Synthetic tracker prefix for invocations of a function value passed as an argument
PASSED_FUNCTION_PREFIX = "*"

# Source names used in diagnostics
PRELUDE_SOURCE = "prelude"
CANDIDATE_SOURCE = "candidate"
PRIOR_SOURCE_TEMPLATE = "prior[{index}]"

# Identifiers under which the instrumented program sees the injected objects
HOOKS_ID = "__loopguard_hooks"
STATE_ID = "__loopguard_state"
BUILTINS_ID = "__loopguard_builtins"

# Registers reserved for instrumentation
HOOK_REG_PREFIX = "%lg"
HOOKS_REG = "%lg_hooks"
STATE_REG = "%lg_state"
BUILTINS_REG = "%lg_builtins"

# Method on the builtin table that returns a callable reference to a builtin
BUILTIN_REFERENCE_METHOD = "reference"

# Active-function name outside any function body
TOP_LEVEL_FUNCTION = "<main>"
