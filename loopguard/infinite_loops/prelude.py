"""Standard prelude run ahead of every analysed program.

The list and stream helpers are written in the student language on top of
the host's ``pair`` / ``head`` / ``tail`` / ``is_null`` builtins, so their
loops and recursion are observed like user code.
"""

from __future__ import annotations

JAVASCRIPT_PRELUDE = """
function map(f, xs) {
    return is_null(xs) ? null : pair(f(head(xs)), map(f, tail(xs)));
}

function filter(pred, xs) {
    return is_null(xs)
        ? null
        : pred(head(xs))
        ? pair(head(xs), filter(pred, tail(xs)))
        : filter(pred, tail(xs));
}

function accumulate(f, initial, xs) {
    return is_null(xs) ? initial : f(head(xs), accumulate(f, initial, tail(xs)));
}

function length(xs) {
    return is_null(xs) ? 0 : 1 + length(tail(xs));
}

function enum_list(start, end) {
    return start > end ? null : pair(start, enum_list(start + 1, end));
}

function integers_from(n) {
    return pair(n, () => integers_from(n + 1));
}

function stream_map(f, s) {
    return is_null(s) ? null : pair(f(head(s)), () => stream_map(f, stream_tail(s)));
}
"""

PYTHON_PRELUDE = """
def map(f, xs):
    return None if is_null(xs) else pair(f(head(xs)), map(f, tail(xs)))


def filter(pred, xs):
    if is_null(xs):
        return None
    if pred(head(xs)):
        return pair(head(xs), filter(pred, tail(xs)))
    return filter(pred, tail(xs))


def accumulate(f, initial, xs):
    return initial if is_null(xs) else f(head(xs), accumulate(f, initial, tail(xs)))


def length(xs):
    return 0 if is_null(xs) else 1 + length(tail(xs))


def enum_list(start, end):
    return None if start > end else pair(start, enum_list(start + 1, end))


def integers_from(n):
    return pair(n, lambda: integers_from(n + 1))


def stream_map(f, s):
    return None if is_null(s) else pair(f(head(s)), lambda: stream_map(f, stream_tail(s)))
"""

PRELUDES: dict[str, str] = {
    "javascript": JAVASCRIPT_PRELUDE,
    "python": PYTHON_PRELUDE,
}


def prelude_for(language: str) -> str:
    """Prelude source for *language*.

    Raises:
        ValueError: if *language* has no prelude.
    """
    try:
        return PRELUDES[language]
    except KeyError:
        raise ValueError(f"No prelude for language: {language}") from None
