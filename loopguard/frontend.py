"""Frontend / AST-to-IR Lowering."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .ir import IRInstruction
from . import constants


class Frontend(ABC):
    @abstractmethod
    def lower(self, tree, source: bytes) -> list[IRInstruction]: ...


def get_frontend(language: str, namespace: str = "") -> Frontend:
    """Factory: return a deterministic frontend for *language*.

    Args:
        language: Source language name ("javascript" or "python").
        namespace: Prefix mixed into every generated label so several
            programs lowered separately can share one CFG.

    Raises:
        ValueError: if *language* has no registered frontend.
    """
    from .frontends import get_deterministic_frontend

    if language not in constants.SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")
    return get_deterministic_frontend(language, namespace=namespace)
