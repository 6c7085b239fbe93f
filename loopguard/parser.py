"""Tree-Sitter Parsing Layer."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class SourceParseError(ValueError):
    """Raised when a program does not parse cleanly."""

    def __init__(self, language: str, line: int, col: int):
        super().__init__(f"{language} syntax error at {line}:{col}")
        self.language = language
        self.line = line
        self.col = col


class ParserFactory(ABC):
    """Abstract factory for obtaining a language parser."""

    @abstractmethod
    def get_parser(self, language: str): ...


class TreeSitterParserFactory(ParserFactory):
    """Concrete factory that delegates to tree-sitter-language-pack."""

    def get_parser(self, language: str):
        import tree_sitter_language_pack as tslp

        return tslp.get_parser(language)


def _first_error(node):
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error:
            found = _first_error(child)
            if found is not None:
                return found
    return None


class Parser:
    """Thin wrapper around a parser factory."""

    def __init__(self, parser_factory: ParserFactory):
        self._factory = parser_factory

    def parse(self, source: str, language: str):
        parser = self._factory.get_parser(language)
        tree = parser.parse(source.encode("utf-8"))
        return tree

    def parse_strict(self, source: str, language: str):
        """Parse *source*, raising ``SourceParseError`` if the tree has errors."""
        tree = self.parse(source, language)
        if tree.root_node.has_error:
            bad = _first_error(tree.root_node) or tree.root_node
            row, col = bad.start_point
            logger.debug("Parse error in %s source at %d:%d", language, row + 1, col)
            raise SourceParseError(language, row + 1, col)
        return tree
