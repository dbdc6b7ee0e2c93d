"""Token types and source-position bookkeeping for the formula lexer."""

import bisect
import enum
from typing import Any, List, NamedTuple, Tuple

from .diagnostics import Span


class TokenKind(enum.Enum):
    LOGICAL = "LogicalLiteral"
    NUMBER = "NumberLiteral"
    TEXT = "TextLiteral"
    IDENTIFIER = "Identifier"
    DISAMBIGUATED = "DisambiguatedIdentifier"
    OPERATOR = "Operator"
    SEPARATOR = "Separator"
    COMMENT = "Comment"
    ERROR = "Error"
    END = "End"


# Operators spelled as words; only whitespace-delimited occurrences count
KEYWORD_OPERATORS = frozenset({"And", "Or", "Not", "in", "exactin"})

LOGICAL_KEYWORDS = {"true": True, "false": False}

CONTEXT_KEYWORDS = frozenset({"ThisItem", "ThisRecord", "Self", "Parent"})

OPENING_DELIMITERS = {"(": ")", "{": "}", "[": "]"}
CLOSING_DELIMITERS = frozenset(OPENING_DELIMITERS.values())


class Token(NamedTuple):
    """
    A single lexical token.

    value holds the decoded payload: unescaped text for text literals, the
    unquoted name for identifiers, a (scope, name) pair for disambiguated
    identifiers, canonical dot-decimal text for numbers, True/False for
    logical literals and a DiagnosticCode for error tokens.
    """

    kind: TokenKind
    lexeme: str
    span: Span
    value: Any = None

    def is_operator(self, *lexemes: str) -> bool:
        return self.kind is TokenKind.OPERATOR and self.lexeme in lexemes

    def is_separator(self, *lexemes: str) -> bool:
        return self.kind is TokenKind.SEPARATOR and self.lexeme in lexemes

    @property
    def quoted(self) -> bool:
        return self.kind is TokenKind.IDENTIFIER and self.lexeme.startswith("'")


class SourceMap:
    """
    Maps offsets in formula text to absolute (line, column) positions.

    The formula starts at origin within its document. Lines after the first
    are shifted by indent, the indentation a block scalar lost when the
    YAML loader de-indented it.
    """

    def __init__(self, text: str, origin: Tuple[int, int] = (1, 1), indent: int = 0):
        self.origin_line, self.origin_column = origin
        self.indent = indent
        self._line_starts: List[int] = [0]
        for offset, char in enumerate(text):
            if char == "\n":
                self._line_starts.append(offset + 1)

    def position(self, offset: int) -> Tuple[int, int]:
        index = bisect.bisect_right(self._line_starts, offset) - 1
        column = offset - self._line_starts[index]
        if index == 0:
            return self.origin_line, self.origin_column + column
        return self.origin_line + index, self.indent + 1 + column

    def span(self, start: int, end: int) -> Span:
        line, column = self.position(start)
        return Span(start, end, line, column)
