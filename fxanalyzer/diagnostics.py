"""
Diagnostics shared by every analysis phase.

This module provides:
- Severity, Category, DiagnosticCode: the error taxonomy
- Span, Diagnostic: immutable, source-located messages
- FormulaError and its subclasses: exceptions raised at phase boundaries
- DiagnosticBag: append-only collection each phase reports into

Lexing and parsing errors are recoverable and accumulate here instead of
aborting the phase; only ConfigurationError is fatal.
"""

import enum
from typing import Iterable, Iterator, List, NamedTuple


class Severity(enum.Enum):
    ERROR = "error"
    WARNING = "warning"


class Category(enum.Enum):
    LEX = "LexError"
    PARSE = "ParseError"
    RESOLUTION = "ResolutionWarning"
    DELEGATION = "DelegationWarning"


class DiagnosticCode(enum.Enum):
    """Every diagnostic code, with its category and default severity."""

    UNTERMINATED_STRING = ("UnterminatedString", Category.LEX, Severity.ERROR)
    UNTERMINATED_COMMENT = ("UnterminatedComment", Category.LEX, Severity.ERROR)
    INVALID_CHARACTER = ("InvalidCharacter", Category.LEX, Severity.ERROR)

    UNEXPECTED_TOKEN = ("UnexpectedToken", Category.PARSE, Severity.ERROR)
    UNBALANCED_DELIMITER = ("UnbalancedDelimiter", Category.PARSE, Severity.ERROR)
    MISSING_OPERAND = ("MissingOperand", Category.PARSE, Severity.ERROR)
    CHAINED_COMPARISON = ("ChainedComparison", Category.PARSE, Severity.ERROR)

    UNRESOLVED_IDENTIFIER = ("UnresolvedIdentifier", Category.RESOLUTION, Severity.WARNING)
    CONTEXT_UNAVAILABLE = ("ContextUnavailable", Category.RESOLUTION, Severity.WARNING)

    NON_DELEGABLE = ("NonDelegableClause", Category.DELEGATION, Severity.WARNING)

    def __init__(self, label: str, category: Category, severity: Severity):
        self.label = label
        self.category = category
        self.severity = severity

    def __str__(self) -> str:
        return self.label


class Span(NamedTuple):
    """
    Source range of a token or node.

    start/end are 0-based offsets into the formula text; line/column are
    1-based and already shifted by the formula's origin in its document.
    """

    start: int
    end: int
    line: int = 1
    column: int = 1

    def cover(self, other: "Span") -> "Span":
        """Return the span running from the start of self to the end of other."""
        return Span(self.start, max(self.end, other.end), self.line, self.column)


class Diagnostic(NamedTuple):
    severity: Severity
    code: DiagnosticCode
    span: Span
    message: str

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    @property
    def category(self) -> Category:
        return self.code.category

    def __str__(self) -> str:
        return (
            f"{self.span.line}:{self.span.column}: {self.severity.value}"
            f"[{self.code.label}]: {self.message}"
        )


class FormulaError(Exception):
    """Base class for all analyzer exceptions."""
    pass


class ConfigurationError(FormulaError):
    """Raised for malformed locale tags, overrides or configuration files."""
    pass


class ValidationError(FormulaError):
    """Raised when a formula document is not valid YAML."""
    pass


class LexError(FormulaError):
    """A lexical error, carrying the diagnostic that describes it."""

    def __init__(self, diagnostic: Diagnostic):
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic


class ParseError(FormulaError):
    """
    A syntax error.

    The parser raises this internally to abandon a clause; the diagnostic is
    None when the clause failed on a token the lexer already reported.
    """

    def __init__(self, diagnostic):
        super().__init__(str(diagnostic) if diagnostic is not None else "invalid token")
        self.diagnostic = diagnostic


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    """Order diagnostics by source position; ties keep reporting order."""
    return sorted(diagnostics, key=lambda d: (d.span.start, d.span.end))


class DiagnosticBag:
    """Append-only diagnostics collection used by a single analysis phase."""

    def __init__(self):
        self._items: List[Diagnostic] = []

    def report(self, code: DiagnosticCode, span: Span, message: str) -> Diagnostic:
        diagnostic = Diagnostic(code.severity, code, span, message)
        self._items.append(diagnostic)
        return diagnostic

    def add(self, diagnostic: Diagnostic) -> None:
        self._items.append(diagnostic)

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self._items.extend(diagnostics)

    def sorted(self) -> List[Diagnostic]:
        return sort_diagnostics(self._items)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
