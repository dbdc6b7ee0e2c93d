"""
Analysis pipeline: lexer -> parser -> resolver -> delegation analyzer.

analyze_formula runs one formula. analyze_many fans independent formulas
out over a thread pool; the SymbolTable, LexicalScope and CapabilityTable
they share are immutable, and results come back ordered by FormulaKey
whatever order the workers finish in.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, NamedTuple, Optional, Tuple

from .capabilities import CapabilityTable
from .delegation import DelegationAnalyzer, DelegationReport
from .diagnostics import Diagnostic, Severity, sort_diagnostics
from .formula_parser import FormulaParser
from .locale_profile import DOT_DECIMAL, LocaleProfile
from .resolver import ReferenceResolver, Resolution
from .symbols import LexicalScope, SymbolTable
from .syntax import ChainedExpr
from .tokens import Token

logger = logging.getLogger(__name__)


class FormulaKey(NamedTuple):
    """Where a formula lives: document, control and property names."""

    document: str = ""
    control: str = ""
    property: str = ""

    def __str__(self) -> str:
        return ".".join(part for part in (self.control, self.property) if part) or self.document


class FormulaRequest(NamedTuple):
    key: FormulaKey
    text: str
    origin: Tuple[int, int] = (1, 1)
    indent: int = 0
    scope: Optional[LexicalScope] = None


class FormulaAnalysis(NamedTuple):
    key: FormulaKey
    ast: ChainedExpr
    comments: List[Token]
    resolution: Resolution
    delegation: DelegationReport
    diagnostics: List[Diagnostic]

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]


def analyze_formula(
    text: str,
    profile: LocaleProfile = DOT_DECIMAL,
    symbols: Optional[SymbolTable] = None,
    scope: Optional[LexicalScope] = None,
    capabilities: Optional[CapabilityTable] = None,
    origin: Tuple[int, int] = (1, 1),
    indent: int = 0,
    key: FormulaKey = FormulaKey(),
) -> FormulaAnalysis:
    """
    Run every phase over one formula.

    Later phases run even when parsing reported errors; they see the
    partial tree. Diagnostics of all phases are merged in source order.
    """
    parsed = FormulaParser(profile).parse(text, origin, indent)
    resolution = ReferenceResolver(symbols).resolve(parsed.ast, scope)
    delegation = DelegationAnalyzer(capabilities).analyze(parsed.ast, resolution)

    diagnostics = sort_diagnostics(parsed.diagnostics + resolution.diagnostics + delegation.diagnostics)
    logger.debug("Analysed %s: %d diagnostic(s)", key, len(diagnostics))
    return FormulaAnalysis(key, parsed.ast, parsed.comments, resolution, delegation, diagnostics)


def analyze_many(
    requests: Iterable[FormulaRequest],
    profile: LocaleProfile = DOT_DECIMAL,
    symbols: Optional[SymbolTable] = None,
    capabilities: Optional[CapabilityTable] = None,
    max_workers: Optional[int] = None,
) -> List[FormulaAnalysis]:
    """
    Analyse independent formulas concurrently.

    Args:
        requests: Formulas to analyse, each with its own key and scope
        profile: Locale profile shared by every formula
        symbols: Frozen global symbols
        capabilities: Frozen data source capability metadata
        max_workers: Thread pool size (None lets the executor choose)

    Returns:
        One FormulaAnalysis per request, sorted by key
    """
    requests = list(requests)

    def run(request: FormulaRequest) -> FormulaAnalysis:
        return analyze_formula(
            request.text,
            profile,
            symbols,
            request.scope,
            capabilities,
            request.origin,
            request.indent,
            request.key,
        )

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        analyses = list(executor.map(run, requests))

    return sorted(analyses, key=lambda a: a.key)


def merge_diagnostics(analyses: Iterable[FormulaAnalysis]) -> List[Tuple[FormulaKey, Diagnostic]]:
    """All diagnostics of a batch as (key, diagnostic), by key then position."""
    merged = [(analysis.key, d) for analysis in analyses for d in analysis.diagnostics]
    return sorted(merged, key=lambda item: (item[0], item[1].span.start, item[1].span.end))
