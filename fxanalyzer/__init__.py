"""
Static analysis for the formula language of YAML low-code app definitions.

This package contains:
- lexer / formula_parser: locale-aware tokenizing and parsing into a syntax tree
- resolver: binding identifiers against symbols and record scopes
- delegation: deciding which table queries can run at the data source
- pipeline: running all phases over one formula or a batch of formulas
- lint_formulas: the fxlint command over a directory of YAML documents
"""

from .capabilities import CapabilityDescriptor, CapabilityTable
from .delegation import DelegationAnalyzer, DelegationReport
from .diagnostics import (
    ConfigurationError,
    Diagnostic,
    DiagnosticCode,
    FormulaError,
    LexError,
    ParseError,
    Severity,
    Span,
    ValidationError,
)
from .formula_parser import FormulaParser, ParseResult
from .lexer import Lexer, tokenize
from .locale_profile import COMMA_DECIMAL, DOT_DECIMAL, LocaleProfile, resolve_locale
from .pipeline import FormulaAnalysis, FormulaKey, FormulaRequest, analyze_formula, analyze_many
from .resolver import ReferenceResolver, Resolution
from .symbols import Binding, FrameKind, LexicalScope, ReferenceKind, ScopeFrame, SymbolTable
from .syntax import dump, unparse, walk

__version__ = "0.1.0"
