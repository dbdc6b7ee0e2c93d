"""
Formula lexer built from pyparsing token patterns.

Every token pattern is a pyparsing element; the alternatives are combined
into one MatchFirst and scanned across the formula with scan_string. The
last alternative matches any non-whitespace run, so every character ends up
in some token and malformed input becomes an error token instead of
stopping the scan.

Decisions pinned by the lexer tests:
- whitespace is every character for which str.isspace() holds, so NBSP and
  the other Unicode space separators delimit keyword operators
- And, Or, Not, in and exactin are operators only when whitespace or a text
  boundary sits on both sides; glued to anything else they stay identifier
  text ("Value1AndValue2", "Not(x)")
- an unterminated text literal or quoted identifier ends at the next
  whitespace; an unterminated block comment ends at the end of its line
- identifier characters are the Unicode identifier characters of every
  plane, so CJK Extension B names lex as identifiers and emoji do not
"""

import logging
import re
import threading
from typing import List, NamedTuple, Tuple

from pyparsing import (
    MatchFirst,
    Opt,
    ParserElement,
    Regex,
    Suppress,
    Word,
    c_style_comment,
    dbl_slash_comment,
    one_of,
    pyparsing_unicode,
)

from .diagnostics import Diagnostic, DiagnosticBag, DiagnosticCode
from .locale_profile import DOT_DECIMAL, LocaleProfile
from .tokens import KEYWORD_OPERATORS, LOGICAL_KEYWORDS, SourceMap, Token, TokenKind

logger = logging.getLogger(__name__)

WHITESPACE = "".join(chr(code) for code in range(0x3001) if chr(code).isspace())

# Soft hyphen, zero-width space/joiners, direction marks, word joiner, BOM
FORMAT_CHARS = "\u00ad\u200b\u200c\u200d\u200e\u200f\u2060\ufeff"

OPERATORS = ["&&", "||", "<=", ">=", "<>", "+", "-", "*", "/", "^", "&", "=", "<", ">", "!", "%", "."]

# An invalid character run stops at whitespace or at any of these
BOUNDARY_CHARS = "+-*/^&=<>!%.,;:(){}[]\"'|@"


class LexResult(NamedTuple):
    tokens: List[Token]
    comments: List[Token]
    diagnostics: List[Diagnostic]


def _tag(kind: TokenKind):
    """Parse action labelling the matched text with a token kind."""

    def action(tokens):
        return (kind, tokens[0])

    return action


def _error(code: DiagnosticCode):
    return lambda: (TokenKind.ERROR, code)


def _unquote(quote: str):
    """Parse action stripping the quotes and undoubling escaped quotes."""

    def action(tokens):
        return tokens[0][1:-1].replace(quote * 2, quote)

    return action


def _disambiguated(tokens):
    return (TokenKind.DISAMBIGUATED, (tokens.get("scope"), tokens["name"]))


def build_token_grammar(profile: LocaleProfile) -> ParserElement:
    """
    Build the MatchFirst of all token patterns for a locale profile.

    Order matters: comments before the '/' operator, disambiguated names
    before plain identifiers and '[', numbers before the '.' operator, and
    the catch-all invalid-character pattern last.
    """
    plain_identifier = Word(
        pyparsing_unicode.identchars,
        pyparsing_unicode.identbodychars + FORMAT_CHARS,
    )
    quoted_identifier = Regex(r"'(?:[^']|'')*'").set_parse_action(_unquote("'"))
    any_identifier = quoted_identifier | plain_identifier

    comment = (c_style_comment.copy() | dbl_slash_comment.copy()).set_parse_action(
        _tag(TokenKind.COMMENT)
    )
    unterminated_comment = Regex(r"/\*[^\n]*").set_parse_action(
        _error(DiagnosticCode.UNTERMINATED_COMMENT)
    )

    text = Regex(r'"(?:[^"]|"")*"').set_parse_action(
        lambda t: (TokenKind.TEXT, t[0][1:-1].replace('""', '"'))
    )
    unterminated_text = Regex(r'"\S*').set_parse_action(
        _error(DiagnosticCode.UNTERMINATED_STRING)
    )

    # Table[@Field] and [@Name]
    disambiguated = (
        (Opt(any_identifier("scope")) + Suppress("[@") + any_identifier("name") + Suppress("]"))
        .leave_whitespace()
        .set_parse_action(_disambiguated)
    )
    identifier = any_identifier.copy().add_parse_action(_tag(TokenKind.IDENTIFIER))
    unterminated_identifier = Regex(r"'\S*").set_parse_action(
        _error(DiagnosticCode.UNTERMINATED_STRING)
    )

    if profile.decimal_separator == ",":
        number = Regex(r"[0-9]+(?:,[0-9]+)?(?:[eE][+-]?[0-9]+)?")
    else:
        number = Regex(r"(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
    number.set_parse_action(lambda t: (TokenKind.NUMBER, t[0].replace(",", ".")))

    operator = one_of(OPERATORS).set_parse_action(_tag(TokenKind.OPERATOR))
    separator = one_of(
        ["(", ")", "{", "}", "[", "]", ":", profile.list_separator, profile.chaining_separator]
    ).set_parse_action(_tag(TokenKind.SEPARATOR))

    invalid = Regex(r"\S[^\s" + re.escape(BOUNDARY_CHARS) + r"]*").set_parse_action(
        _error(DiagnosticCode.INVALID_CHARACTER)
    )

    grammar = MatchFirst(
        [
            comment,
            unterminated_comment,
            text,
            unterminated_text,
            disambiguated,
            identifier,
            unterminated_identifier,
            number,
            operator,
            separator,
            invalid,
        ]
    )
    # streamline() recomputes skipWhitespace from the alternatives, and the
    # disambiguated pattern leaves whitespace, so whitespace is set afterwards
    grammar.streamline()
    grammar.set_whitespace_chars(WHITESPACE, copy_defaults=False)
    # Offsets must index the original text, so tabs are not expanded
    grammar.parse_with_tabs()
    return grammar


_local = threading.local()


def _grammar_for(profile: LocaleProfile) -> ParserElement:
    """Return this thread's grammar for profile, building it on first use."""
    grammars = getattr(_local, "grammars", None)
    if grammars is None:
        grammars = _local.grammars = {}
    if profile not in grammars:
        grammars[profile] = build_token_grammar(profile)
    return grammars[profile]


def _whitespace_delimited(text: str, start: int, end: int) -> bool:
    before = start == 0 or text[start - 1].isspace()
    after = end == len(text) or text[end].isspace()
    return before and after


def _error_message(code: DiagnosticCode, lexeme: str) -> str:
    if code is DiagnosticCode.UNTERMINATED_COMMENT:
        return "Block comment is never closed"
    if code is DiagnosticCode.UNTERMINATED_STRING:
        if lexeme.startswith("'"):
            return f"Quoted identifier {lexeme!r} is never closed"
        return f"Text literal {lexeme!r} is never closed"
    return f"Invalid character(s) {lexeme!r}"


class Lexer:
    """Tokenizes formula text for one locale profile."""

    def __init__(self, profile: LocaleProfile = DOT_DECIMAL):
        self.profile = profile

    def tokenize(self, text: str, origin: Tuple[int, int] = (1, 1), indent: int = 0) -> LexResult:
        """
        Split formula text into tokens.

        Args:
            text: Formula text, without the leading '=' marker
            origin: (line, column) of the first character in its document
            indent: Column shift for lines after the first (block scalars)

        Returns:
            LexResult with the token stream (ending in an End token), the
            comments removed from it and any lexical diagnostics
        """
        grammar = _grammar_for(self.profile)
        source = SourceMap(text, origin, indent)
        tokens: List[Token] = []
        comments: List[Token] = []
        diagnostics = DiagnosticBag()

        for results, start, end in grammar.scan_string(text):
            kind, value = results[0]
            lexeme = text[start:end]
            span = source.span(start, end)

            if kind is TokenKind.COMMENT:
                comments.append(Token(kind, lexeme, span))
                continue

            if kind is TokenKind.ERROR:
                diagnostics.report(value, span, _error_message(value, lexeme))
            elif kind is TokenKind.IDENTIFIER and not lexeme.startswith("'"):
                if lexeme in LOGICAL_KEYWORDS:
                    kind, value = TokenKind.LOGICAL, LOGICAL_KEYWORDS[lexeme]
                elif lexeme in KEYWORD_OPERATORS and _whitespace_delimited(text, start, end):
                    kind, value = TokenKind.OPERATOR, lexeme

            tokens.append(Token(kind, lexeme, span, value))

        tokens.append(Token(TokenKind.END, "", source.span(len(text), len(text))))
        logger.debug("Lexed %d token(s), %d comment(s), %d error(s)", len(tokens), len(comments), len(diagnostics))
        return LexResult(tokens, comments, diagnostics.sorted())


def tokenize(
    text: str, profile: LocaleProfile = DOT_DECIMAL, origin: Tuple[int, int] = (1, 1)
) -> LexResult:
    """Tokenize text with a throwaway Lexer."""
    return Lexer(profile).tokenize(text, origin)
