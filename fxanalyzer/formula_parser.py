"""
Formula parser module.

This module provides:
- FormulaParser: a precedence-climbing parser over the lexer's token stream
- ParseResult: the (possibly partial) tree plus every lexical and syntax
  diagnostic found in one pass

The parser supports:
- Literals, identifiers, quoted and disambiguated identifiers
- Context keywords (ThisItem, ThisRecord, Self, Parent)
- Reference chains with '.' and '!' and namespaced function calls
- Inline records {a: 1} and inline tables [1, 2]
- Prefix '-', '!' and Not, postfix '%', and every binary operator
- Chained expressions, including chains inside function arguments

Relational and membership operators are non-associative: a third operand
at the same level without parentheses is a syntax error. Errors abandon
the current clause only; parsing resumes after the next chaining separator
at the clause's nesting level.
"""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from .diagnostics import (
    Category,
    Diagnostic,
    DiagnosticBag,
    DiagnosticCode,
    LexError,
    ParseError,
    Span,
    sort_diagnostics,
)
from .lexer import Lexer
from .locale_profile import DOT_DECIMAL, LocaleProfile
from .syntax import (
    BINARY_PRECEDENCE,
    PREFIX_OPERATORS,
    Associativity,
    BinaryOp,
    ChainedExpr,
    FunctionCall,
    Identifier,
    IdentifierKind,
    InlineRecord,
    InlineTable,
    Literal,
    LiteralKind,
    Node,
    RecordField,
    Reference,
    Segment,
    UnaryOp,
    extract_function_calls,
    unparse,
)
from .tokens import CLOSING_DELIMITERS, CONTEXT_KEYWORDS, OPENING_DELIMITERS, Token, TokenKind

logger = logging.getLogger(__name__)


class ParseResult:
    """Outcome of parsing one formula."""

    def __init__(self, ast: ChainedExpr, comments: List[Token], diagnostics: List[Diagnostic]):
        self.ast = ast
        self.comments = comments
        self.diagnostics = diagnostics

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    def raise_for_errors(self) -> None:
        """
        Raise the first error diagnostic as an exception.

        Raises:
            LexError: If the first error is lexical
            ParseError: If the first error is a syntax error
        """
        errors = self.errors
        if not errors:
            return
        first = errors[0]
        if first.category is Category.LEX:
            raise LexError(first)
        raise ParseError(first)


class _ClauseParser:
    """Recursive precedence-climbing parser over one token stream."""

    def __init__(self, tokens: List[Token], profile: LocaleProfile, diagnostics: DiagnosticBag):
        self.tokens = tokens
        self.profile = profile
        self.diagnostics = diagnostics
        self.pos = 0
        self.previous: Optional[Token] = None
        # Opening delimiters not yet closed, innermost last
        self.open_delimiters: List[Token] = []

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind is not TokenKind.END:
            self.pos += 1
        self.previous = tok
        return tok

    def at_end(self) -> bool:
        return self.current.kind is TokenKind.END

    def at_chain_separator(self) -> bool:
        return self.current.is_separator(self.profile.chaining_separator)

    def error(self, code: DiagnosticCode, token: Token, message: str) -> ParseError:
        """Build the exception abandoning the current clause."""
        if token.kind is TokenKind.ERROR:
            # Already reported by the lexer
            return ParseError(None)
        return ParseError(Diagnostic(code.severity, code, token.span, message))

    def span_from(self, start: Span) -> Span:
        end = self.previous.span if self.previous is not None else start
        return start.cover(end)

    # -- Clause recovery --

    def parse_formula(self) -> ChainedExpr:
        """Parse the whole token stream as a chain of clauses."""
        start = self.current.span
        clauses: List[Node] = []

        while not self.at_end():
            if self.at_chain_separator():
                self.advance()
                continue
            try:
                clauses.append(self.parse_expression())
                if not self.at_end() and not self.at_chain_separator():
                    raise self.unexpected(self.current)
            except ParseError as exc:
                if exc.diagnostic is not None:
                    self.diagnostics.add(exc.diagnostic)
                self.synchronize()

        if clauses:
            return ChainedExpr(tuple(clauses), start.cover(clauses[-1].span))
        return ChainedExpr((), start)

    def synchronize(self) -> None:
        """Skip to just past the next chaining separator at clause level."""
        depth = len(self.open_delimiters)
        self.open_delimiters = []
        while not self.at_end():
            tok = self.current
            if tok.kind is TokenKind.SEPARATOR:
                if tok.lexeme in OPENING_DELIMITERS:
                    depth += 1
                elif tok.lexeme in CLOSING_DELIMITERS:
                    depth = max(depth - 1, 0)
                elif tok.lexeme == self.profile.chaining_separator and depth == 0:
                    self.advance()
                    return
            self.advance()

    def unexpected(self, tok: Token) -> ParseError:
        if tok.kind is TokenKind.SEPARATOR and tok.lexeme in CLOSING_DELIMITERS:
            return self.error(
                DiagnosticCode.UNBALANCED_DELIMITER, tok, f"Unmatched closing '{tok.lexeme}'"
            )
        return self.error(DiagnosticCode.UNEXPECTED_TOKEN, tok, f"Unexpected {_describe(tok)}")

    # -- Grammar rules --

    def parse_chain(self) -> Node:
        """expression (chaining-separator expression)*, collapsed when single."""
        start = self.current.span
        sequence = [self.parse_expression()]
        while self.at_chain_separator():
            self.advance()
            if self.at_chain_stop():
                break
            sequence.append(self.parse_expression())
        if len(sequence) == 1:
            return sequence[0]
        return ChainedExpr(tuple(sequence), self.span_from(start))

    def at_chain_stop(self) -> bool:
        tok = self.current
        return tok.kind is TokenKind.END or tok.is_separator(
            ")", "}", "]", self.profile.list_separator
        )

    def parse_expression(self, min_level: int = 0) -> Node:
        """Precedence climbing over the binary operator table."""
        left = self.parse_prefix()
        while True:
            tok = self.current
            if tok.kind is not TokenKind.OPERATOR or tok.lexeme not in BINARY_PRECEDENCE:
                break
            level, assoc = BINARY_PRECEDENCE[tok.lexeme]
            if level < min_level:
                break
            self.advance()
            next_level = level if assoc is Associativity.RIGHT else level + 1
            right = self.parse_expression(next_level)
            left = BinaryOp(tok.lexeme, left, right, left.span.cover(right.span))

            if assoc is Associativity.NONE:
                following = self.current
                if (
                    following.kind is TokenKind.OPERATOR
                    and BINARY_PRECEDENCE.get(following.lexeme, (None,))[0] == level
                ):
                    raise self.error(
                        DiagnosticCode.CHAINED_COMPARISON,
                        following,
                        f"'{following.lexeme}' cannot follow '{tok.lexeme}' without parentheses",
                    )
        return left

    def parse_prefix(self) -> Node:
        tok = self.current
        if tok.is_operator(*PREFIX_OPERATORS):
            self.advance()
            operand = self.parse_prefix()
            return UnaryOp(tok.lexeme, operand, tok.span.cover(operand.span))
        return self.parse_postfix()

    def parse_postfix(self) -> Node:
        node = self.parse_member_access()
        while self.current.is_operator("%"):
            tok = self.advance()
            node = UnaryOp(tok.lexeme, node, node.span.cover(tok.span))
        return node

    def parse_member_access(self) -> Node:
        """primary (('.' | '!') name)*, folding namespaced calls."""
        node = self.parse_primary()
        while self.current.is_operator(".", "!") and not isinstance(node, Literal):
            separator = self.advance()
            name_tok = self.current
            if name_tok.kind is not TokenKind.IDENTIFIER:
                raise self.error(
                    DiagnosticCode.MISSING_OPERAND,
                    name_tok,
                    f"Expected a name after '{separator.lexeme}', found {_describe(name_tok)}",
                )
            self.advance()

            if separator.lexeme == "." and self.current.is_separator("(") and _is_namespace(node):
                namespace = (node.base.name,) + tuple(s.name for s in node.chain)
                node = self.parse_call(name_tok, namespace, node.span)
                continue

            segment = Segment(separator.lexeme, name_tok.value, separator.span.cover(name_tok.span))
            if isinstance(node, Reference):
                node = Reference(node.base, node.chain + (segment,), node.span.cover(name_tok.span))
            else:
                node = Reference(node, (segment,), node.span.cover(name_tok.span))
        return node

    def parse_primary(self) -> Node:
        tok = self.current

        if tok.kind is TokenKind.NUMBER:
            self.advance()
            value = float(tok.value) if any(c in tok.value for c in ".eE") else int(tok.value)
            return Literal(LiteralKind.NUMBER, value, tok.value, tok.span)
        if tok.kind is TokenKind.TEXT:
            self.advance()
            return Literal(LiteralKind.TEXT, tok.value, tok.lexeme, tok.span)
        if tok.kind is TokenKind.LOGICAL:
            self.advance()
            return Literal(LiteralKind.LOGICAL, tok.value, tok.lexeme, tok.span)

        if tok.kind is TokenKind.IDENTIFIER:
            self.advance()
            if self.current.is_separator("("):
                return self.parse_call(tok, (), tok.span)
            kind = IdentifierKind.PLAIN
            if tok.value in CONTEXT_KEYWORDS and not tok.quoted:
                kind = IdentifierKind.CONTEXT
            return Reference(Identifier(tok.value, kind, None, tok.span), (), tok.span)

        if tok.kind is TokenKind.DISAMBIGUATED:
            self.advance()
            scope, name = tok.value
            identifier = Identifier(name, IdentifierKind.DISAMBIGUATED, scope, tok.span)
            return Reference(identifier, (), tok.span)

        if tok.is_separator("("):
            opening = self.open(tok)
            if self.current.is_separator(")"):
                raise self.error(
                    DiagnosticCode.MISSING_OPERAND, self.current, "Empty parentheses"
                )
            inner = self.parse_chain()
            self.close(opening)
            return inner

        if tok.is_separator("{"):
            return self.parse_record()

        if tok.is_separator("["):
            return self.parse_table()

        raise self.error(
            DiagnosticCode.MISSING_OPERAND, tok, f"Expected an operand, found {_describe(tok)}"
        )

    def parse_call(self, name_tok: Token, namespace: Tuple[str, ...], start: Span) -> FunctionCall:
        opening = self.open(self.current)
        args: List[Node] = []
        if not self.current.is_separator(")"):
            while True:
                args.append(self.parse_chain())
                if self.current.is_separator(self.profile.list_separator):
                    self.advance()
                    continue
                break
        self.close(opening)
        return FunctionCall(name_tok.value, tuple(args), namespace, self.span_from(start))

    def parse_record(self) -> InlineRecord:
        opening = self.open(self.current)
        fields: List[RecordField] = []
        if not self.current.is_separator("}"):
            while True:
                name_tok = self.current
                if name_tok.kind is not TokenKind.IDENTIFIER:
                    raise self.error(
                        DiagnosticCode.UNEXPECTED_TOKEN,
                        name_tok,
                        f"Expected a field name, found {_describe(name_tok)}",
                    )
                self.advance()
                if not self.current.is_separator(":"):
                    raise self.error(
                        DiagnosticCode.UNEXPECTED_TOKEN,
                        self.current,
                        f"Expected ':' after field '{name_tok.value}', found {_describe(self.current)}",
                    )
                self.advance()
                value = self.parse_expression()
                fields.append(RecordField(name_tok.value, value, name_tok.span.cover(value.span)))
                if self.current.is_separator(self.profile.list_separator):
                    self.advance()
                    continue
                break
        self.close(opening)
        return InlineRecord(tuple(fields), self.span_from(opening.span))

    def parse_table(self) -> InlineTable:
        opening = self.open(self.current)
        elements: List[Node] = []
        if not self.current.is_separator("]"):
            while True:
                elements.append(self.parse_expression())
                if self.current.is_separator(self.profile.list_separator):
                    self.advance()
                    continue
                break
        self.close(opening)
        return InlineTable(tuple(elements), self.span_from(opening.span))

    def open(self, tok: Token) -> Token:
        self.open_delimiters.append(tok)
        return self.advance()

    def close(self, opening: Token) -> Token:
        """Consume the delimiter closing opening, or fail the clause."""
        closer = OPENING_DELIMITERS[opening.lexeme]
        tok = self.current
        if tok.is_separator(closer):
            self.open_delimiters.pop()
            return self.advance()
        if tok.kind is TokenKind.END or (
            tok.kind is TokenKind.SEPARATOR and tok.lexeme in CLOSING_DELIMITERS
        ):
            line, column = opening.span.line, opening.span.column
            raise self.error(
                DiagnosticCode.UNBALANCED_DELIMITER,
                tok,
                f"'{opening.lexeme}' opened at {line}:{column} is never closed "
                f"(found {_describe(tok)})",
            )
        raise self.error(
            DiagnosticCode.UNEXPECTED_TOKEN,
            tok,
            f"Expected '{self.profile.list_separator}' or '{closer}', found {_describe(tok)}",
        )


def _is_namespace(node: Node) -> bool:
    """Whether node is a plain dotted name usable as a call namespace."""
    if not isinstance(node, Reference) or node.identifier is None:
        return False
    if node.identifier.kind is not IdentifierKind.PLAIN:
        return False
    return all(segment.separator == "." for segment in node.chain)


def _describe(tok: Token) -> str:
    if tok.kind is TokenKind.END:
        return "end of formula"
    return f"{tok.kind.value} '{tok.lexeme}'"


class FormulaParser:
    """Parser for formula text in one locale."""

    def __init__(self, profile: LocaleProfile = DOT_DECIMAL):
        """Initialize the parser with the lexer for the locale profile."""
        self.profile = profile
        self.lexer = Lexer(profile)

    def parse(self, formula: str, origin: Tuple[int, int] = (1, 1), indent: int = 0) -> ParseResult:
        """
        Parse formula text and return its tree and diagnostics.

        Args:
            formula: Formula text; a single leading '=' marker is skipped
            origin: (line, column) of the formula's first character
            indent: Column shift for lines after the first

        Returns:
            ParseResult whose ast is always a ChainedExpr (possibly partial)
        """
        if formula.startswith("="):
            formula = formula[1:]
            origin = (origin[0], origin[1] + 1)

        lexed = self.lexer.tokenize(formula, origin, indent)
        diagnostics = DiagnosticBag()
        diagnostics.extend(lexed.diagnostics)

        ast = _ClauseParser(lexed.tokens, self.profile, diagnostics).parse_formula()
        logger.debug(
            "Parsed %d clause(s) with %d diagnostic(s)", len(ast.sequence), len(diagnostics)
        )
        return ParseResult(ast, lexed.comments, sort_diagnostics(diagnostics))

    def extract_function_calls(
        self, ast: Node, named_functions: Optional[Set[str]] = None
    ) -> List[Dict[str, Any]]:
        """Calls in ast (optionally only the named ones), deepest first."""
        return extract_function_calls(ast, named_functions)

    def reconstruct(self, node: Node) -> str:
        """Formula text for node in this parser's locale."""
        return unparse(node, self.profile)
