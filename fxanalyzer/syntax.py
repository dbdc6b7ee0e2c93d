"""
Formula syntax tree.

Nodes are frozen dataclasses compared by identity (eq=False), so they can
key the annotation maps produced by the resolver and delegation analyzer.
Structural comparison goes through dump(), which renders a node fully
parenthesised and ignores spans.

This module provides:
- the node classes and the operator precedence table shared with the parser
- walk / iter_children / extract_function_calls for traversals
- dump (canonical form) and unparse (formula text for a locale)
"""

import enum
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from .diagnostics import Span
from .locale_profile import DOT_DECIMAL, LocaleProfile
from .tokens import KEYWORD_OPERATORS, LOGICAL_KEYWORDS


class Associativity(enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    NONE = "none"


# Binary operators, loosest level first
BINARY_LEVELS: Tuple[Tuple[Tuple[str, ...], Associativity], ...] = (
    (("||", "Or"), Associativity.LEFT),
    (("&&", "And"), Associativity.LEFT),
    (("in", "exactin"), Associativity.NONE),
    (("=", "<>"), Associativity.LEFT),
    (("<", "<=", ">", ">="), Associativity.NONE),
    (("&",), Associativity.LEFT),
    (("+", "-"), Associativity.LEFT),
    (("*", "/"), Associativity.LEFT),
    (("^",), Associativity.RIGHT),
)

BINARY_PRECEDENCE: Dict[str, Tuple[int, Associativity]] = {
    op: (level, assoc) for level, (ops, assoc) in enumerate(BINARY_LEVELS) for op in ops
}

PREFIX_OPERATORS = frozenset({"-", "!", "Not"})
POSTFIX_OPERATORS = frozenset({"%"})
LOGICAL_OPERATORS = frozenset({"&&", "And", "||", "Or", "!", "Not"})

CHAIN_LEVEL = -1
PREFIX_LEVEL = len(BINARY_LEVELS)
MEMBER_LEVEL = PREFIX_LEVEL + 1
POSTFIX_LEVEL = MEMBER_LEVEL + 1
PRIMARY_LEVEL = POSTFIX_LEVEL + 1


class LiteralKind(enum.Enum):
    LOGICAL = "logical"
    NUMBER = "number"
    TEXT = "text"


class IdentifierKind(enum.Enum):
    PLAIN = "plain"
    DISAMBIGUATED = "disambiguated"
    CONTEXT = "context"


@dataclass(frozen=True, eq=False)
class Node:
    """Base class of every syntax tree node."""


@dataclass(frozen=True, eq=False)
class Literal(Node):
    kind: LiteralKind
    value: Union[bool, int, float, str]
    text: str = ""
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class Identifier:
    """Base of a reference chain: a name, [@name], Table[@name] or a context keyword."""

    name: str
    kind: IdentifierKind = IdentifierKind.PLAIN
    scope: Optional[str] = None
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class Segment:
    """One '.name' or '!name' step of a reference chain."""

    separator: str
    name: str
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class Reference(Node):
    base: Union[Identifier, Node]
    chain: Tuple[Segment, ...] = ()
    span: Optional[Span] = None

    @property
    def identifier(self) -> Optional[Identifier]:
        return self.base if isinstance(self.base, Identifier) else None


@dataclass(frozen=True, eq=False)
class FunctionCall(Node):
    name: str
    args: Tuple[Node, ...] = ()
    namespace: Tuple[str, ...] = ()
    span: Optional[Span] = None

    @property
    def qualified_name(self) -> str:
        return ".".join(self.namespace + (self.name,))


@dataclass(frozen=True, eq=False)
class RecordField:
    name: str
    value: Node
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class InlineRecord(Node):
    fields: Tuple[RecordField, ...] = ()
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class InlineTable(Node):
    elements: Tuple[Node, ...] = ()
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class UnaryOp(Node):
    op: str
    operand: Node
    span: Optional[Span] = None

    @property
    def postfix(self) -> bool:
        return self.op in POSTFIX_OPERATORS


@dataclass(frozen=True, eq=False)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node
    span: Optional[Span] = None


@dataclass(frozen=True, eq=False)
class ChainedExpr(Node):
    sequence: Tuple[Node, ...] = ()
    span: Optional[Span] = None


def iter_children(node: Node) -> Iterator[Node]:
    """Yield the direct child nodes of node, in source order."""
    if isinstance(node, Reference):
        if isinstance(node.base, Node):
            yield node.base
    elif isinstance(node, FunctionCall):
        yield from node.args
    elif isinstance(node, InlineRecord):
        for record_field in node.fields:
            yield record_field.value
    elif isinstance(node, InlineTable):
        yield from node.elements
    elif isinstance(node, UnaryOp):
        yield node.operand
    elif isinstance(node, BinaryOp):
        yield node.left
        yield node.right
    elif isinstance(node, ChainedExpr):
        yield from node.sequence


def walk(node: Node) -> Iterator[Node]:
    """Yield node and all its descendants, depth-first pre-order."""
    yield node
    for child in iter_children(node):
        yield from walk(child)


def extract_function_calls(
    ast: Node, function_names: Optional[Set[str]] = None
) -> List[Dict[str, Any]]:
    """
    Extract function calls by walking the AST.

    Args:
        ast: Root node to search
        function_names: Names to look for (qualified names of namespaced
            calls are matched too); None matches every call

    Returns:
        List of call dictionaries (name, args, depth, node) sorted by depth,
        deepest first
    """
    calls = []

    def visit(node: Node, depth: int = 0):
        """Recursively walk the tree collecting matching calls."""
        if isinstance(node, FunctionCall):
            if (
                function_names is None
                or node.name in function_names
                or node.qualified_name in function_names
            ):
                calls.append({"name": node.name, "args": node.args, "depth": depth, "node": node})
            for arg in node.args:
                visit(arg, depth + 1)
            return
        for child in iter_children(node):
            visit(child, depth)

    visit(ast)

    return sorted(calls, key=lambda c: c["depth"], reverse=True)


_KEYWORD_START = re.compile(r"^(?:%s)(?:\s|$)" % "|".join(sorted(KEYWORD_OPERATORS)))
_TRAILING_POINT = re.compile(r"\.(?=[eE]|$)")

RESERVED_NAMES = frozenset(KEYWORD_OPERATORS | set(LOGICAL_KEYWORDS))


def needs_quotes(name: str) -> bool:
    """Whether an identifier must be written in single-quoted form."""
    if not name or name in RESERVED_NAMES:
        return True
    if any(ord(char) > 0xFFFF for char in name):
        return True
    return not name.isidentifier()


def quote_name(name: str) -> str:
    if needs_quotes(name):
        return "'" + name.replace("'", "''") + "'"
    return name


def quote_text(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _literal_text(node: Literal, profile: LocaleProfile) -> str:
    if node.kind is LiteralKind.TEXT:
        return quote_text(node.value)
    if node.kind is LiteralKind.LOGICAL:
        return "true" if node.value else "false"
    text = node.text or repr(node.value)
    # ".5" and "1." have no comma-decimal spelling
    if text.startswith("."):
        text = "0" + text
    text = _TRAILING_POINT.sub("", text)
    return text.replace(".", profile.decimal_separator)


def _identifier_text(identifier: Identifier) -> str:
    if identifier.kind is IdentifierKind.DISAMBIGUATED:
        scope = quote_name(identifier.scope) if identifier.scope else ""
        return f"{scope}[@{quote_name(identifier.name)}]"
    return quote_name(identifier.name)


def _callee_text(node: FunctionCall) -> str:
    # Keyword operators glued to "(" lex as plain names, so Not(x) stays unquoted
    parts = node.namespace + (node.name,)
    return ".".join(part if part in KEYWORD_OPERATORS else quote_name(part) for part in parts)


def _chain_text(chain: Tuple[Segment, ...]) -> str:
    return "".join(segment.separator + quote_name(segment.name) for segment in chain)


def dump(node: Node) -> str:
    """
    Render node in canonical, fully parenthesised form.

    "2 + 3 * 4" dumps as "(2 + (3 * 4))". Two trees are structurally equal
    exactly when their dumps are equal.
    """
    if isinstance(node, Literal):
        return _literal_text(node, DOT_DECIMAL)
    if isinstance(node, Reference):
        if isinstance(node.base, Identifier):
            base = _identifier_text(node.base)
        else:
            base = dump(node.base)
        return base + _chain_text(node.chain)
    if isinstance(node, FunctionCall):
        callee = _callee_text(node)
        return f"{callee}({', '.join(dump(arg) for arg in node.args)})"
    if isinstance(node, InlineRecord):
        fields = ", ".join(f"{quote_name(f.name)}: {dump(f.value)}" for f in node.fields)
        return "{" + fields + "}"
    if isinstance(node, InlineTable):
        return "[" + ", ".join(dump(element) for element in node.elements) + "]"
    if isinstance(node, UnaryOp):
        if node.postfix:
            return f"({dump(node.operand)}{node.op})"
        if node.op == "Not":
            return f"(Not {dump(node.operand)})"
        return f"({node.op}{dump(node.operand)})"
    if isinstance(node, BinaryOp):
        return f"({dump(node.left)} {node.op} {dump(node.right)})"
    if isinstance(node, ChainedExpr):
        return "; ".join(dump(item) for item in node.sequence)
    raise TypeError(f"Not a syntax node: {node!r}")


def _parenthesize(text: str) -> str:
    # A keyword operator must not be glued to the opening parenthesis
    if _KEYWORD_START.match(text):
        return f"( {text})"
    return f"({text})"


def _render(node: Node, profile: LocaleProfile) -> Tuple[str, int]:
    """Return (text, precedence level) for node with minimal parentheses."""
    if isinstance(node, Literal):
        return _literal_text(node, profile), PRIMARY_LEVEL

    if isinstance(node, Reference):
        if isinstance(node.base, Identifier):
            base, level = _identifier_text(node.base), PRIMARY_LEVEL
        else:
            base, level = _render(node.base, profile)
            if level < PRIMARY_LEVEL:
                base = _parenthesize(base)
        if not node.chain:
            return base, PRIMARY_LEVEL
        return base + _chain_text(node.chain), MEMBER_LEVEL

    if isinstance(node, FunctionCall):
        callee = _callee_text(node)
        args = (profile.list_separator + " ").join(
            _render(arg, profile)[0] for arg in node.args
        )
        if _KEYWORD_START.match(args):
            args = " " + args
        return f"{callee}({args})", PRIMARY_LEVEL

    if isinstance(node, InlineRecord):
        fields = []
        for record_field in node.fields:
            value, level = _render(record_field.value, profile)
            if level == CHAIN_LEVEL:
                value = _parenthesize(value)
            fields.append(f"{quote_name(record_field.name)}: {value}")
        return "{" + (profile.list_separator + " ").join(fields) + "}", PRIMARY_LEVEL

    if isinstance(node, InlineTable):
        elements = []
        for element in node.elements:
            text, level = _render(element, profile)
            if level == CHAIN_LEVEL:
                text = _parenthesize(text)
            elements.append(text)
        text = (profile.list_separator + " ").join(elements)
        if _KEYWORD_START.match(text):
            text = " " + text
        return "[" + text + "]", PRIMARY_LEVEL

    if isinstance(node, UnaryOp):
        operand, level = _render(node.operand, profile)
        if node.postfix:
            if level < POSTFIX_LEVEL:
                operand = _parenthesize(operand)
            return operand + node.op, POSTFIX_LEVEL
        if level < PREFIX_LEVEL:
            operand = _parenthesize(operand)
        if node.op == "Not" or _KEYWORD_START.match(operand):
            return f"{node.op} {operand}", PREFIX_LEVEL
        return node.op + operand, PREFIX_LEVEL

    if isinstance(node, BinaryOp):
        level, assoc = BINARY_PRECEDENCE[node.op]
        left, left_level = _render(node.left, profile)
        right, right_level = _render(node.right, profile)
        if left_level < level or (
            left_level == level and assoc in (Associativity.RIGHT, Associativity.NONE)
        ):
            left = _parenthesize(left)
        if right_level < level or (
            right_level == level and assoc in (Associativity.LEFT, Associativity.NONE)
        ):
            right = _parenthesize(right)
        return f"{left} {node.op} {right}", level

    if isinstance(node, ChainedExpr):
        if len(node.sequence) == 1:
            return _render(node.sequence[0], profile)
        separator = profile.chaining_separator + " "
        return separator.join(_render(item, profile)[0] for item in node.sequence), CHAIN_LEVEL

    raise TypeError(f"Not a syntax node: {node!r}")


def unparse(node: Node, profile: LocaleProfile = DOT_DECIMAL) -> str:
    """
    Render node back to formula text for a locale.

    Comments and original spacing are not preserved; parsing the result
    yields a tree whose dump() equals dump(node).
    """
    return _render(node, profile)[0]
