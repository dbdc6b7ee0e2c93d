"""
Delegation analyzer.

Decides which parts of a table query can run at the data source. Roots are
the query calls in DELEGATION_ROOTS whose source table (their first
argument, seen through nested queries) has capability metadata; every
node inside a root's predicate, sort or column arguments is classified as
delegable or not.

Policy:
- literals and references that do not depend on the current row are
  delegable; a row field must have a descriptor and be filterable
- an operator applied to a row field needs the operator's tag in that
  field's supported functions, and likewise an allow-listed function
  called directly on a row field needs its lower-cased name
- And / Or / Not delegate only when every branch does; there is no
  partial push-down
- each non-delegable leaf clause gets exactly one NonDelegableClause
  warning; combinators that fail through their branches do not warn again
"""

import enum
import logging
from typing import Dict, List, Mapping, NamedTuple, Optional

from .capabilities import OPERATOR_TAGS, UNARY_TAGS, CapabilityDescriptor, CapabilityTable
from .diagnostics import Diagnostic, DiagnosticBag, DiagnosticCode
from .resolver import Resolution, table_source
from .symbols import ReferenceKind
from .syntax import (
    LOGICAL_OPERATORS,
    BinaryOp,
    ChainedExpr,
    FunctionCall,
    InlineRecord,
    InlineTable,
    Literal,
    LiteralKind,
    Node,
    Reference,
    UnaryOp,
    extract_function_calls,
    iter_children,
)

logger = logging.getLogger(__name__)

PREDICATE_ROOTS = frozenset({"Filter", "CountIf", "RemoveIf"})
DELEGATION_ROOTS = PREDICATE_ROOTS | {"LookUp", "Sort", "SortByColumns", "ShowColumns"}

COMBINATOR_FUNCTIONS = frozenset({"And", "Or", "Not"})

DELEGABLE_FUNCTIONS = COMBINATOR_FUNCTIONS | {
    "StartsWith",
    "EndsWith",
    "IsBlank",
    "IsEmpty",
    "Blank",
    "Today",
    "Now",
    "Lower",
    "Upper",
    "Trim",
    "Len",
    "Value",
    "Text",
    "DateAdd",
}


class Delegability(enum.Enum):
    DELEGABLE = "delegable"
    NON_DELEGABLE = "non-delegable"


class Classification(NamedTuple):
    delegability: Delegability
    reason: str = ""

    @property
    def delegable(self) -> bool:
        return self.delegability is Delegability.DELEGABLE


DELEGABLE = Classification(Delegability.DELEGABLE)


def _non_delegable(reason: str) -> Classification:
    return Classification(Delegability.NON_DELEGABLE, reason)


class DelegationReport:
    """Classification of every node inside analysed query roots."""

    def __init__(self, classifications: Dict[Node, Classification], diagnostics: List[Diagnostic]):
        self.classifications = classifications
        self.diagnostics = diagnostics

    def classification(self, node: Node) -> Optional[Classification]:
        return self.classifications.get(node)

    def is_delegable(self, node: Node) -> Optional[bool]:
        """True/False for classified nodes, None for nodes outside any root."""
        found = self.classifications.get(node)
        return None if found is None else found.delegable

    @property
    def roots(self) -> List[FunctionCall]:
        return [
            node
            for node in self.classifications
            if isinstance(node, FunctionCall) and node.name in DELEGATION_ROOTS
        ]


class _Query:
    """The root being analysed: its source table and that table's field metadata."""

    def __init__(self, source: str, fields: Mapping[str, CapabilityDescriptor], resolution: Resolution):
        self.source = source
        self.fields = fields
        self.resolution = resolution

    def row_field(self, node: Node) -> Optional[str]:
        """Field name when node reads a field of the current row, else None."""
        if not isinstance(node, Reference) or node.identifier is None:
            return None
        binding = self.resolution.binding_for(node)
        if binding is None:
            return None
        if binding.kind is ReferenceKind.DATA_SOURCE_FIELD and binding.source == self.source:
            return binding.name
        if binding.kind is ReferenceKind.CONTEXT_KEYWORD and binding.frame is not None:
            if binding.frame.source == self.source and binding.member is not None:
                return binding.member
        return None


def _is_combinator(node: Node) -> bool:
    if isinstance(node, BinaryOp):
        return node.op in LOGICAL_OPERATORS
    if isinstance(node, UnaryOp):
        return node.op in LOGICAL_OPERATORS
    if isinstance(node, FunctionCall):
        return node.name in COMBINATOR_FUNCTIONS and not node.namespace
    return False


class DelegationAnalyzer:
    """Classifies query roots against a frozen CapabilityTable."""

    def __init__(self, capabilities: Optional[CapabilityTable] = None):
        self.capabilities = capabilities if capabilities is not None else CapabilityTable()

    def analyze(self, ast: Node, resolution: Resolution) -> DelegationReport:
        """
        Classify every query root found in ast.

        Roots are visited deepest first, so a nested query is classified
        before the query that reads from it.

        Args:
            ast: Root node of a formula
            resolution: The resolver's bindings for ast

        Returns:
            DelegationReport with per-node classifications and one
            NonDelegableClause warning per failing leaf clause
        """
        classifications: Dict[Node, Classification] = {}
        diagnostics = DiagnosticBag()

        for call in extract_function_calls(ast, DELEGATION_ROOTS):
            node = call["node"]
            if node.namespace:
                continue
            self._analyze_root(node, resolution, classifications, diagnostics)

        logger.debug(
            "Classified %d node(s), %d delegation warning(s)", len(classifications), len(diagnostics)
        )
        return DelegationReport(classifications, diagnostics.sorted())

    def analyze_call(self, call: FunctionCall, resolution: Resolution) -> DelegationReport:
        """
        Classify a single query root and the queries nested in it.

        Raises:
            ValueError: If call is not a delegation root
        """
        if not isinstance(call, FunctionCall) or call.name not in DELEGATION_ROOTS:
            raise ValueError(f"Not a delegable query: {getattr(call, 'name', call)!r}")
        return self.analyze(call, resolution)

    def _analyze_root(self, node: FunctionCall, resolution, classifications, diagnostics) -> None:
        if not node.args:
            return
        source = table_source(node.args[0], resolution.bindings)
        fields = self.capabilities.for_source(source)
        if fields is None:
            return
        query = _Query(source, fields, resolution)

        results = []
        inner = classifications.get(node.args[0])
        if inner is not None and not inner.delegable:
            results.append(_non_delegable(f"inner query on '{source}' is not delegable"))

        if node.name in PREDICATE_ROOTS or node.name == "LookUp":
            predicates = node.args[1:] if node.name in PREDICATE_ROOTS else node.args[1:2]
            for predicate in predicates:
                results.append(self._clause(predicate, query, classifications, diagnostics))
        elif node.name == "Sort":
            if len(node.args) > 1:
                results.append(self._sort_expression(node.args[1], query, classifications, diagnostics))
        elif node.name == "SortByColumns":
            for column in node.args[1::2]:
                results.append(self._column(column, "sortable", query, classifications, diagnostics))
        elif node.name == "ShowColumns":
            for column in node.args[1:]:
                results.append(self._column(column, "selectable", query, classifications, diagnostics))

        failed = next((r for r in results if not r.delegable), None)
        classifications[node] = failed or DELEGABLE

    def _clause(self, node: Node, query: _Query, out, diagnostics: DiagnosticBag) -> Classification:
        """Classify one predicate clause, splitting And / Or / Not into branches."""
        if _is_combinator(node):
            results = [self._clause(branch, query, out, diagnostics) for branch in iter_children(node)]
            failed = next((r for r in results if not r.delegable), None)
            result = _non_delegable(failed.reason) if failed else DELEGABLE
            out[node] = result
            return result

        result = self._classify(node, query, out)
        if not result.delegable:
            diagnostics.report(DiagnosticCode.NON_DELEGABLE, node.span, f"Clause cannot be delegated: {result.reason}")
        return result

    def _sort_expression(self, node: Node, query: _Query, out, diagnostics) -> Classification:
        field = query.row_field(node)
        if field is None:
            result = _non_delegable("sort expression is not a field of the source")
        else:
            descriptor = query.fields.get(field)
            if descriptor is None or not descriptor.sortable:
                result = _non_delegable(f"field '{field}' is not sortable")
            else:
                result = DELEGABLE
        out[node] = result
        if not result.delegable:
            diagnostics.report(DiagnosticCode.NON_DELEGABLE, node.span, f"Sort cannot be delegated: {result.reason}")
        return result

    def _column(self, node: Node, capability: str, query: _Query, out, diagnostics) -> Classification:
        if not (isinstance(node, Literal) and node.kind is LiteralKind.TEXT):
            result = _non_delegable("column name is not a text literal")
        else:
            descriptor = query.fields.get(node.value)
            if descriptor is None or not getattr(descriptor, capability):
                result = _non_delegable(f"column '{node.value}' is not {capability}")
            else:
                result = DELEGABLE
        out[node] = result
        if not result.delegable:
            diagnostics.report(DiagnosticCode.NON_DELEGABLE, node.span, f"Column cannot be delegated: {result.reason}")
        return result

    def _classify(self, node: Node, query: _Query, out) -> Classification:
        result = self._classify_node(node, query, out)
        # A nested query keeps the classification from its own analysis
        out.setdefault(node, result)
        return result

    def _classify_node(self, node: Node, query: _Query, out) -> Classification:
        if isinstance(node, FunctionCall) and (node.namespace or node.name not in DELEGABLE_FUNCTIONS):
            return _non_delegable(f"'{node.qualified_name}' cannot be delegated")

        children = [self._classify(child, query, out) for child in iter_children(node)]
        failed = next((c for c in children if not c.delegable), None)

        if isinstance(node, Literal):
            return DELEGABLE

        if isinstance(node, Reference):
            if node.identifier is None:
                return failed or DELEGABLE
            return self._classify_reference(node, query)

        if failed is not None:
            return failed

        if isinstance(node, UnaryOp):
            if node.op in UNARY_TAGS:
                return self._check_field(node.operand, UNARY_TAGS[node.op], node.op, query)
            return DELEGABLE

        if isinstance(node, BinaryOp):
            if node.op in LOGICAL_OPERATORS:
                return DELEGABLE
            tag = OPERATOR_TAGS.get(node.op)
            if tag is None:
                return _non_delegable(f"operator '{node.op}' cannot be delegated")
            left = self._check_field(node.left, tag, node.op, query)
            return left if not left.delegable else self._check_field(node.right, tag, node.op, query)

        if isinstance(node, FunctionCall):
            if node.name in COMBINATOR_FUNCTIONS:
                return DELEGABLE
            for arg in node.args:
                checked = self._check_field(arg, node.name.lower(), node.name, query)
                if not checked.delegable:
                    return checked
            return DELEGABLE

        if isinstance(node, ChainedExpr):
            return _non_delegable("chained expressions cannot be delegated")

        if isinstance(node, (InlineRecord, InlineTable)):
            return DELEGABLE

        return _non_delegable(f"unsupported expression {type(node).__name__}")

    def _classify_reference(self, node: Reference, query: _Query) -> Classification:
        binding = query.resolution.binding_for(node)
        if binding is None or binding.kind is ReferenceKind.UNRESOLVED:
            name = node.identifier.name
            return _non_delegable(f"'{name}' could not be resolved")
        field = query.row_field(node)
        if field is None:
            return DELEGABLE
        descriptor = query.fields.get(field)
        if descriptor is None:
            return _non_delegable(f"field '{field}' has no capability metadata")
        if not descriptor.filterable:
            return _non_delegable(f"field '{field}' is not filterable")
        return DELEGABLE

    @staticmethod
    def _check_field(operand: Node, tag: str, spelling: str, query: _Query) -> Classification:
        field = query.row_field(operand)
        if field is None:
            return DELEGABLE
        descriptor = query.fields.get(field)
        if descriptor is None or not descriptor.supports(tag):
            return _non_delegable(f"field '{field}' does not support '{spelling}'")
        return DELEGABLE
