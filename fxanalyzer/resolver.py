"""
Reference resolver.

Binds every Reference node whose base is an identifier to a ReferenceKind,
using the frozen SymbolTable and the lexical scope supplied by the caller.
Record-scope functions (Filter, ForAll, ...) push a record frame while
their row arguments are visited, so the frames in effect for a reference
depend on where it sits in the tree.

Resolution order for a plain name:
1. record frames, innermost first, whose declared fields contain the name
2. the global SymbolTable
3. the innermost frame whose fields are unknown
4. otherwise UNRESOLVED, with an UnresolvedIdentifier warning

[@Name] looks at the global table only and Table[@Field] at the outermost
frame over Table, so neither can be captured by a local field.
"""

import logging
from typing import Dict, List, Optional

from .diagnostics import Diagnostic, DiagnosticBag, DiagnosticCode
from .symbols import Binding, FrameKind, LexicalScope, ReferenceKind, ScopeFrame, SymbolTable
from .syntax import FunctionCall, IdentifierKind, Node, Reference, iter_children

logger = logging.getLogger(__name__)

RECORD_SCOPE_FUNCTIONS = frozenset(
    {
        "Filter",
        "LookUp",
        "Sort",
        "ForAll",
        "Sum",
        "CountIf",
        "AddColumns",
        "Average",
        "Max",
        "Min",
        "RemoveIf",
        "UpdateIf",
    }
)

# Calls whose result has the same fields as their first argument
ROW_PRESERVING_FUNCTIONS = frozenset({"Filter", "Sort", "SortByColumns", "Search", "FirstN", "LastN"})

_MEMBER_KINDS = {
    ReferenceKind.CONTROL: ReferenceKind.CONTROL_PROPERTY,
    ReferenceKind.ENUM: ReferenceKind.ENUM_MEMBER,
}


class Resolution:
    """Bindings for every identifier-based Reference in one tree."""

    def __init__(self, bindings: Dict[Reference, Binding], diagnostics: List[Diagnostic]):
        self.bindings = bindings
        self.diagnostics = diagnostics

    def binding_for(self, node: Node) -> Optional[Binding]:
        return self.bindings.get(node)

    @property
    def unresolved(self) -> List[Reference]:
        return [ref for ref, b in self.bindings.items() if b.kind is ReferenceKind.UNRESOLVED]


def table_source(node: Node, bindings: Dict[Reference, Binding]) -> Optional[str]:
    """
    Name of the data source a table expression reads from.

    Follows the first argument of row-preserving calls, so
    Sort(Filter(Orders, ...), ...) reads from Orders. Returns None when the
    table is not a data source.
    """
    if isinstance(node, FunctionCall):
        if node.name in ROW_PRESERVING_FUNCTIONS and not node.namespace and node.args:
            return table_source(node.args[0], bindings)
        return None
    if isinstance(node, Reference) and not node.chain:
        binding = bindings.get(node)
        if binding is not None and binding.kind is ReferenceKind.DATA_SOURCE:
            return binding.name
    return None


class ReferenceResolver:
    """Resolves references against one frozen SymbolTable."""

    def __init__(self, symbols: Optional[SymbolTable] = None):
        self.symbols = symbols if symbols is not None else SymbolTable()

    def resolve(self, ast: Node, scope: Optional[LexicalScope] = None) -> Resolution:
        """
        Bind every identifier reference in ast.

        Args:
            ast: Root node, normally the parser's ChainedExpr
            scope: Frames and controls surrounding the formula

        Returns:
            Resolution mapping each Reference node to its Binding, plus
            UnresolvedIdentifier / ContextUnavailable warnings
        """
        bindings: Dict[Reference, Binding] = {}
        diagnostics = DiagnosticBag()
        self._visit(ast, scope or LexicalScope(), bindings, diagnostics)
        logger.debug("Resolved %d reference(s), %d warning(s)", len(bindings), len(diagnostics))
        return Resolution(bindings, diagnostics.sorted())

    def _visit(self, node: Node, scope: LexicalScope, bindings, diagnostics: DiagnosticBag) -> None:
        if isinstance(node, Reference) and node.identifier is not None:
            bindings[node] = self._bind(node, scope, diagnostics)
            return

        if isinstance(node, FunctionCall) and node.name in RECORD_SCOPE_FUNCTIONS and not node.namespace:
            if not node.args:
                return
            self._visit(node.args[0], scope, bindings, diagnostics)
            source = table_source(node.args[0], bindings)
            fields = self.symbols.fields_of(source) if source is not None else None
            inner = scope.push(ScopeFrame(FrameKind.RECORD, source, fields))
            for arg in node.args[1:]:
                self._visit(arg, inner, bindings, diagnostics)
            return

        for child in iter_children(node):
            self._visit(child, scope, bindings, diagnostics)

    def _bind(self, ref: Reference, scope: LexicalScope, diagnostics: DiagnosticBag) -> Binding:
        ident = ref.identifier
        member = ref.chain[0].name if ref.chain else None

        if ident.kind is IdentifierKind.CONTEXT:
            return self._bind_context(ref, scope, diagnostics)

        if ident.kind is IdentifierKind.DISAMBIGUATED:
            if ident.scope is None:
                kind = self.symbols.lookup(ident.name)
                if kind is None:
                    return self._unresolved(ref, diagnostics, f"Global name '{ident.name}' is not defined")
                return self._refine(Binding(kind, ident.name, member=member))
            return self._bind_qualified_field(ref, scope, diagnostics)

        for frame in reversed(scope.frames):
            if frame.has_field(ident.name):
                return Binding(ReferenceKind.DATA_SOURCE_FIELD, ident.name, frame.source, frame, member)

        kind = self.symbols.lookup(ident.name)
        if kind is not None:
            return self._refine(Binding(kind, ident.name, member=member))

        for frame in reversed(scope.frames):
            if frame.fields is None:
                return Binding(ReferenceKind.DATA_SOURCE_FIELD, ident.name, frame.source, frame, member)

        return self._unresolved(ref, diagnostics, f"Name '{ident.name}' is not defined")

    def _bind_qualified_field(
        self, ref: Reference, scope: LexicalScope, diagnostics: DiagnosticBag
    ) -> Binding:
        """Table[@Field]: the outermost frame over Table, else the global data source."""
        ident = ref.identifier
        member = ref.chain[0].name if ref.chain else None

        frame = next((f for f in scope.frames if f.source == ident.scope), None)
        if frame is not None:
            fields = frame.fields
        elif self.symbols.lookup(ident.scope) is ReferenceKind.DATA_SOURCE:
            fields = self.symbols.fields_of(ident.scope)
        else:
            return self._unresolved(ref, diagnostics, f"Data source '{ident.scope}' is not defined")

        if fields is not None and ident.name not in fields:
            return self._unresolved(
                ref, diagnostics, f"Data source '{ident.scope}' has no field '{ident.name}'"
            )
        return Binding(ReferenceKind.DATA_SOURCE_FIELD, ident.name, ident.scope, frame, member)

    def _bind_context(self, ref: Reference, scope: LexicalScope, diagnostics: DiagnosticBag) -> Binding:
        ident = ref.identifier
        member = ref.chain[0].name if ref.chain else None

        if ident.name in ("Self", "Parent"):
            control = scope.self_control if ident.name == "Self" else scope.parent_control
            if control is None:
                diagnostics.report(
                    DiagnosticCode.CONTEXT_UNAVAILABLE,
                    ident.span or ref.span,
                    f"'{ident.name}' has no control in this context",
                )
            return Binding(ReferenceKind.CONTEXT_KEYWORD, ident.name, control, member=member)

        kind = FrameKind.ITEM if ident.name == "ThisItem" else None
        frame = scope.innermost(kind)
        if frame is None:
            diagnostics.report(
                DiagnosticCode.CONTEXT_UNAVAILABLE,
                ident.span or ref.span,
                f"'{ident.name}' is only available inside a record scope",
            )
            return Binding(ReferenceKind.CONTEXT_KEYWORD, ident.name, member=member)

        if member is not None and frame.fields is not None and member not in frame.fields:
            segment = ref.chain[0]
            where = f"'{frame.source}'" if frame.source else "the current record"
            diagnostics.report(
                DiagnosticCode.UNRESOLVED_IDENTIFIER,
                segment.span or ref.span,
                f"Field '{member}' does not exist in {where}",
            )
        return Binding(ReferenceKind.CONTEXT_KEYWORD, ident.name, frame.source, frame, member)

    @staticmethod
    def _refine(binding: Binding) -> Binding:
        if binding.member is not None and binding.kind in _MEMBER_KINDS:
            return binding._replace(kind=_MEMBER_KINDS[binding.kind])
        return binding

    @staticmethod
    def _unresolved(ref: Reference, diagnostics: DiagnosticBag, message: str) -> Binding:
        ident = ref.identifier
        diagnostics.report(DiagnosticCode.UNRESOLVED_IDENTIFIER, ident.span or ref.span, message)
        member = ref.chain[0].name if ref.chain else None
        return Binding(ReferenceKind.UNRESOLVED, ident.name, member=member)
