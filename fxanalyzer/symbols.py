"""
Symbol tables and lexical scopes supplied to the reference resolver.

Both are built once and frozen before any formula is analysed: SymbolTable
copies its input into read-only mappings and LexicalScope is an immutable
tuple of frames, so concurrent analyses can share them freely.
"""

import enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, NamedTuple, Optional, Tuple, Union


class ReferenceKind(enum.Enum):
    CONTROL = "control"
    CONTROL_PROPERTY = "control_property"
    GLOBAL_VARIABLE = "global_variable"
    CONTEXT_VARIABLE = "context_variable"
    DATA_SOURCE = "data_source"
    DATA_SOURCE_FIELD = "data_source_field"
    ENUM = "enum"
    ENUM_MEMBER = "enum_member"
    CONTEXT_KEYWORD = "context_keyword"
    UNRESOLVED = "unresolved"

    @classmethod
    def parse(cls, value: Union["ReferenceKind", str]) -> "ReferenceKind":
        """
        Accept a ReferenceKind or its name/value ('global_variable', 'CONTROL').

        Raises:
            ValueError: If value names no kind
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        for kind in cls:
            if kind.value == key:
                return kind
        raise ValueError(f"Unknown reference kind: {value!r}")


class SymbolTable:
    """
    Read-only map from global identifier text to its ReferenceKind.

    Data sources may declare their field names; a source listed in
    data_source_fields is a DATA_SOURCE even when symbols omits it.
    """

    def __init__(
        self,
        symbols: Optional[Mapping[str, Union[ReferenceKind, str]]] = None,
        data_source_fields: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        entries: Dict[str, ReferenceKind] = {
            name: ReferenceKind.parse(kind) for name, kind in (symbols or {}).items()
        }
        fields: Dict[str, FrozenSet[str]] = {}
        for source, names in (data_source_fields or {}).items():
            fields[source] = frozenset(names)
            entries.setdefault(source, ReferenceKind.DATA_SOURCE)
        self._symbols = MappingProxyType(entries)
        self._fields = MappingProxyType(fields)

    def lookup(self, name: str) -> Optional[ReferenceKind]:
        return self._symbols.get(name)

    def fields_of(self, source: str) -> Optional[FrozenSet[str]]:
        """Declared fields of a data source, or None when unknown."""
        return self._fields.get(source)

    def merged(self, other: "SymbolTable") -> "SymbolTable":
        """A new table holding both; entries of other win on conflict."""
        symbols = dict(self._symbols)
        symbols.update(other._symbols)
        fields = dict(self._fields)
        fields.update(other._fields)
        return SymbolTable(symbols, fields)

    def items(self):
        return self._symbols.items()

    def __contains__(self, name: object) -> bool:
        return name in self._symbols

    def __iter__(self) -> Iterator[str]:
        return iter(self._symbols)

    def __len__(self) -> int:
        return len(self._symbols)

    def __repr__(self) -> str:
        return f"SymbolTable({len(self._symbols)} symbol(s), {len(self._fields)} data source(s))"


class FrameKind(enum.Enum):
    RECORD = "record"  # ThisRecord inside Filter, ForAll, ...
    ITEM = "item"  # ThisItem inside a gallery template


class ScopeFrame(NamedTuple):
    """
    One record scope. fields None means the field set is unknown, in which
    case any otherwise unresolved name is taken to be one of its fields.
    """

    kind: FrameKind
    source: Optional[str] = None
    fields: Optional[FrozenSet[str]] = None

    def has_field(self, name: str) -> bool:
        return self.fields is not None and name in self.fields


class LexicalScope(NamedTuple):
    """The scopes surrounding a formula, innermost frame last."""

    frames: Tuple[ScopeFrame, ...] = ()
    self_control: Optional[str] = None
    parent_control: Optional[str] = None

    def push(self, frame: ScopeFrame) -> "LexicalScope":
        return self._replace(frames=self.frames + (frame,))

    def innermost(self, kind: Optional[FrameKind] = None) -> Optional[ScopeFrame]:
        for frame in reversed(self.frames):
            if kind is None or frame.kind is kind:
                return frame
        return None


class Binding(NamedTuple):
    """
    What a Reference resolved to.

    name is the resolved symbol (field, control, variable, keyword), source
    the data source owning a field (for Self/Parent, the control they stand
    for), frame the record scope it came from and member the first chain
    segment after the base, if any.
    """

    kind: ReferenceKind
    name: str
    source: Optional[str] = None
    frame: Optional[ScopeFrame] = None
    member: Optional[str] = None
