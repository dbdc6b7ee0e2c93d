"""Per-field data source capability metadata used by the delegation analyzer."""

from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, NamedTuple, Optional

OPERATOR_TAGS = {
    "=": "eq",
    "<>": "ne",
    "<": "lt",
    "<=": "le",
    ">": "gt",
    ">=": "ge",
    "in": "in",
    "exactin": "exactin",
    "+": "add",
    "-": "sub",
    "*": "mul",
    "/": "div",
    "&": "concat",
    "^": "pow",
}

UNARY_TAGS = {"-": "neg", "%": "percent"}


class CapabilityDescriptor(NamedTuple):
    """What a data source can do server-side with one field."""

    filterable: bool = True
    sortable: bool = True
    selectable: bool = True
    supported_filter_functions: FrozenSet[str] = frozenset()

    def supports(self, tag: str) -> bool:
        return self.filterable and tag in self.supported_filter_functions

    @classmethod
    def build(
        cls,
        filterable: bool = True,
        sortable: bool = True,
        selectable: bool = True,
        functions: Iterable[str] = (),
    ) -> "CapabilityDescriptor":
        return cls(filterable, sortable, selectable, frozenset(f.lower() for f in functions))


class CapabilityTable:
    """Read-only map of data source -> field -> CapabilityDescriptor."""

    def __init__(self, sources: Optional[Mapping[str, Mapping[str, CapabilityDescriptor]]] = None):
        frozen: Dict[str, Mapping[str, CapabilityDescriptor]] = {
            source: MappingProxyType(dict(fields)) for source, fields in (sources or {}).items()
        }
        self._sources = MappingProxyType(frozen)

    def for_source(self, source: Optional[str]) -> Optional[Mapping[str, CapabilityDescriptor]]:
        """Field descriptors of a data source, or None when it has no metadata."""
        if source is None:
            return None
        return self._sources.get(source)

    def descriptor(self, source: Optional[str], field: str) -> Optional[CapabilityDescriptor]:
        fields = self.for_source(source)
        if fields is None:
            return None
        return fields.get(field)

    def __contains__(self, source: object) -> bool:
        return source in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def __repr__(self) -> str:
        return f"CapabilityTable({sorted(self._sources)})"
