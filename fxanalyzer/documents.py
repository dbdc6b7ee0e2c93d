"""
YAML app documents: finding formulas and the controls that declare them.

The document is composed into a pyyaml node graph rather than loaded, so
every scalar keeps its start mark and each formula can be mapped back to
its (line, column) in the file. A scalar is a formula when its value starts
with '='.

Two control layouts are recognised:

    Screen1 As screen:              Screens:
        Label1 As label:              Screen1:
            Text: ="Hello"              Properties:
                                          Fill: =Color.White
                                        Children:
                                          - Label1:
                                              Control: Label
                                              Properties:
                                                Text: ="Hello"

Formulas inside a gallery's children see an item frame, so ThisItem
resolves there.
"""

import logging
import re
from pathlib import Path
from typing import List, NamedTuple, Optional, Set, Tuple

import yaml

from .diagnostics import ValidationError
from .pipeline import FormulaKey
from .symbols import FrameKind, LexicalScope, ReferenceKind, ScopeFrame, SymbolTable

logger = logging.getLogger(__name__)

CONTROL_KEY_RE = re.compile(r"^\s*(?P<name>\S.*?)\s+As\s+(?P<type>[\w.]+)\s*$")

# Keys that make a mapping a control in the nested layout
CONTROL_MARKERS = ("Control", "Properties")


class FormulaSource(NamedTuple):
    """A formula found in a document, with the '=' marker removed."""

    key: FormulaKey
    text: str
    origin: Tuple[int, int]
    indent: int
    scope: LexicalScope


class ScannedDocument(NamedTuple):
    name: str
    formulas: List[FormulaSource]
    controls: List[str]

    @property
    def symbols(self) -> SymbolTable:
        return SymbolTable({control: ReferenceKind.CONTROL for control in self.controls})


class _Context(NamedTuple):
    control: Optional[str] = None
    parent: Optional[str] = None
    frames: Tuple[ScopeFrame, ...] = ()


def _control_of(key: str, value: yaml.Node) -> Optional[Tuple[str, str]]:
    """(name, type) when the mapping entry key: value declares a control."""
    match = CONTROL_KEY_RE.match(key)
    if match:
        return match.group("name"), match.group("type")
    if isinstance(value, yaml.MappingNode):
        keys = {k.value: v for k, v in value.value if isinstance(k, yaml.ScalarNode)}
        if any(marker in keys for marker in CONTROL_MARKERS):
            control_type = keys.get("Control")
            if isinstance(control_type, yaml.ScalarNode):
                return key, control_type.value
            return key, ""
    return None


class _Scanner:
    def __init__(self, text: str, document: str):
        self.lines = text.splitlines()
        self.document = document
        self.formulas: List[FormulaSource] = []
        self.controls: List[str] = []
        # Aliases share nodes and may form cycles; each node is scanned once
        self.seen: Set[int] = set()

    def first_visit(self, node: yaml.Node) -> bool:
        if id(node) in self.seen:
            return False
        self.seen.add(id(node))
        return True

    def visit(self, node: yaml.Node, context: _Context) -> None:
        if not self.first_visit(node):
            return
        if isinstance(node, yaml.SequenceNode):
            for item in node.value:
                self.visit(item, context)
        elif isinstance(node, yaml.MappingNode):
            for key_node, value_node in node.value:
                self.visit_entry(key_node, value_node, context)

    def visit_entry(self, key_node: yaml.Node, value_node: yaml.Node, context: _Context) -> None:
        if not isinstance(key_node, yaml.ScalarNode):
            return
        key = str(key_node.value)

        control = _control_of(key, value_node)
        if control is not None:
            name, control_type = control
            self.controls.append(name)
            own = _Context(name, context.control, context.frames)
            self.visit_control(value_node, own, "gallery" in control_type.lower())
        elif isinstance(value_node, yaml.ScalarNode):
            if str(value_node.value).startswith("=") and self.first_visit(value_node):
                self.add_formula(key, value_node, context)
        else:
            self.visit(value_node, context)

    def visit_control(self, node: yaml.Node, context: _Context, gallery: bool) -> None:
        """Visit a control body; children of a gallery get an item frame."""
        if not gallery or not isinstance(node, yaml.MappingNode):
            self.visit(node, context)
            return
        if not self.first_visit(node):
            return
        children = context._replace(frames=context.frames + (ScopeFrame(FrameKind.ITEM),))
        for key_node, value_node in node.value:
            own_property = isinstance(value_node, yaml.ScalarNode) or key_node.value == "Properties"
            self.visit_entry(key_node, value_node, context if own_property else children)

    def add_formula(self, prop: str, node: yaml.ScalarNode, context: _Context) -> None:
        origin, indent = self.locate(node)
        text = str(node.value)[1:]
        if node.style == ">" and indent:
            # Folding joins lines with spaces; keep the source line breaks so
            # positions past the first line still map back to the file
            text = self.block_text(origin[0] - 1, indent)[1:]
        key = FormulaKey(self.document, context.control or "", prop)
        scope = LexicalScope(context.frames, context.control, context.parent)
        self.formulas.append(FormulaSource(key, text, origin, indent, scope))

    def block_text(self, first: int, indent: int) -> str:
        """Source lines of a block scalar starting at line index first, dedented."""
        lines = []
        for line in self.lines[first:]:
            if line.strip() and len(line) - len(line.lstrip(" ")) < indent:
                break
            lines.append(line[indent:])
        while lines and not lines[-1].strip():
            lines.pop()
        return "\n".join(lines)

    def locate(self, node: yaml.ScalarNode) -> Tuple[Tuple[int, int], int]:
        """Origin (1-based) of the character after '=', and block indentation."""
        mark = node.start_mark
        if node.style in ("|", ">"):
            for index in range(mark.line + 1, len(self.lines)):
                line = self.lines[index]
                if line.strip():
                    indent = len(line) - len(line.lstrip(" "))
                    return (index + 1, indent + 2), indent
            return (mark.line + 1, mark.column + 1), 0
        column = _skip_properties(self.lines[mark.line], mark.column)
        quote = 1 if node.style in ('"', "'") else 0
        return (mark.line + 1, column + quote + 2), 0


def _skip_properties(line: str, column: int) -> int:
    """Column of a scalar's value when its start mark sits on an anchor or tag."""
    while column < len(line) and line[column] in "&!":
        while column < len(line) and not line[column].isspace():
            column += 1
        while column < len(line) and line[column] == " ":
            column += 1
    return column


def scan_document(text: str, document: str = "") -> ScannedDocument:
    """
    Find every formula and control in a YAML document.

    Raises:
        ValidationError: If the text is not valid YAML
    """
    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError as e:
        raise ValidationError(f"{document}: Invalid YAML syntax - {e}") from e

    scanner = _Scanner(text, document)
    if root is not None:
        scanner.visit(root, _Context())
    logger.debug(
        "%s: %d formula(s), %d control(s)", document, len(scanner.formulas), len(scanner.controls)
    )
    return ScannedDocument(document, scanner.formulas, scanner.controls)


def extract_formulas(text: str, document: str = "") -> List[FormulaSource]:
    return scan_document(text, document).formulas


def document_symbols(text: str, document: str = "") -> SymbolTable:
    """SymbolTable with a CONTROL entry for each control the document declares."""
    return scan_document(text, document).symbols


def load_document(path: Path) -> ScannedDocument:
    """
    Read and scan a YAML document from disk.

    Raises:
        ValidationError: If the file cannot be read or is not valid YAML
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ValidationError(f"{path.name}: Error reading file - {e}") from e
    return scan_document(text, path.name)
