#!/usr/bin/env python3
"""
Test suite for scanning YAML app documents.
"""

import tempfile
from pathlib import Path

import pytest

from fxanalyzer.diagnostics import ValidationError
from fxanalyzer.documents import document_symbols, extract_formulas, load_document, scan_document
from fxanalyzer.formula_parser import FormulaParser
from fxanalyzer.symbols import FrameKind, ReferenceKind

FLAT_DOCUMENT = """\
Screen1 As screen:
    Fill: =Color.White
    Label1 As label:
        Text: ="Hello"
        Width: 200
    Gallery1 As gallery.galleryVertical:
        Items: =Filter(Orders, Status = "Open")
        Title1 As label:
            Text: =ThisItem.Name
"""

NESTED_DOCUMENT = """\
Screens:
  Screen1:
    Properties:
      OnVisible: =Set(varReady, true)
    Children:
      - Gallery1:
          Control: Gallery
          Properties:
            Items: =Orders
          Children:
            - Label1:
                Control: Label
                Properties:
                  Text: =ThisItem.Name
"""


def by_key(formulas):
    return {str(f.key): f for f in formulas}


class TestFlatLayout:
    """Test the 'Name As type' control layout."""

    def setup_method(self):
        self.document = scan_document(FLAT_DOCUMENT, "app.yaml")
        self.formulas = by_key(self.document.formulas)

    def test_formulas_are_found(self):
        assert sorted(self.formulas) == [
            "Gallery1.Items",
            "Label1.Text",
            "Screen1.Fill",
            "Title1.Text",
        ]

    def test_equals_marker_is_removed(self):
        assert self.formulas["Screen1.Fill"].text == "Color.White"
        assert self.formulas["Label1.Text"].text == '"Hello"'

    def test_non_formula_values_are_skipped(self):
        assert "Label1.Width" not in self.formulas

    def test_origins(self):
        assert self.formulas["Screen1.Fill"].origin == (2, 12)
        assert self.formulas["Label1.Text"].origin == (4, 16)

    def test_controls(self):
        assert self.document.controls == ["Screen1", "Label1", "Gallery1", "Title1"]
        assert self.document.symbols.lookup("Gallery1") is ReferenceKind.CONTROL

    def test_self_and_parent(self):
        scope = self.formulas["Label1.Text"].scope
        assert scope.self_control == "Label1"
        assert scope.parent_control == "Screen1"
        assert self.formulas["Screen1.Fill"].scope.parent_control is None

    def test_gallery_items_have_no_item_frame(self):
        assert self.formulas["Gallery1.Items"].scope.frames == ()

    def test_gallery_children_have_item_frame(self):
        scope = self.formulas["Title1.Text"].scope
        assert [f.kind for f in scope.frames] == [FrameKind.ITEM]
        assert scope.parent_control == "Gallery1"

    def test_keys_carry_document_name(self):
        assert all(f.key.document == "app.yaml" for f in self.document.formulas)


class TestNestedLayout:
    """Test the Control / Properties / Children layout."""

    def setup_method(self):
        self.formulas = by_key(extract_formulas(NESTED_DOCUMENT, "app.yaml"))

    def test_formulas_are_found(self):
        assert sorted(self.formulas) == ["Gallery1.Items", "Label1.Text", "Screen1.OnVisible"]

    def test_gallery_children_have_item_frame(self):
        label = self.formulas["Label1.Text"]
        assert [f.kind for f in label.scope.frames] == [FrameKind.ITEM]
        assert label.scope.parent_control == "Gallery1"
        assert self.formulas["Gallery1.Items"].scope.frames == ()

    def test_origin(self):
        assert self.formulas["Label1.Text"].origin == (14, 26)

    def test_symbols(self):
        symbols = document_symbols(NESTED_DOCUMENT)
        assert sorted(symbols) == ["Gallery1", "Label1", "Screen1"]


class TestScalarStyles:
    """Test position mapping for quoted and block scalars."""

    def test_double_quoted(self):
        text = 'App:\n  OnStart: "=Set(x, 1)"\n'
        formula = extract_formulas(text)[0]
        assert formula.text == "Set(x, 1)"
        assert formula.origin == (2, 14)

    def test_block_scalar(self):
        text = "Button1 As button:\n    OnSelect: |-\n        =Set(a, 1);\n        Set(b, 2)\n"
        formula = by_key(extract_formulas(text))["Button1.OnSelect"]
        assert formula.text == "Set(a, 1);\nSet(b, 2)"
        assert formula.origin == (3, 10)
        assert formula.indent == 8

    def test_block_scalar_positions_map_to_file(self):
        """Tokens on every line of a block scalar point at their place in the file."""
        text = "Button1 As button:\n    OnSelect: |-\n        =Set(a, 1);\n        Set(b, 2 +)\n"
        formula = extract_formulas(text)[0]
        result = FormulaParser().parse(formula.text, formula.origin, formula.indent)
        call = result.ast.sequence[0]
        assert (call.span.line, call.span.column) == (3, 10)
        diagnostic = result.diagnostics[0]
        # The stray ')' after '+' on line 4
        assert (diagnostic.span.line, diagnostic.span.column) == (4, 19)

    def test_folded_block_scalar_positions_map_to_file(self):
        text = "Button1 As button:\n    OnSelect: >-\n        =Set(a, 1);\n        Set(b, 2 +)\n"
        formula = extract_formulas(text)[0]
        assert formula.text == "Set(a, 1);\nSet(b, 2 +)"
        result = FormulaParser().parse(formula.text, formula.origin, formula.indent)
        diagnostic = result.diagnostics[0]
        assert (diagnostic.span.line, diagnostic.span.column) == (4, 19)

    def test_anchored_scalar(self):
        formula = extract_formulas("App:\n  OnStart: &start =Set(x, 1)\n")[0]
        assert formula.text == "Set(x, 1)"
        assert formula.origin == (2, 20)


class TestErrors:
    def test_invalid_yaml(self):
        with pytest.raises(ValidationError, match="Invalid YAML syntax"):
            scan_document("a: [1, 2\nb: :", "bad.yaml")

    def test_empty_document(self):
        document = scan_document("", "empty.yaml")
        assert document.formulas == []
        assert document.controls == []

    def test_load_document(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "app.yaml"
            path.write_text("Screen1 As screen:\n    Fill: =RGBA(0, 0, 0, 1)\n", encoding="utf-8")
            document = load_document(path)
        assert document.name == "app.yaml"
        assert [f.text for f in document.formulas] == ["RGBA(0, 0, 0, 1)"]

    def test_missing_file(self):
        with pytest.raises(ValidationError, match="Error reading file"):
            load_document(Path("/nonexistent/app.yaml"))


class TestAliases:
    """Test documents whose anchors are reused or refer to themselves."""

    def test_self_referencing_anchor(self):
        document = scan_document("a: &x\n  b: *x\n  c: =1\n", "cycle.yaml")
        assert [(str(f.key), f.text) for f in document.formulas] == [("c", "1")]

    def test_aliased_formula_is_scanned_once(self):
        text = "Screen1 As screen:\n    Fill: &fill =Color.White\n    Color: *fill\n"
        formulas = extract_formulas(text)
        assert [str(f.key) for f in formulas] == ["Screen1.Fill"]
        assert formulas[0].origin == (2, 18)
