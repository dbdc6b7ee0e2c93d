#!/usr/bin/env python3
"""
Comprehensive test suite for FormulaLinter.

This test suite validates the linter rules and the fxlint command, and
ensures they catch broken formulas while allowing valid ones.

Test organization:
1. TestRules - each rule reports only its own diagnostic categories
2. TestFormulaLinter - file and directory linting
3. TestMain - command line behaviour and exit codes
"""

import tempfile
from pathlib import Path

import pytest

from fxanalyzer.capabilities import CapabilityDescriptor, CapabilityTable
from fxanalyzer.config import LinterConfig
from fxanalyzer.lint_formulas import (
    DelegableQueriesRule,
    FormulaLinter,
    ResolvableReferencesRule,
    ValidFormulaSyntaxRule,
    main,
)
from fxanalyzer.pipeline import FormulaKey, analyze_formula
from fxanalyzer.symbols import SymbolTable

CLEAN_APP = """\
Screen1 As screen:
    Label1 As label:
        Text: ="Hello"
    Label2 As label:
        Text: =Label1.Text & "!"
"""

BROKEN_APP = """\
Screen1 As screen:
    Label1 As label:
        Text: =Concatenate("a", )
"""

UNRESOLVED_APP = """\
Screen1 As screen:
    Label1 As label:
        Text: =varMissing
"""

QUERY_APP = """\
Screen1 As screen:
    Gallery1 As gallery:
        Items: =Filter(Orders, Notes = "x")
"""

CONFIG = """\
data_sources:
  Orders:
    fields:
      Status: {functions: [eq]}
      Notes: {filterable: false}
"""


def write_files(tmpdir, files):
    for name, content in files.items():
        (Path(tmpdir) / name).write_text(content, encoding="utf-8")


class TestRules:
    """Test that each rule reports only its own categories."""

    def setup_method(self):
        symbols = SymbolTable({}, {"Orders": ["Status", "Notes"]})
        capabilities = CapabilityTable({"Orders": {"Notes": CapabilityDescriptor.build(filterable=False)}})
        self.analysis = analyze_formula(
            'Filter(Orders, Notes = "x"); Nope; 1 +',
            symbols=symbols,
            capabilities=capabilities,
            origin=(3, 16),
            key=FormulaKey("app.yaml", "Label1", "Text"),
        )

    def test_syntax_rule(self):
        errors, warnings = ValidFormulaSyntaxRule().check(Path("app.yaml"), self.analysis)
        assert len(errors) == 1
        assert "[MissingOperand]" in errors[0]
        assert warnings == []

    def test_resolution_rule(self):
        errors, warnings = ResolvableReferencesRule().check(Path("app.yaml"), self.analysis)
        assert errors == []
        assert len(warnings) == 1
        assert "[UnresolvedIdentifier]" in warnings[0]

    def test_delegation_rule(self):
        errors, warnings = DelegableQueriesRule().check(Path("app.yaml"), self.analysis)
        assert errors == []
        assert len(warnings) == 1
        assert "[NonDelegableClause]" in warnings[0]

    def test_message_format(self):
        _, warnings = ResolvableReferencesRule().check(Path("app.yaml"), self.analysis)
        # "Nope" sits at offset 29 of the formula, which starts at column 16
        assert warnings[0].startswith("app.yaml:3:45: Label1.Text: [UnresolvedIdentifier]")

    def test_rule_names(self):
        assert ValidFormulaSyntaxRule().name == "valid-formula-syntax"
        assert ResolvableReferencesRule().name == "resolvable-references"
        assert DelegableQueriesRule().name == "delegable-queries"


class TestFormulaLinter:
    """Test linting files and directories."""

    def test_clean_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": CLEAN_APP})
            errors, warnings = FormulaLinter().lint_file(Path(tmpdir) / "app.yaml")

        assert errors == []
        assert warnings == []

    def test_syntax_error_position(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": BROKEN_APP})
            path = Path(tmpdir) / "app.yaml"
            errors, _ = FormulaLinter().lint_file(path)

        assert len(errors) == 1
        assert errors[0].startswith(f"{path}:3:33: Label1.Text: [MissingOperand]")

    def test_invalid_yaml_is_an_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": "Screen1 As screen:\n  - [unclosed\n"})
            errors, warnings = FormulaLinter().lint_file(Path(tmpdir) / "app.yaml")

        assert len(errors) == 1
        assert "Invalid YAML syntax" in errors[0]

    def test_self_referencing_anchor_does_not_stop_linting(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"a.yaml": "a: &x\n  b: *x\n  c: =1 +\n", "b.yaml": UNRESOLVED_APP})
            files_checked, error_count, warning_count, _, _ = FormulaLinter().lint_all(Path(tmpdir))

        assert files_checked == 2
        assert error_count == 1
        assert warning_count == 1

    def test_config_symbols_are_used(self):
        config = LinterConfig(symbols=SymbolTable({"varMissing": "global_variable"}))
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": UNRESOLVED_APP})
            errors, warnings = FormulaLinter(config).lint_file(Path(tmpdir) / "app.yaml")

        assert errors == []
        assert warnings == []

    def test_lint_all(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(
                tmpdir,
                {
                    "a.yaml": CLEAN_APP,
                    "b.yaml": BROKEN_APP,
                    "c.yaml": UNRESOLVED_APP,
                    "notes.txt": "=1 +",
                    "fxlint.yaml": "strict: false\n",
                },
            )
            files_checked, error_count, warning_count, errors, warnings = FormulaLinter(
                max_workers=2
            ).lint_all(Path(tmpdir))

        assert files_checked == 3
        assert error_count == 1
        assert warning_count == 1
        assert "b.yaml" in errors[0]
        assert "c.yaml" in warnings[0]

    def test_empty_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert FormulaLinter().lint_all(Path(tmpdir)) == (0, 0, 0, [], [])


class TestMain:
    """Test the fxlint command."""

    def test_clean_directory(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": CLEAN_APP})
            assert main([tmpdir]) == 0

        out = capsys.readouterr().out
        assert "✅ All 1 file(s) passed lint checks!" in out
        assert "valid-formula-syntax" in out

    def test_errors_fail(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": BROKEN_APP})
            assert main([tmpdir]) == 1

        out = capsys.readouterr().out
        assert "❌ Found 1 error(s) in 1 file(s)" in out
        assert "[MissingOperand]" in out

    def test_warnings_pass_without_strict(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": UNRESOLVED_APP})
            assert main([tmpdir]) == 0

        out = capsys.readouterr().out
        assert "⚠️  Found 1 warning(s)" in out
        assert "(with warnings above)" in out

    def test_warnings_fail_with_strict(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": UNRESOLVED_APP})
            assert main([tmpdir, "--strict"]) == 1

        assert "Strict mode" in capsys.readouterr().out

    def test_config_file_is_picked_up(self, capsys):
        """fxlint.yaml in the directory supplies capabilities and strict mode."""
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": QUERY_APP, "fxlint.yaml": CONFIG + "strict: true\n"})
            assert main([tmpdir]) == 1

        out = capsys.readouterr().out
        assert "[NonDelegableClause]" in out
        assert "All 1 file(s)" not in out

    def test_explicit_config_path(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": UNRESOLVED_APP, "custom.yaml": "symbols: {varMissing: global_variable}\n"})
            # custom.yaml is linted too, but holds no formulas
            assert main([tmpdir, "--config", str(Path(tmpdir) / "custom.yaml"), "--strict"]) == 0

        assert "✅ All 2 file(s) passed lint checks!" in capsys.readouterr().out

    def test_locale_option(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": "Screen1 As screen:\n    Width: =1,5 + 2\n"})
            assert main([tmpdir]) == 1
            assert main([tmpdir, "--locale", "de-DE"]) == 0

    def test_invalid_config(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(tmpdir, {"app.yaml": CLEAN_APP, "fxlint.yaml": "strict: sometimes\n"})
            assert main([tmpdir]) == 2

        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_locale_option(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert main([tmpdir, "--locale", "???"]) == 2


@pytest.mark.parametrize("formula", ["1 + 2", "If(true, 1, 2)", "\"a\" & \"b\"", "[1, 2]"])
def test_constant_formulas_lint_clean(formula):
    with tempfile.TemporaryDirectory() as tmpdir:
        write_files(tmpdir, {"app.yaml": f"Screen1 As screen:\n    Width: ={formula}\n"})
        errors, warnings = FormulaLinter().lint_file(Path(tmpdir) / "app.yaml")

    assert errors == []
    assert warnings == []
