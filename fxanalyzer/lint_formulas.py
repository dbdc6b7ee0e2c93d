#!/usr/bin/env python3
"""
Formula YAML Linter

Checks every formula in a directory of app YAML documents: syntax,
reference resolution and delegation of table queries. Designed to be
extensible for future validation rules.

Usage:
    fxlint [directory] [--config fxlint.yaml] [--strict] [--locale de-DE]

Exit codes:
    0: All checks passed
    1: One or more lint errors found (or warnings, with --strict)
    2: Invalid configuration
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from .config import DEFAULT_CONFIG_NAME, LinterConfig, load_config
from .diagnostics import Category, ConfigurationError, Diagnostic, ValidationError
from .documents import load_document
from .locale_profile import resolve_locale
from .pipeline import FormulaAnalysis, FormulaRequest, analyze_many


def format_diagnostic(file_path: Path, analysis: FormulaAnalysis, diagnostic: Diagnostic) -> str:
    span = diagnostic.span
    return f"{file_path}:{span.line}:{span.column}: {analysis.key}: [{diagnostic.code}] {diagnostic.message}"


class LintRule:
    """Base class for lint rules."""

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description

    def check(self, file_path: Path, analysis: FormulaAnalysis) -> Tuple[List[str], List[str]]:
        """
        Check the rule against one analysed formula.

        Args:
            file_path: Path to the YAML file holding the formula
            analysis: Result of analysing the formula

        Returns:
            Tuple of (errors, warnings) - both are lists of messages
        """
        raise NotImplementedError("Subclasses must implement check()")


class _CategoryRule(LintRule):
    """Reports the diagnostics of some categories, split by severity."""

    categories: Tuple[Category, ...] = ()

    def check(self, file_path: Path, analysis: FormulaAnalysis) -> Tuple[List[str], List[str]]:
        errors = []
        warnings = []

        for diagnostic in analysis.diagnostics:
            if diagnostic.category not in self.categories:
                continue
            message = format_diagnostic(file_path, analysis, diagnostic)
            if diagnostic.is_error:
                errors.append(message)
            else:
                warnings.append(message)

        return errors, warnings


class ValidFormulaSyntaxRule(_CategoryRule):
    """Rule: Formula must lex and parse without errors."""

    categories = (Category.LEX, Category.PARSE)

    def __init__(self):
        super().__init__(
            name="valid-formula-syntax",
            description="Formula must lex and parse without errors",
        )


class ResolvableReferencesRule(_CategoryRule):
    """Rule: Every name must resolve to a control, variable, data source or field."""

    categories = (Category.RESOLUTION,)

    def __init__(self):
        super().__init__(
            name="resolvable-references",
            description="Every name must resolve to a known symbol or record field",
        )


class DelegableQueriesRule(_CategoryRule):
    """Rule: Queries against data sources should be delegable."""

    categories = (Category.DELEGATION,)

    def __init__(self):
        super().__init__(
            name="delegable-queries",
            description="Filter, LookUp and Sort clauses should run at the data source",
        )


class FormulaLinter:
    """Main linter class that runs all validation rules."""

    def __init__(self, config: Optional[LinterConfig] = None, max_workers: Optional[int] = None):
        self.config = config or LinterConfig()
        self.max_workers = max_workers
        self.rules: List[LintRule] = [
            ValidFormulaSyntaxRule(),
            ResolvableReferencesRule(),
            DelegableQueriesRule(),
            # Add more rules here as needed
        ]

    def analyze_file(self, file_path: Path) -> List[FormulaAnalysis]:
        """
        Analyse every formula in a YAML document.

        Raises:
            ValidationError: If the document cannot be read or parsed
        """
        document = load_document(file_path)
        symbols = document.symbols.merged(self.config.symbols)
        requests = [
            FormulaRequest(source.key, source.text, source.origin, source.indent, source.scope)
            for source in document.formulas
        ]
        return analyze_many(
            requests,
            self.config.profile,
            symbols,
            self.config.capabilities,
            max_workers=self.max_workers,
        )

    def lint_file(self, file_path: Path) -> Tuple[List[str], List[str]]:
        """
        Lint a single YAML file.

        Args:
            file_path: Path to the YAML file to lint

        Returns:
            Tuple of (errors, warnings)
        """
        errors = []
        warnings = []

        try:
            analyses = self.analyze_file(file_path)
        except ValidationError as e:
            errors.append(f"{file_path}: {e}")
            return errors, warnings

        for analysis in analyses:
            for rule in self.rules:
                rule_errors, rule_warnings = rule.check(file_path, analysis)
                errors.extend(rule_errors)
                warnings.extend(rule_warnings)

        return errors, warnings

    def lint_all(self, directory: Path = None) -> Tuple[int, int, int, List[str], List[str]]:
        """
        Lint all matching YAML files in a directory.

        Args:
            directory: Directory to search for YAML files (defaults to the current directory)

        Returns:
            Tuple of (files_checked, error_count, warning_count, errors, warnings)
        """
        if directory is None:
            directory = Path.cwd()

        yaml_files = sorted(
            path for path in directory.glob(self.config.include) if path.name != DEFAULT_CONFIG_NAME
        )

        all_errors = []
        all_warnings = []
        files_checked = 0

        for yaml_file in yaml_files:
            files_checked += 1
            errors, warnings = self.lint_file(yaml_file)
            all_errors.extend(errors)
            all_warnings.extend(warnings)

        return files_checked, len(all_errors), len(all_warnings), all_errors, all_warnings


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fxlint", description="Lint formulas in app YAML documents."
    )
    parser.add_argument(
        "directory",
        nargs="?",
        type=Path,
        default=None,
        help="Directory to lint (default: current directory)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Configuration file (default: <directory>/{DEFAULT_CONFIG_NAME})",
    )
    parser.add_argument(
        "--strict", action="store_true", help="Fail on warnings, delegation warnings included"
    )
    parser.add_argument("--locale", default=None, help="Authoring locale tag, e.g. en-US or de-DE")
    parser.add_argument("--verbose", action="store_true", help="Log analysis details")
    return parser


def load_linter_config(args: argparse.Namespace, directory: Path) -> LinterConfig:
    """Configuration file (if any) with command line overrides applied."""
    config_path = args.config
    if config_path is None and (directory / DEFAULT_CONFIG_NAME).exists():
        config_path = directory / DEFAULT_CONFIG_NAME
    config = load_config(config_path) if config_path is not None else LinterConfig()

    if args.locale is not None:
        config = config._replace(locale=args.locale, profile=resolve_locale(args.locale))
    if args.strict:
        config = config._replace(strict=True)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the linter."""
    args = build_arg_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    directory = args.directory or Path.cwd()

    try:
        config = load_linter_config(args, directory)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2

    print("🔍 Linting formula YAML files...")
    print()

    linter = FormulaLinter(config)

    # Print registered rules
    print(f"Running {len(linter.rules)} lint rule(s):")
    for rule in linter.rules:
        print(f"  • {rule.name}: {rule.description}")
    if config.strict:
        print("  (strict mode: warnings fail the run)")
    print()

    # Run linter
    files_checked, error_count, warning_count, errors, warnings = linter.lint_all(directory)

    # Report warnings
    if warning_count > 0:
        print(f"⚠️  Found {warning_count} warning(s):")
        print()
        for warning in warnings:
            print(f"  {warning}")
        print()

    # Report results
    if error_count == 0 and not (config.strict and warning_count > 0):
        if warning_count > 0:
            print(f"✅ All {files_checked} file(s) passed lint checks (with warnings above)")
        else:
            print(f"✅ All {files_checked} file(s) passed lint checks!")
        return 0

    if error_count == 0:
        print(f"❌ Strict mode: {warning_count} warning(s) in {files_checked} file(s)")
        print()
        print("Please fix the warnings above and run the linter again.")
        return 1

    print(f"❌ Found {error_count} error(s) in {files_checked} file(s):")
    print()
    for error in errors:
        print(f"  {error}")
    print()
    print("Please fix the errors above and run the linter again.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
