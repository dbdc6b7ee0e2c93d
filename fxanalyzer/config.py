"""
Linter configuration (fxlint.yaml).

Example:

    locale: de-DE
    strict: false
    include: "*.yaml"
    symbols:
      varUser: global_variable
      Color: enum
    data_sources:
      Orders:
        fields:
          Status: {functions: [eq, ne, startswith]}
          Total: {sortable: true, functions: [eq, lt, le, gt, ge]}
          Notes: {filterable: false}
      Archive:
        fields: [Id, Title]

A data source whose fields are a mapping gets capability metadata for
delegation analysis; a plain list only declares the field names.
"""

from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

import yaml

from .capabilities import CapabilityDescriptor, CapabilityTable
from .diagnostics import ConfigurationError
from .locale_profile import DOT_DECIMAL, LocaleProfile, resolve_locale
from .symbols import ReferenceKind, SymbolTable

DEFAULT_CONFIG_NAME = "fxlint.yaml"

ALLOWED_FIELDS = ["locale", "decimal_separator", "strict", "include", "symbols", "data_sources"]
DESCRIPTOR_FIELDS = ["filterable", "sortable", "selectable", "functions"]


class LinterConfig(NamedTuple):
    locale: Optional[str] = None
    profile: LocaleProfile = DOT_DECIMAL
    strict: bool = False
    include: str = "*.yaml"
    symbols: SymbolTable = SymbolTable()
    capabilities: CapabilityTable = CapabilityTable()


def _parse_descriptor(source: str, field: str, options: Any, filename: str) -> CapabilityDescriptor:
    if options is None:
        return CapabilityDescriptor()
    if not isinstance(options, dict):
        raise ConfigurationError(f"{filename}: Field '{source}.{field}' must be a dictionary")

    for flag in ("filterable", "sortable", "selectable"):
        if flag in options and not isinstance(options[flag], bool):
            raise ConfigurationError(f"{filename}: '{source}.{field}.{flag}' must be true or false")

    functions = options.get("functions", [])
    if not isinstance(functions, list) or not all(isinstance(f, str) for f in functions):
        raise ConfigurationError(f"{filename}: '{source}.{field}.functions' must be a list of strings")

    unexpected = set(options) - set(DESCRIPTOR_FIELDS)
    if unexpected:
        print(f"Warning: {filename} field '{source}.{field}' has unexpected keys: {', '.join(sorted(unexpected))}")

    return CapabilityDescriptor.build(
        filterable=options.get("filterable", True),
        sortable=options.get("sortable", True),
        selectable=options.get("selectable", True),
        functions=functions,
    )


def parse_config(data: Optional[Dict[str, Any]], filename: str = DEFAULT_CONFIG_NAME) -> LinterConfig:
    """
    Validate configuration data and freeze it into a LinterConfig.

    Args:
        data: Parsed YAML data (None for an empty file)
        filename: Name of the file being validated (for error messages)

    Returns:
        LinterConfig with frozen symbol and capability tables

    Raises:
        ConfigurationError: If validation fails
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{filename}: Invalid configuration structure (expected dictionary)")

    locale = data.get("locale")
    if locale is not None and not isinstance(locale, str):
        raise ConfigurationError(f"{filename}: Field 'locale' must be a string")
    profile = resolve_locale(locale, data.get("decimal_separator"))

    strict = data.get("strict", False)
    if not isinstance(strict, bool):
        raise ConfigurationError(f"{filename}: Field 'strict' must be true or false")

    include = data.get("include", "*.yaml")
    if not isinstance(include, str) or not include.strip():
        raise ConfigurationError(f"{filename}: Field 'include' must be a non-empty string")

    raw_symbols = data.get("symbols") or {}
    if not isinstance(raw_symbols, dict):
        raise ConfigurationError(f"{filename}: Field 'symbols' must be a dictionary")
    symbols: Dict[str, ReferenceKind] = {}
    for name, kind in raw_symbols.items():
        try:
            symbols[str(name)] = ReferenceKind.parse(kind)
        except ValueError as e:
            raise ConfigurationError(f"{filename}: Symbol '{name}': {e}") from e

    raw_sources = data.get("data_sources") or {}
    if not isinstance(raw_sources, dict):
        raise ConfigurationError(f"{filename}: Field 'data_sources' must be a dictionary")
    field_names: Dict[str, List[str]] = {}
    capabilities: Dict[str, Dict[str, CapabilityDescriptor]] = {}
    for source, options in raw_sources.items():
        source = str(source)
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ConfigurationError(f"{filename}: Data source '{source}' must be a dictionary")
        fields = options.get("fields", [])
        if isinstance(fields, list):
            field_names[source] = [str(f) for f in fields]
        elif isinstance(fields, dict):
            field_names[source] = [str(f) for f in fields]
            capabilities[source] = {
                str(field): _parse_descriptor(source, str(field), field_spec, filename)
                for field, field_spec in fields.items()
            }
        else:
            raise ConfigurationError(
                f"{filename}: Data source '{source}' must have a 'fields' list or dictionary"
            )

    unexpected_fields = set(data.keys()) - set(ALLOWED_FIELDS)
    if unexpected_fields:
        print(f"Warning: {filename} contains unexpected fields: {', '.join(sorted(unexpected_fields))}")

    return LinterConfig(
        locale=locale,
        profile=profile,
        strict=strict,
        include=include,
        symbols=SymbolTable(symbols, field_names),
        capabilities=CapabilityTable(capabilities),
    )


def load_config(path: Path) -> LinterConfig:
    """
    Load and validate a configuration file.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid YAML
            or fails validation
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path.name}: Invalid YAML syntax - {e}") from e
    except OSError as e:
        raise ConfigurationError(f"{path.name}: Error reading file - {e}") from e
    return parse_config(data, path.name)
