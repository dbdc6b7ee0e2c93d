"""
Locale profile resolution.

Formula separators depend on the authoring locale: locales that write
decimals with a comma separate list items with ';' and chain expressions
with ';;'. Everything else uses '.', ',' and ';'.
"""

import logging
import re
from typing import NamedTuple, Optional, Union

from .diagnostics import ConfigurationError

logger = logging.getLogger(__name__)


class LocaleProfile(NamedTuple):
    decimal_separator: str
    list_separator: str
    chaining_separator: str


DOT_DECIMAL = LocaleProfile(".", ",", ";")
COMMA_DECIMAL = LocaleProfile(",", ";", ";;")

# Languages whose default region writes decimals with a comma
COMMA_DECIMAL_LANGUAGES = frozenset(
    {
        "az", "be", "bg", "bs", "ca", "cs", "da", "de", "el", "es", "et", "eu",
        "fi", "fo", "fr", "gl", "hr", "hu", "hy", "id", "is", "it", "ka", "kk",
        "ky", "lb", "lt", "lv", "mk", "mn", "nb", "nl", "nn", "no", "pl", "pt",
        "ro", "ru", "sk", "sl", "sq", "sr", "sv", "tr", "uk", "uz", "vi",
    }
)

# (language, region) pairs that deviate from their language's default
DOT_DECIMAL_REGIONS = frozenset(
    {
        ("de", "ch"), ("de", "li"), ("fr", "ch"), ("it", "ch"),
        ("es", "mx"), ("es", "us"), ("es", "pr"), ("es", "gt"), ("es", "do"),
        ("es", "hn"), ("es", "ni"), ("es", "pa"), ("es", "sv"),
    }
)
COMMA_DECIMAL_REGIONS = frozenset({("en", "za")})

_TAG_RE = re.compile(r"^(?P<language>[A-Za-z]{2,3})(?P<subtags>(?:[-_][A-Za-z0-9]{1,8})*)$")


def _region_of(subtags: str) -> Optional[str]:
    """Return the region subtag (2 letters or 3 digits), if any."""
    for subtag in re.split(r"[-_]", subtags)[1:]:
        if len(subtag) == 2 and subtag.isalpha():
            return subtag.lower()
        if len(subtag) == 3 and subtag.isdigit():
            return subtag
    return None


def profile_for_decimal(separator: str) -> LocaleProfile:
    """
    Return the profile implied by a decimal separator.

    Raises:
        ConfigurationError: If separator is not '.' or ','
    """
    if separator == ".":
        return DOT_DECIMAL
    if separator == ",":
        return COMMA_DECIMAL
    raise ConfigurationError(f"Unsupported decimal separator {separator!r} (expected '.' or ',')")


def resolve_locale(
    tag: Optional[str] = None, override: Union[LocaleProfile, str, None] = None
) -> LocaleProfile:
    """
    Derive the separator profile for an authoring locale.

    Args:
        tag: BCP-47 style locale tag such as 'en-US', 'de_DE' or 'pt-BR'
        override: Explicit LocaleProfile or decimal separator; wins over tag

    Returns:
        The LocaleProfile for the locale (dot-decimal when nothing is known)

    Raises:
        ConfigurationError: If the tag is malformed or the override invalid
    """
    if override is not None:
        if isinstance(override, LocaleProfile):
            if override not in (DOT_DECIMAL, COMMA_DECIMAL):
                raise ConfigurationError(f"Inconsistent locale profile override: {override}")
            return override
        if isinstance(override, str):
            return profile_for_decimal(override)
        raise ConfigurationError(f"Unsupported locale override: {override!r}")

    if tag is None:
        return DOT_DECIMAL

    if not isinstance(tag, str):
        raise ConfigurationError(f"Locale tag must be a string, got {type(tag).__name__}")

    match = _TAG_RE.match(tag.strip())
    if match is None:
        raise ConfigurationError(f"Malformed locale tag: {tag!r}")

    language = match.group("language").lower()
    region = _region_of(match.group("subtags"))

    if (language, region) in DOT_DECIMAL_REGIONS:
        profile = DOT_DECIMAL
    elif (language, region) in COMMA_DECIMAL_REGIONS or language in COMMA_DECIMAL_LANGUAGES:
        profile = COMMA_DECIMAL
    else:
        profile = DOT_DECIMAL

    logger.debug("Locale %s resolved to decimal separator %r", tag, profile.decimal_separator)
    return profile
