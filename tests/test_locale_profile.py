#!/usr/bin/env python3
"""
Tests for locale profile resolution.

The separators of a profile always move together: a comma decimal
separator means ';' between list items and ';;' between chained
expressions, and a dot means ',' and ';'.
"""

import pytest

from fxanalyzer.diagnostics import ConfigurationError
from fxanalyzer.locale_profile import (
    COMMA_DECIMAL,
    DOT_DECIMAL,
    LocaleProfile,
    profile_for_decimal,
    resolve_locale,
)


class TestResolveLocale:
    """Test locale tag to profile mapping."""

    def test_no_tag_is_dot_decimal(self):
        assert resolve_locale() == DOT_DECIMAL

    @pytest.mark.parametrize("tag", ["en", "en-US", "en_GB", "ja-JP", "zh-Hans-CN", "EN-us"])
    def test_dot_decimal_locales(self, tag):
        assert resolve_locale(tag) == DOT_DECIMAL

    @pytest.mark.parametrize("tag", ["de", "de-DE", "fr-FR", "pt_BR", "nl-NL", "ru", "en-ZA"])
    def test_comma_decimal_locales(self, tag):
        assert resolve_locale(tag) == COMMA_DECIMAL

    @pytest.mark.parametrize("tag", ["de-CH", "de-LI", "es-MX", "es-US"])
    def test_region_exceptions_use_dot_decimal(self, tag):
        assert resolve_locale(tag) == DOT_DECIMAL

    def test_script_subtag_is_skipped_when_finding_region(self):
        """sr-Latn-RS has its region after the script subtag."""
        assert resolve_locale("sr-Latn-RS") == COMMA_DECIMAL

    def test_unknown_well_formed_tag_falls_back_to_dot(self):
        assert resolve_locale("xx-YY") == DOT_DECIMAL

    @pytest.mark.parametrize("tag", ["", "e", "english", "de--DE", "12-DE", "de DE"])
    def test_malformed_tag_raises(self, tag):
        with pytest.raises(ConfigurationError):
            resolve_locale(tag)

    def test_non_string_tag_raises(self):
        with pytest.raises(ConfigurationError):
            resolve_locale(49)

    def test_separators_move_together(self):
        for tag in ["en-US", "de-DE", "fr-CA", "es-MX", "pl", "zz"]:
            profile = resolve_locale(tag)
            if profile.decimal_separator == ",":
                assert profile.list_separator == ";"
                assert profile.chaining_separator == ";;"
            else:
                assert profile.list_separator == ","
                assert profile.chaining_separator == ";"


class TestOverride:
    """Test explicit overrides."""

    def test_decimal_override_wins_over_tag(self):
        assert resolve_locale("de-DE", ".") == DOT_DECIMAL
        assert resolve_locale("en-US", ",") == COMMA_DECIMAL

    def test_profile_override(self):
        assert resolve_locale(None, COMMA_DECIMAL) == COMMA_DECIMAL

    def test_inconsistent_profile_override_raises(self):
        with pytest.raises(ConfigurationError):
            resolve_locale(None, LocaleProfile(",", ",", ";"))

    @pytest.mark.parametrize("override", [";", "", 1.5])
    def test_bad_override_raises(self, override):
        with pytest.raises(ConfigurationError):
            resolve_locale("en-US", override)

    def test_profile_for_decimal(self):
        assert profile_for_decimal(".") is DOT_DECIMAL
        assert profile_for_decimal(",") is COMMA_DECIMAL
