"""Unit tests for SQL text helpers."""

from __future__ import annotations

import pytest

from rolekeys.utils.sql import quote_identifier, quote_literal, sanitize_identifier


class TestSanitizeIdentifier:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ana_role_ab12", "ana_role_ab12"),
            ("Ana-Lopez_role_ab12", "ana_lopez_role_ab12"),
            ("ana.lopez@org", "ana_lopez_org"),
            ("9lives", "_9lives"),
            ("", "_"),
        ],
    )
    def test_sanitize(self, raw, expected):
        assert sanitize_identifier(raw) == expected

    def test_truncates(self):
        assert sanitize_identifier("a" * 100) == "a" * 63


class TestQuoting:
    def test_identifier(self):
        assert quote_identifier("public") == '"public"'

    def test_identifier_with_quote(self):
        assert quote_identifier('we"ird') == '"we""ird"'

    def test_literal(self):
        assert quote_literal("pa'ss") == "'pa''ss'"
