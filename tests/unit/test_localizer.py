"""Unit tests for translations and message rendering helpers."""

from datetime import date
from decimal import Decimal

import pytest

from duesbot.services.localizer import format_money, get_locale, t
from duesbot.services.messages import fmt_amount, fmt_date, mention, state_label, weekday_name
from duesbot.services.status import EnforcementState


@pytest.mark.unit
class TestTranslations:
    def test_lookup_with_placeholders(self):
        text = t("help.unknown", command="frobnicate")

        assert "frobnicate" in text

    def test_missing_key_returns_key(self):
        assert t("nope.missing") == "nope.missing"

    def test_non_string_value_returns_key(self):
        assert t("help") == "help"

    def test_missing_placeholder_returns_template(self):
        assert "{command}" in t("help.unknown")
        assert "{command}" in t("help.unknown", other="x")

    @pytest.mark.parametrize("state", list(EnforcementState))
    def test_every_state_has_a_label(self, state):
        label = state_label(state)

        assert label and not label.startswith("status.")


@pytest.mark.unit
class TestFormatting:
    def test_format_money(self):
        assert format_money(Decimal("50000"), "₦") == "₦50,000"
        assert format_money(Decimal("1234.5")) == "1,234.50"
        assert format_money(None) == "0"

    def test_fmt_amount_is_command_friendly(self):
        assert fmt_amount(Decimal("30000.00")) == "30000"
        assert fmt_amount(Decimal("12.5")) == "12.50"

    def test_fmt_date(self):
        assert fmt_date(date(2026, 3, 1)) == "Mar 01, 2026"
        assert fmt_date(None) == "-"

    def test_mention_escapes_name(self):
        assert mention("42", "<Bob>") == '<a href="tg://user?id=42">&lt;Bob&gt;</a>'
        assert mention("42") == '<a href="tg://user?id=42">42</a>'

    def test_weekday_name(self):
        assert weekday_name(1) == "Monday"
        assert weekday_name(7) == "Sunday"


@pytest.mark.unit
class TestLocale:
    def test_locale_from_env(self, monkeypatch):
        monkeypatch.setenv("LOCALE", "de_DE")

        assert get_locale() == "de_DE"
        assert format_money(Decimal("50000.5"), "€") == "€50.000,50"

    def test_invalid_locale_falls_back(self, monkeypatch):
        monkeypatch.setenv("LOCALE", "xx_NOPE")

        assert get_locale() == "en_US"
