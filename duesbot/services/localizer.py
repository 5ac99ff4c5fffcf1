"""Simple localization module for dues messages.

Loads translations from static/translations.json once at import time.
Provides a single t(key, **kwargs) function for translation lookup with semantic categories.

Usage:
    from duesbot.services.localizer import t

    # Simple lookup
    message = t("help.title")

    # With placeholder substitution
    message = t("errors.not_enrolled", member="12345")
"""

import json
import logging
import os
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from babel import Locale, UnknownLocaleError
from babel.dates import format_date as babel_format_date
from babel.numbers import format_decimal as babel_format_decimal

logger = logging.getLogger(__name__)

# Load translations once at import time
_TRANSLATIONS_PATH = Path(__file__).parent.parent / "static" / "translations.json"
_TRANSLATIONS: dict[str, Any] = {}

try:
    with open(_TRANSLATIONS_PATH, encoding="utf-8") as f:
        _TRANSLATIONS = json.load(f)
except (FileNotFoundError, json.JSONDecodeError) as e:
    logger.error("Failed to load translations from %s: %s", _TRANSLATIONS_PATH, e)


def t(key: str, **kwargs: Any) -> str:
    """Get translation for a key with optional placeholder substitution.

    Args:
        key: Dot-notation key (e.g., "reminders.due_soon")
        **kwargs: Placeholder values for string formatting

    Returns:
        Translated string with placeholders replaced, or the key itself if not found.
    """
    parts = key.split(".")
    value: Any = _TRANSLATIONS

    for part in parts:
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            logger.warning("Translation key not found: %s", key)
            return key

    if not isinstance(value, str):
        logger.warning("Translation value is not a string for key: %s", key)
        return key

    if kwargs:
        try:
            return value.format(**kwargs)
        except KeyError as e:
            logger.warning("Missing placeholder %s for key: %s", e, key)
            return value

    return value


DEFAULT_LOCALE = "en_US"


def get_locale() -> str:
    """Locale for numbers and dates, from the LOCALE env var.

    Falls back to en_US when the variable is missing or names an unknown locale.
    """
    locale_str = os.getenv("LOCALE", DEFAULT_LOCALE)
    try:
        Locale.parse(locale_str)
        return locale_str
    except (UnknownLocaleError, ValueError) as e:
        logger.warning(
            "Invalid LOCALE %r: %s. Falling back to %r", locale_str, e, DEFAULT_LOCALE
        )
        return DEFAULT_LOCALE


def format_money(amount: Decimal | int | float | None, symbol: str = "") -> str:
    """Render an amount with locale grouping, dropping zero cents.

    >>> format_money(Decimal("50000"), "₦")
    '₦50,000'
    >>> format_money(Decimal("12.5"))
    '12.50'
    """
    value = Decimal(str(amount or 0))
    pattern = "#,##0" if value == value.to_integral_value() else "#,##0.00"
    return f"{symbol}{babel_format_decimal(value, format=pattern, locale=get_locale())}"


def format_day(value: date | datetime | None) -> str:
    """Short calendar date, e.g. 'Mar 01, 2026'."""
    if value is None:
        return "-"
    return babel_format_date(value, format="MMM dd, y", locale=get_locale())


__all__ = ["t", "format_money", "format_day", "get_locale"]
