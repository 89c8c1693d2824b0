"""Display formatting for Pricing2Yaml values.

Every function here is total: unexpected shapes degrade to a textual
fallback instead of raising.
"""
from __future__ import annotations

import json
import math
import re
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

USAGE_VALUE_KEYS = ("value", "amount", "quantity", "defaultValue", "max", "limit", "count")
NUMERIC_STRING_PATTERN = re.compile(r"^-?\d+(?:\.\d+)?$")
LEADING_INTEGER_PATTERN = re.compile(r"^\s*([+-]?\d+)")
CAMEL_BOUNDARY_PATTERN = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
FALLBACK_TEXT_LIMIT = 80
CENT = Decimal("0.01")
ROUNDING_TOLERANCE = Decimal("1e-9")

CURRENCIES = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "AUD": "A$",
    "CAD": "C$",
    "CHF": "CHF",
    "CNY": "¥",
    "SEK": "kr",
    "NZD": "NZ$",
}


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def number_to_text(value: Union[int, float]) -> str:
    """Shortest textual form of a number, whole floats without ``.0``."""

    if isinstance(value, float):
        if not math.isfinite(value):
            return str(value)
        if value.is_integer():
            return str(int(value))
        return _number_to_decimal_string(value)
    return str(value)


def scalar_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return number_to_text(value)
    return str(value)


def numeric_interpretation(value: Any) -> Union[int, float]:
    """Numbers as-is, strings by their leading integer, anything else 0."""

    if is_number(value):
        return value
    match = LEADING_INTEGER_PATTERN.match(str(value or "0"))
    return int(match.group(1)) if match else 0


def pluralize_unit(unit: Optional[str], count: Any) -> str:
    if not unit:
        return ""
    return f"{unit}s" if numeric_interpretation(count) > 1 else unit


def camel_to_title(name: Any) -> str:
    spaced = CAMEL_BOUNDARY_PATTERN.sub(" ", str(name).replace("_", " ").replace("-", " "))
    words = [word for word in spaced.split(" ") if word]
    return " ".join(word[:1].upper() + word[1:] for word in words)


def currency_symbol(code: Any) -> str:
    """Symbol for an ISO currency code; unknown codes echo back, non-text yields ``""``."""

    if not code or not isinstance(code, str):
        return ""
    return CURRENCIES.get(code, code)


def format_usage_display(limit_value: Any, linked_limit: Optional[Mapping[str, Any]] = None) -> str:
    """Render a usage limit value with its unit and optional period.

    ``"5 seats"`` without a period, ``"5 seats / 3 months"`` with one. The
    period amount is only shown when greater than one (``"5 seats / month"``).
    """

    if not isinstance(linked_limit, Mapping):
        linked_limit = None

    value = _resolve_usage_value(limit_value, linked_limit)
    unit = _resolve_usage_unit(linked_limit)

    pieces = []
    if value not in ("", None):
        pieces.append(scalar_to_text(value))
    if unit:
        pieces.append(pluralize_unit(unit, value))
    main = " ".join(pieces).strip()

    period = linked_limit.get("period") if linked_limit else None
    if not period:
        return main

    period_suffix = _format_period(period)
    if period_suffix:
        return f"{main} / {period_suffix}" if main else period_suffix
    return main


def format_pricing_value(
    value: Any,
    unit: Optional[str] = None,
    addon_value: Any = None,
    addon_extension: bool = False,
) -> Any:
    """Format a numeric plan value; non-numeric values pass through.

    An add-on that extends a base limit has its contribution carved out of
    the displayed base value.
    """

    if not is_number(value):
        return value

    adjusted = value
    if is_number(addon_value) and addon_value != 0 and addon_extension:
        adjusted = value - addon_value

    if adjusted == 0:
        return "-"
    text = number_to_text(adjusted)
    unit_text = pluralize_unit(unit, adjusted)
    return f"{text} {unit_text}" if unit_text else text


def format_money_display(value: Any) -> str:
    """Format a monetary amount for display.

    Numeric-looking strings are returned verbatim to keep the YAML's own
    formatting. Numbers of at least one cent are rounded to cents unless they
    carry more precision, in which case the full value is shown. Smaller
    amounts keep their natural precision and never use exponential notation.
    """

    if isinstance(value, str):
        stripped = value.strip()
        if NUMERIC_STRING_PATTERN.match(stripped):
            return stripped
        return value

    if isinstance(value, bool):
        return "true" if value else "false"

    if is_number(value) and (isinstance(value, int) or math.isfinite(value)):
        if value == 0:
            return "0"

        exact = _to_decimal(value)
        if abs(exact) >= CENT:
            rounded = _round_to_cents(exact)
            if abs(exact - rounded) > ROUNDING_TOLERANCE:
                return _number_to_decimal_string(value)
            if rounded == rounded.to_integral_value():
                return format(rounded.to_integral_value(), "f")
            return format(rounded.normalize(), "f")

        return _number_to_decimal_string(value)

    if value is None:
        return ""
    return str(value)


def format_price(value: Any, currency: Optional[str] = None, unit: Optional[str] = None) -> str:
    if value is None or value == "":
        return "-"
    amount = format_money_display(value)
    if is_number(value) or NUMERIC_STRING_PATTERN.match(amount):
        amount = f"{currency_symbol(currency)}{amount}"
    return f"{amount} {unit}" if unit else amount


def safe_primitive(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return scalar_to_text(value)
    try:
        text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return "[object]"
    if len(text) > FALLBACK_TEXT_LIMIT:
        return text[: FALLBACK_TEXT_LIMIT - 3] + "..."
    return text


def _resolve_usage_value(limit_value: Any, linked_limit: Optional[Mapping[str, Any]]) -> Any:
    default_value = linked_limit.get("defaultValue") if linked_limit else None

    if limit_value is None:
        return default_value if default_value is not None else ""
    if isinstance(limit_value, (str, int, float, bool)):
        return limit_value

    if isinstance(limit_value, Mapping):
        for key in USAGE_VALUE_KEYS:
            candidate = limit_value.get(key)
            if _is_text_or_number(candidate):
                return candidate
        for candidate in limit_value.values():
            if _is_text_or_number(candidate):
                return candidate
    elif isinstance(limit_value, (list, tuple)):
        for candidate in limit_value:
            if _is_text_or_number(candidate):
                return candidate

    return default_value if default_value is not None else safe_primitive(limit_value)


def _resolve_usage_unit(linked_limit: Optional[Mapping[str, Any]]) -> str:
    if not linked_limit:
        return ""
    unit = linked_limit.get("unit")
    if isinstance(unit, str):
        return unit
    unit_of_measure = linked_limit.get("unitOfMeasure")
    if isinstance(unit_of_measure, str):
        return unit_of_measure
    name = linked_limit.get("name")
    if isinstance(name, str):
        return camel_to_title(name)
    return ""


def _format_period(period: Any) -> str:
    if isinstance(period, str):
        return period.strip().lower()
    if not isinstance(period, Mapping):
        return ""

    raw_value = period.get("value")
    period_value = numeric_interpretation(raw_value if raw_value is not None else "0")
    raw_unit = period.get("unit")
    period_unit = raw_unit.lower() if isinstance(raw_unit, str) else ""

    if period_value > 1:
        return f"{number_to_text(period_value)} {pluralize_unit(period_unit, period_value)}".strip()
    return period_unit.strip()


def _is_text_or_number(value: Any) -> bool:
    return isinstance(value, str) or is_number(value)


def _number_to_decimal_string(value: Union[int, float]) -> str:
    if isinstance(value, int):
        return str(value)
    text = repr(value)
    if "e" not in text and "E" not in text:
        return text
    try:
        return format(Decimal(text), "f")
    except InvalidOperation:  # pragma: no cover - repr of a finite float always parses
        return text


def _to_decimal(value: Union[int, float]) -> Decimal:
    return Decimal(value) if isinstance(value, int) else Decimal(repr(value))


def _round_to_cents(amount: Decimal) -> Decimal:
    # precision must cover every integer digit or quantize signals InvalidOperation
    context = Context(prec=max(28, amount.adjusted() + 3))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP, context=context)
