"""Text formatting of money, prices, amounts and percentages for the web views."""

from __future__ import annotations

import re
from decimal import Decimal

_CURRENCY_SYMBOLS = {"EUR": "€", "GBP": "£"}
_INTEGER = re.compile(r"[+-]?\d+")
_RANGES = {"7d": 7, "30d": 30, "90d": 90, "365d": 365, "1y": 365, "all": 3650}
_DEFAULT_DAYS = 30


def float_to_str2(value: float) -> str:
    """Two decimals, truncated toward zero rather than rounded."""
    int_part = int(value)
    frac = abs(int((value - int_part) * 100))
    return f"{int_part}.{frac:02d}"


def float_to_str_n(value: float, decimals: int) -> str:
    """A fixed number of decimals, truncated toward zero rather than rounded."""
    int_part = int(value)
    multiplier = 10.0 ** decimals
    frac = abs(int((value - int_part) * multiplier))
    return f"{int_part}.{str(frac).zfill(decimals)}"


def format_float(value: float) -> str:
    """Whole numbers without decimals, anything else with two truncated decimals."""
    if value == int(value):
        return str(int(value))
    return float_to_str2(value)


def format_number(value: float) -> str:
    """Millions shown in thousands with a K suffix, thousands as whole numbers."""
    if value >= 1_000_000:
        return f"{int(value / 1000)}K"
    if value >= 1000:
        return str(int(value))
    return format_float(value)


def format_currency(value: float, currency: str = "USD") -> str:
    """A money value with its currency sign; dollars unless EUR or GBP."""
    symbol = _CURRENCY_SYMBOLS.get(currency, "$")
    if value < 0:
        return "-" + symbol + format_number(-value)
    return symbol + format_number(value)


def format_price(value: float) -> str:
    """A dollar price; values below one always get two rounded decimals."""
    if value == 0:
        return "$0"
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    if magnitude >= 1:
        return f"{sign}${format_float(magnitude)}"
    return f"{sign}${magnitude:.2f}"


def format_exchange_rate(value: float) -> str:
    """A rate; below one it keeps every significant digit in plain notation."""
    if value >= 1:
        return format_float(value)
    if value == 0:
        return "0"
    return format(Decimal(repr(value)), "f")


def format_percent(value: float) -> str:
    """A percentage with a plus sign when positive."""
    sign = "+" if value > 0 else ""
    return f"{sign}{float_to_str2(value)}%"


def format_percent_no_sign(value: float) -> str:
    """A percentage without a leading plus sign."""
    return f"{float_to_str2(value)}%"


def format_amount(value: float) -> str:
    """A coin amount; more decimals the smaller it is, thousands with a K suffix."""
    if value >= 1000:
        return float_to_str2(value / 1000) + "K"
    if value >= 1:
        return float_to_str2(value)
    if value >= 0.001:
        return float_to_str_n(value, 4)
    return float_to_str_n(value, 8)


def parse_days(range_str: str) -> int:
    """The number of days a chart range covers; 30 when it cannot be read."""
    if range_str in _RANGES:
        return _RANGES[range_str]
    if _INTEGER.fullmatch(range_str):
        return int(range_str)
    return _DEFAULT_DAYS