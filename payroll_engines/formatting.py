"""
Shared formatting helpers for statutory files.

Amounts are rounded HALF_UP to two decimals and rendered without exponent;
dates use the dd.MM.yyyy form the authority expects; records end in CRLF.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

CRLF = "\r\n"
TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Decimal from a Decimal, number or numeric string; anything else is zero."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return ZERO


def to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(Decimal(str(value)))
    except ArithmeticError:
        return 0


def money(value: Any) -> str:
    return format(to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP), "f")


def round_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def bg_date(value: date | None) -> str:
    return value.strftime("%d.%m.%Y") if value is not None else ""


def text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return str(value).strip() if value is not None else ""


def quoted(value: str) -> str:
    return f'"{value}"'


def join_lines(lines: Iterable[str]) -> str:
    """Records joined with CRLF, each line terminated."""
    return "".join(line + CRLF for line in lines)
