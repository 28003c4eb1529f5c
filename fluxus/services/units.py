"""Conversions between human-readable token amounts and smallest units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

from ..config import settings


def parse_units(value: str | int | Decimal, decimals: Optional[int] = None) -> int:
    """Parse ``"49.5"`` into an integer amount of smallest units.

    Raises ValueError on malformed input or when the value carries more
    fractional digits than the token supports.
    """
    decimals = settings.wallet_token_decimals if decimals is None else decimals
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {value!r} exceeds {decimals} decimal places")
    return int(scaled)


def format_units(amount: int, decimals: Optional[int] = None) -> str:
    decimals = settings.wallet_token_decimals if decimals is None else decimals
    value = Decimal(amount).scaleb(-decimals)
    text = format(value.normalize(), "f")
    return text


def parse_spend_limit(value: str) -> int:
    """Parse a spend limit typed by the user into token units."""
    return parse_units(value)


__all__ = ["parse_units", "format_units", "parse_spend_limit"]
