from .address import (
    is_valid_address,
    normalize_address,
    normalize_recipients,
    try_normalize_address,
)
from .units import format_units, parse_spend_limit, parse_units

__all__ = [
    "is_valid_address",
    "normalize_address",
    "normalize_recipients",
    "try_normalize_address",
    "format_units",
    "parse_spend_limit",
    "parse_units",
]
