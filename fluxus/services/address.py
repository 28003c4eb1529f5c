"""Helpers for validating and normalizing EVM wallet addresses."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, List, Optional

from eth_utils import is_address, to_checksum_address


def is_valid_address(address: object) -> bool:
    """True for 0x-prefixed 20-byte hex; mixed case must carry a valid checksum."""

    if not address or not isinstance(address, str):
        return False
    return _is_valid_address_str(address)


@lru_cache(maxsize=1024)
def _is_valid_address_str(address: str) -> bool:
    return bool(is_address(address))


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksummed form. Raises ValueError on invalid input."""

    candidate = (address or "").strip()
    if not is_valid_address(candidate):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(candidate)


def try_normalize_address(address: Optional[str]) -> Optional[str]:
    if address is None:
        return None
    try:
        return normalize_address(address)
    except ValueError:
        return None


def normalize_recipients(recipients: Iterable[str]) -> List[str]:
    """Checksum and de-duplicate an allowlist, dropping blanks and non-addresses.

    First-seen order is kept.
    """

    seen: dict[str, None] = {}
    for item in recipients:
        normalized = try_normalize_address(item)
        if normalized is not None:
            seen.setdefault(normalized, None)
    return list(seen)


__all__ = [
    "is_valid_address",
    "normalize_address",
    "try_normalize_address",
    "normalize_recipients",
]
