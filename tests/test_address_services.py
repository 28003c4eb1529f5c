import pytest

from fluxus.services.address import (
    is_valid_address,
    normalize_address,
    normalize_recipients,
    try_normalize_address,
)

CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def test_valid_addresses():
    assert is_valid_address(CHECKSUMMED) is True
    assert is_valid_address(CHECKSUMMED.lower()) is True
    assert is_valid_address("0x" + CHECKSUMMED[2:].upper()) is True


def test_invalid_addresses():
    assert is_valid_address("") is False
    assert is_valid_address("0x1234") is False
    assert is_valid_address(CHECKSUMMED[:-1]) is False
    assert is_valid_address("0x" + "z" * 40) is False
    # mixed case with a broken checksum
    assert is_valid_address("0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed") is False


def test_normalize_returns_checksum_form():
    assert normalize_address(CHECKSUMMED.lower()) == CHECKSUMMED
    assert normalize_address(f"  {CHECKSUMMED}  ") == CHECKSUMMED


def test_normalize_rejects_invalid():
    with pytest.raises(ValueError):
        normalize_address("not-an-address")
    assert try_normalize_address("not-an-address") is None
    assert try_normalize_address(None) is None


def test_normalize_recipients_dedupes_and_drops_invalid():
    other = "0x" + "2" * 40
    recipients = [CHECKSUMMED.lower(), "", "junk", other, CHECKSUMMED, " "]

    assert normalize_recipients(recipients) == [CHECKSUMMED, other]


def test_non_string_input_is_invalid():
    assert is_valid_address([CHECKSUMMED]) is False
    assert is_valid_address({}) is False
    assert is_valid_address(None) is False
    assert is_valid_address(int(CHECKSUMMED, 16)) is False
