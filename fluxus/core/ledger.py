"""
Ledger collaborator contract.

The chain client itself lives outside this package. Session logic only needs
four things from it:

- resolve the authenticated root (passkey) account, which may be able to
  sign a key authorization for an access key
- submit a single transfer or an atomic batch, optionally signed by a
  delegated access account and carrying a one-shot key authorization
- read a token balance
- signal distinctly when an access key is already registered on-chain
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, Tuple, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..services.address import normalize_address


ACCESS_KEY_TYPE = "secp256k1"
MEMO_MAX_BYTES = 32
KEY_ALREADY_EXISTS_MARKER = "KeyAlreadyExists"


class LedgerError(Exception):
    """Ledger collaborator failure."""
    pass


class KeyAlreadyExistsError(LedgerError):
    """The access key is already registered for the root account."""
    pass


def is_key_already_exists(error: BaseException) -> bool:
    """True when a ledger error reports an already-registered access key.

    Ledgers that surface chain reverts as plain exceptions are matched on
    the revert name in the message.
    """
    if isinstance(error, KeyAlreadyExistsError):
        return True
    return KEY_ALREADY_EXISTS_MARKER in str(error)


@dataclass(frozen=True)
class TokenLimit:
    token: str
    limit: int


@dataclass(frozen=True)
class AccessKeySpec:
    """The key being authorized."""
    access_key_address: str
    key_type: str = ACCESS_KEY_TYPE


@dataclass(frozen=True)
class KeyAuthorizationParams:
    expiry: int
    limits: Tuple[TokenLimit, ...]


@dataclass(frozen=True)
class KeyAuthorization:
    """
    Signed grant binding an access key to a root account.

    The signature encoding belongs to the root account implementation and is
    kept opaque here. On-chain, the grant enforces ``limits`` until
    ``expiry`` (unix seconds).
    """
    access_key_address: str
    key_type: str
    expiry: int
    limits: Tuple[TokenLimit, ...]
    signature: Any = None


@dataclass(frozen=True)
class AccessAccount:
    """A session's ephemeral signer acting on behalf of ``root_address``."""
    root_address: str
    signer: LocalAccount = field(repr=False, compare=False)
    key_type: str = ACCESS_KEY_TYPE

    @property
    def access_key_address(self) -> str:
        return self.signer.address

    @classmethod
    def from_private_key(cls, private_key: str, root_address: str) -> "AccessAccount":
        return cls(
            root_address=normalize_address(root_address),
            signer=Account.from_key(private_key),
        )


def generate_access_private_key() -> str:
    """Fresh secp256k1 private key as 0x-prefixed hex."""
    return "0x" + Account.create().key.hex().removeprefix("0x")


@dataclass(frozen=True)
class TransferRequest:
    to: str
    amount: int
    token: str
    memo: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("Transfer amount must be greater than 0.")
        if self.memo is not None and len(self.memo.encode("utf-8")) > MEMO_MAX_BYTES:
            raise ValueError(f"Memo must be at most {MEMO_MAX_BYTES} bytes.")


@runtime_checkable
class RootAccount(Protocol):
    """The authenticated passkey-controlled account."""

    @property
    def address(self) -> str: ...


@runtime_checkable
class DelegatingRootAccount(RootAccount, Protocol):
    """Root account able to sign key authorizations (interactive ceremony)."""

    async def sign_key_authorization(
        self,
        key: AccessKeySpec,
        parameters: KeyAuthorizationParams,
    ) -> KeyAuthorization: ...


class Ledger(Protocol):
    async def get_root_account(self) -> Optional[RootAccount]: ...

    async def transfer(
        self,
        request: TransferRequest,
        *,
        account: Optional[AccessAccount] = None,
        key_authorization: Optional[KeyAuthorization] = None,
    ) -> str: ...

    async def batch_transfer(
        self,
        requests: Sequence[TransferRequest],
        *,
        account: Optional[AccessAccount] = None,
        key_authorization: Optional[KeyAuthorization] = None,
    ) -> str: ...

    async def balance_of(self, address: str, token: Optional[str] = None) -> int: ...


def supports_key_authorization(account: Any) -> bool:
    return account is not None and callable(getattr(account, "sign_key_authorization", None))


__all__ = [
    "ACCESS_KEY_TYPE",
    "MEMO_MAX_BYTES",
    "LedgerError",
    "KeyAlreadyExistsError",
    "is_key_already_exists",
    "TokenLimit",
    "AccessKeySpec",
    "KeyAuthorizationParams",
    "KeyAuthorization",
    "AccessAccount",
    "generate_access_private_key",
    "TransferRequest",
    "RootAccount",
    "DelegatingRootAccount",
    "Ledger",
    "supports_key_authorization",
]
