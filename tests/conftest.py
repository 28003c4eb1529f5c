"""Shared fakes for the ledger collaborator and the root passkey account."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import pytest

from fluxus.core.ledger import (
    AccessAccount,
    AccessKeySpec,
    KeyAuthorization,
    KeyAuthorizationParams,
    TransferRequest,
)
from fluxus.core.wallet import SessionKeyManager, SessionPersistence, SessionStore


ROOT_ADDRESS = "0x" + "4" * 40
RECIPIENT_A = "0x" + "1" * 40
RECIPIENT_B = "0x" + "2" * 40
RECIPIENT_C = "0x" + "3" * 40


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRootAccount:
    def __init__(self, address: str = ROOT_ADDRESS, fail_with: Optional[Exception] = None):
        self.address = address
        self.fail_with = fail_with
        self.calls: List[tuple] = []

    async def sign_key_authorization(
        self, key: AccessKeySpec, parameters: KeyAuthorizationParams
    ) -> KeyAuthorization:
        self.calls.append((key, parameters))
        if self.fail_with is not None:
            raise self.fail_with
        return KeyAuthorization(
            access_key_address=key.access_key_address,
            key_type=key.key_type,
            expiry=parameters.expiry,
            limits=parameters.limits,
            signature="0xsigned",
        )


class PlainRootAccount:
    """Root account without key authorization support."""

    def __init__(self, address: str = ROOT_ADDRESS):
        self.address = address


@dataclass
class LedgerCall:
    kind: str
    payload: Any
    account: Optional[AccessAccount]
    key_authorization: Optional[KeyAuthorization]


@dataclass
class FakeLedger:
    root_account: Any = field(default_factory=FakeRootAccount)
    errors: List[Exception] = field(default_factory=list)
    calls: List[LedgerCall] = field(default_factory=list)
    delay: float = 0.0

    async def get_root_account(self):
        return self.root_account

    async def _send(self, kind, payload, account, key_authorization) -> str:
        self.calls.append(LedgerCall(kind, payload, account, key_authorization))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        return "0x" + f"{len(self.calls):064x}"

    async def transfer(
        self,
        request: TransferRequest,
        *,
        account: Optional[AccessAccount] = None,
        key_authorization: Optional[KeyAuthorization] = None,
    ) -> str:
        return await self._send("transfer", request, account, key_authorization)

    async def batch_transfer(
        self,
        requests: Sequence[TransferRequest],
        *,
        account: Optional[AccessAccount] = None,
        key_authorization: Optional[KeyAuthorization] = None,
    ) -> str:
        return await self._send("batch", list(requests), account, key_authorization)

    async def balance_of(self, address: str, token: Optional[str] = None) -> int:
        return 0


class CountingPersistence(SessionPersistence):
    def __init__(self, path):
        super().__init__(path)
        self.saves = 0

    def save(self, sessions) -> None:
        self.saves += 1
        super().save(sessions)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def persistence(tmp_path) -> CountingPersistence:
    return CountingPersistence(tmp_path / "sessions.json")


@pytest.fixture
def store(persistence) -> SessionStore:
    return SessionStore(persistence)


@pytest.fixture
def manager(store, ledger, clock) -> SessionKeyManager:
    return SessionKeyManager(store, ledger, clock=clock)
