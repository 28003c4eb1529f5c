"""
Transfer execution through session keys.

Bundles matching, the ledger call and spend accounting into one unit so the
spend step cannot be skipped after a successful session transfer:

1. Look for a session able to cover the transfer (or batch)
2. If found, send with the session's access account, attaching its key
   authorization while it is still unused
3. If the ledger reports the access key is already registered, the
   authorization was consumed by an earlier attempt: drop it and retry once
   without it
4. Record the spend and mark the authorization consumed
5. If no session matches, send through the root account, which triggers
   interactive passkey confirmation
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from ...services.address import normalize_address
from ..ledger import (
    AccessAccount,
    KeyAuthorization,
    Ledger,
    TransferRequest,
    is_key_already_exists,
)
from .models import SessionRecord
from .session_manager import SessionKeyManager


logger = structlog.stdlib.get_logger(__name__)

Send = Callable[[Optional[AccessAccount], Optional[KeyAuthorization]], Awaitable[str]]


@dataclass(frozen=True)
class TransferLeg:
    recipient: str
    amount: int
    memo: Optional[str] = None


@dataclass(frozen=True)
class TransferOutcome:
    """Result of an executed transfer or batch."""
    tx_hash: str
    amount: int
    session_id: Optional[str] = None
    authorization_used: bool = False
    retried_without_authorization: bool = False

    @property
    def used_session(self) -> bool:
        return self.session_id is not None

    @property
    def interactive(self) -> bool:
        return self.session_id is None


class SessionTransferExecutor:
    """
    Runs transfers through a matching session, falling back to the root account.

    Matching, the ledger call and spend accounting for the session path run
    under the manager's ``execution_lock``, so a second transfer only sees
    the session after the first one's spend and authorization use are
    committed.
    """

    def __init__(self, manager: SessionKeyManager, ledger: Optional[Ledger] = None):
        self.manager = manager
        self.ledger = ledger or manager.ledger
        if self.ledger is None:
            raise ValueError("A ledger is required to execute transfers.")

    async def transfer(
        self,
        recipient: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> TransferOutcome:
        request = TransferRequest(
            to=normalize_address(recipient),
            amount=amount,
            token=self.manager.token_address,
            memo=memo,
        )

        async def send(account, key_authorization):
            return await self.ledger.transfer(
                request, account=account, key_authorization=key_authorization
            )

        return await self._execute(
            lambda: self.manager.find_for_transfer(request.to, amount), amount, send
        )

    async def batch_transfer(self, legs: Sequence[TransferLeg]) -> TransferOutcome:
        if not legs:
            raise ValueError("A batch needs at least one transfer.")
        requests = [
            TransferRequest(
                to=normalize_address(leg.recipient),
                amount=leg.amount,
                token=self.manager.token_address,
                memo=leg.memo,
            )
            for leg in legs
        ]
        total = sum(r.amount for r in requests)

        async def send(account, key_authorization):
            return await self.ledger.batch_transfer(
                requests, account=account, key_authorization=key_authorization
            )

        return await self._execute(
            lambda: self.manager.find_for_batch([r.to for r in requests], total), total, send
        )

    async def _execute(
        self,
        find: Callable[[], Optional[SessionRecord]],
        amount: int,
        send: Send,
    ) -> TransferOutcome:
        async with self.manager.execution_lock:
            await self.manager.store.load()
            session = find()
            if session is not None:
                return await self._send_with_session(session, amount, send)

        logger.info("transfer_interactive", amount=amount)
        tx_hash = await send(None, None)
        return TransferOutcome(tx_hash=tx_hash, amount=amount)

    async def _send_with_session(
        self,
        session: SessionRecord,
        amount: int,
        send: Send,
    ) -> TransferOutcome:
        account = self.manager.get_access_account(session)
        key_authorization = session.key_authorization
        retried = False

        try:
            tx_hash = await send(account, key_authorization)
        except Exception as exc:
            if key_authorization is None or not is_key_already_exists(exc):
                raise
            logger.info("access_key_already_registered", session_id=session.id)
            await self.manager.clear_authorization(session.id)
            retried = True
            tx_hash = await send(account, None)

        await self.manager.apply_spend(session.id, amount)
        if key_authorization is not None:
            await self.manager.clear_authorization(session.id)

        return TransferOutcome(
            tx_hash=tx_hash,
            amount=amount,
            session_id=session.id,
            authorization_used=key_authorization is not None and not retried,
            retried_without_authorization=retried,
        )
