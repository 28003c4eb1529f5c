"""
Session key manager for recipient-restricted, spend-capped transfers.

Manages the lifecycle of session keys:
- Creation: fresh access key, root-signed key authorization, persistence
- Matching: pick the most recent session able to cover a transfer or batch
- Spend accounting and one-shot authorization consumption
- Revocation and expiry cleanup
"""

import asyncio
import time
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from ...config import settings
from ...services.address import normalize_address, normalize_recipients
from ..ledger import (
    AccessAccount,
    AccessKeySpec,
    KeyAuthorizationParams,
    Ledger,
    TokenLimit,
    generate_access_private_key,
    supports_key_authorization,
)
from .models import (
    AuthorizationAvailable,
    SessionDuration,
    SessionPolicy,
    SessionRecord,
    SessionSnapshot,
)
from .store import SessionPersistence, SessionStore


logger = structlog.stdlib.get_logger(__name__)


class SessionKeyError(Exception):
    """Base exception for session key errors."""
    pass


class InvalidPolicyError(SessionKeyError):
    """Session policy is malformed (spend limit, duration)."""
    pass


class UnsupportedAccountError(SessionKeyError):
    """No root account, or it cannot sign key authorizations."""
    pass


class DelegationError(SessionKeyError):
    """The root account failed or refused to sign the key authorization."""
    pass


class SessionKeyManager:
    """
    Owns session creation, matching and bookkeeping.

    Matching scans sessions most-recent-first, so when several sessions
    qualify the newest one wins. A session qualifies only if it is
    unexpired, its allowlist admits the recipient(s) and its remaining
    spend is strictly greater than the requested amount.
    """

    def __init__(
        self,
        store: SessionStore,
        ledger: Optional[Ledger] = None,
        *,
        token_address: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ledger = ledger
        self.token_address = normalize_address(token_address or settings.wallet_token_address)
        self._clock = clock
        # Held from matching through spend accounting.
        self.execution_lock = asyncio.Lock()

    def _now_sec(self) -> int:
        return int(self._clock())

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def create_session(self, policy: SessionPolicy) -> SessionRecord:
        """
        Create and persist a session.

        Raises:
            InvalidPolicyError: spend limit <= 0 or unknown duration
            UnsupportedAccountError: no root account able to delegate
            DelegationError: the signing ceremony failed; nothing is stored
        """
        spend_limit = self._validate_policy(policy)
        duration = SessionDuration(policy.duration_minutes)

        root_account = await self.ledger.get_root_account() if self.ledger else None
        if root_account is None:
            raise UnsupportedAccountError("No authenticated root account.")
        if not supports_key_authorization(root_account):
            raise UnsupportedAccountError(
                "Connected account does not support Access Key authorization."
            )

        root_address = normalize_address(root_account.address)
        access_private_key = generate_access_private_key()
        access_account = AccessAccount.from_private_key(access_private_key, root_address)

        now_sec = self._now_sec()
        expiry = now_sec + int(duration) * 60

        try:
            key_authorization = await root_account.sign_key_authorization(
                AccessKeySpec(
                    access_key_address=access_account.access_key_address,
                    key_type=access_account.key_type,
                ),
                KeyAuthorizationParams(
                    expiry=expiry,
                    limits=(TokenLimit(token=self.token_address, limit=spend_limit),),
                ),
            )
        except Exception as exc:
            logger.warning(
                "key_authorization_failed",
                access_key_address=access_account.access_key_address,
                error=str(exc),
            )
            raise DelegationError(str(exc) or "Key authorization was not signed.") from exc

        if key_authorization is None:
            raise DelegationError("Key authorization was not signed.")

        session = SessionRecord(
            id=SessionRecord.generate_id(),
            root_address=root_address,
            access_private_key=access_private_key,
            access_key_address=normalize_address(access_account.access_key_address),
            created_at_ms=now_sec * 1000,
            expires_at_sec=expiry,
            spend_limit=spend_limit,
            spent=0,
            allowed_recipients=tuple(normalize_recipients(policy.allowed_recipients)),
            authorization=AuthorizationAvailable(token=key_authorization),
        )

        await self.store.mutate(lambda sessions: (session, *sessions))

        logger.info(
            "session_created",
            session_id=session.id,
            root_address=root_address,
            expires_at_sec=session.expires_at_sec,
            allowed_recipients=len(session.allowed_recipients),
        )
        return session

    async def revoke_session(self, session_id: str) -> bool:
        """Remove a session. Unknown ids are a no-op."""

        def mutation(sessions: Tuple[SessionRecord, ...]):
            remaining = tuple(s for s in sessions if s.id != session_id)
            if len(remaining) == len(sessions):
                return None
            return remaining

        removed = await self.store.mutate(mutation)
        if removed:
            logger.info("session_revoked", session_id=session_id)
        return removed

    async def revoke_all_sessions(self) -> int:
        count = 0

        def mutation(sessions: Tuple[SessionRecord, ...]):
            nonlocal count
            count = len(sessions)
            if not sessions:
                return None
            return ()

        if await self.store.mutate(mutation):
            logger.info("sessions_revoked", count=count)
            return count
        return 0

    async def cleanup_expired(self) -> int:
        """Drop sessions whose expiry has passed. Returns how many were removed."""
        current = self._now_sec()
        removed = 0

        def mutation(sessions: Tuple[SessionRecord, ...]):
            nonlocal removed
            remaining = tuple(s for s in sessions if not s.is_expired(current))
            removed = len(sessions) - len(remaining)
            if removed == 0:
                return None
            return remaining

        if not await self.store.mutate(mutation):
            return 0
        logger.info("expired_sessions_removed", count=removed)
        return removed

    async def apply_spend(self, session_id: str, amount: int) -> None:
        """
        Add ``amount`` to a session's spent total.

        Pure bookkeeping: the ceiling was checked during matching and is
        enforced on-chain. Must run after every successful session transfer.
        """
        if amount < 0:
            raise ValueError("Spend amount cannot be negative.")

        def mutation(sessions: Tuple[SessionRecord, ...]):
            if not any(s.id == session_id for s in sessions):
                return None
            return tuple(s.with_spend(amount) if s.id == session_id else s for s in sessions)

        if await self.store.mutate(mutation):
            logger.info("session_spend_recorded", session_id=session_id, amount=amount)
        else:
            logger.warning("session_spend_unrecorded", session_id=session_id, amount=amount)

    async def clear_authorization(self, session_id: str) -> bool:
        """Mark the session's key authorization consumed. True if one was held."""

        def mutation(sessions: Tuple[SessionRecord, ...]):
            target = next((s for s in sessions if s.id == session_id), None)
            if target is None or not target.has_authorization:
                return None
            return tuple(
                s.with_authorization_consumed() if s.id == session_id else s
                for s in sessions
            )

        return await self.store.mutate(mutation)

    # ---------------------------
    # Queries and matching
    # ---------------------------
    def list_sessions(self) -> List[SessionRecord]:
        return list(self.store.get_snapshot().sessions)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self.store.get_snapshot().get(session_id)

    def find_for_transfer(self, recipient: str, amount: int) -> Optional[SessionRecord]:
        """First unexpired session admitting ``recipient`` with remaining spend > ``amount``."""
        normalized = normalize_address(recipient)
        return self._first_match(
            amount,
            lambda session: session.allows_recipient(normalized),
        )

    def find_for_batch(self, recipients: Sequence[str], total_amount: int) -> Optional[SessionRecord]:
        """
        Like ``find_for_transfer`` on the aggregate amount. A session with an
        allowlist must admit every recipient in the batch.
        """
        normalized = [normalize_address(item) for item in recipients]
        return self._first_match(
            total_amount,
            lambda session: all(session.allows_recipient(r) for r in normalized),
        )

    def _first_match(
        self,
        amount: int,
        admits: Callable[[SessionRecord], bool],
    ) -> Optional[SessionRecord]:
        if amount < 0:
            raise ValueError("Amount cannot be negative.")
        snapshot: SessionSnapshot = self.store.get_snapshot()
        current = self._now_sec()
        for session in snapshot.sessions:
            if session.is_expired(current):
                continue
            if not admits(session):
                continue
            # Strictly greater: a session with exactly ``amount`` left is skipped.
            if session.remaining_spend > amount:
                return session
        return None

    @staticmethod
    def remaining_spend(session: SessionRecord) -> int:
        return session.remaining_spend

    @staticmethod
    def get_access_account(session: SessionRecord) -> AccessAccount:
        return AccessAccount.from_private_key(session.access_private_key, session.root_address)

    # ---------------------------
    # Helpers
    # ---------------------------
    @staticmethod
    def _validate_policy(policy: SessionPolicy) -> int:
        if isinstance(policy.spend_limit, bool) or not isinstance(policy.spend_limit, int):
            raise InvalidPolicyError("Spend limit must be an integer amount of token units.")
        if policy.spend_limit <= 0:
            raise InvalidPolicyError("Spend limit must be greater than 0.")
        try:
            SessionDuration(policy.duration_minutes)
        except ValueError as exc:
            allowed = ", ".join(str(int(d)) for d in SessionDuration)
            raise InvalidPolicyError(
                f"Session duration must be one of {allowed} minutes."
            ) from exc
        return policy.spend_limit


def build_policy(
    duration_minutes: int,
    spend_limit: int,
    allowed_recipients: Iterable[str] = (),
) -> SessionPolicy:
    try:
        duration = SessionDuration(duration_minutes)
    except ValueError as exc:
        raise InvalidPolicyError(f"Unsupported session duration: {duration_minutes}") from exc
    return SessionPolicy(
        duration_minutes=duration,
        spend_limit=spend_limit,
        allowed_recipients=list(allowed_recipients),
    )


# Singleton instances
_session_store: Optional[SessionStore] = None
_session_manager: Optional[SessionKeyManager] = None


def get_session_store() -> SessionStore:
    """Get the process-wide session store, persisted under the client data dir."""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore(SessionPersistence(settings.sessions_path))
    return _session_store


def get_session_manager(ledger: Optional[Ledger] = None) -> SessionKeyManager:
    """Get the singleton session manager, attaching ``ledger`` when given."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionKeyManager(get_session_store(), ledger)
    elif ledger is not None:
        _session_manager.ledger = ledger
    return _session_manager
