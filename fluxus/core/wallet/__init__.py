"""
Session Keys

Pre-authorized, bounded spending for the passkey wallet:
- SessionKeyManager: create, match, account for and revoke session keys
- SessionStore: single-owner session list with publish-after-commit
- SessionTransferExecutor: send through a session or fall back to the root account
- SessionExpirySweeper: drop expired sessions on a fixed cadence

Usage:
    from fluxus.core.wallet import (
        SessionKeyManager,
        SessionTransferExecutor,
        build_policy,
        get_session_manager,
    )

    manager = get_session_manager(ledger)
    await manager.store.load()

    session = await manager.create_session(
        build_policy(duration_minutes=60, spend_limit=parse_units("50"))
    )

    executor = SessionTransferExecutor(manager)
    outcome = await executor.transfer("0x...", parse_units("10"))
    # outcome.session_id is None when the transfer needed passkey confirmation
"""

from .models import (
    AUTHORIZATION_CONSUMED,
    AuthorizationAvailable,
    AuthorizationConsumed,
    AuthorizationState,
    SessionDuration,
    SessionPolicy,
    SessionRecord,
    SessionSnapshot,
)
from .store import SessionPersistence, SessionStore
from .session_manager import (
    DelegationError,
    InvalidPolicyError,
    SessionKeyError,
    SessionKeyManager,
    UnsupportedAccountError,
    build_policy,
    get_session_manager,
    get_session_store,
)
from .expiry import SessionExpirySweeper
from .executor import SessionTransferExecutor, TransferLeg, TransferOutcome

__all__ = [
    # Models
    "AUTHORIZATION_CONSUMED",
    "AuthorizationAvailable",
    "AuthorizationConsumed",
    "AuthorizationState",
    "SessionDuration",
    "SessionPolicy",
    "SessionRecord",
    "SessionSnapshot",
    # Store
    "SessionPersistence",
    "SessionStore",
    # Manager
    "SessionKeyManager",
    "SessionKeyError",
    "InvalidPolicyError",
    "UnsupportedAccountError",
    "DelegationError",
    "build_policy",
    "get_session_manager",
    "get_session_store",
    # Execution
    "SessionExpirySweeper",
    "SessionTransferExecutor",
    "TransferLeg",
    "TransferOutcome",
]
