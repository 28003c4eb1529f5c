"""
Session key models.

A session pairs an ephemeral access key with a bounded policy: a spend
ceiling in smallest token units, an absolute expiry and an optional
recipient allowlist. Records are immutable; the store swaps in updated
copies so observers only ever see committed state.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union
import uuid

from ..ledger import KeyAuthorization


class SessionDuration(IntEnum):
    """Durations a session can be created with, in minutes."""
    FIFTEEN_MINUTES = 15
    ONE_HOUR = 60
    ONE_DAY = 1440


@dataclass(frozen=True)
class SessionPolicy:
    """What the user asks for when creating a session."""
    duration_minutes: SessionDuration
    spend_limit: int
    allowed_recipients: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuthorizationAvailable:
    """Signed key authorization not yet used on-chain."""
    token: KeyAuthorization = field(repr=False)


@dataclass(frozen=True)
class AuthorizationConsumed:
    """Key authorization already used (or never held in this process)."""
    pass


AuthorizationState = Union[AuthorizationAvailable, AuthorizationConsumed]

AUTHORIZATION_CONSUMED = AuthorizationConsumed()


@dataclass(frozen=True)
class SessionRecord:
    """
    A client-held session key.

    ``expires_at_sec`` is fixed at creation to
    ``created_at_ms / 1000 + duration_minutes * 60``. ``spent`` only grows.
    An empty ``allowed_recipients`` means any recipient.
    """
    id: str
    root_address: str
    access_private_key: str = field(repr=False)
    access_key_address: str
    created_at_ms: int
    expires_at_sec: int
    spend_limit: int
    spent: int = 0
    allowed_recipients: Tuple[str, ...] = ()
    authorization: AuthorizationState = AUTHORIZATION_CONSUMED

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    @property
    def key_authorization(self) -> Optional[KeyAuthorization]:
        if isinstance(self.authorization, AuthorizationAvailable):
            return self.authorization.token
        return None

    @property
    def has_authorization(self) -> bool:
        return isinstance(self.authorization, AuthorizationAvailable)

    @property
    def remaining_spend(self) -> int:
        if self.spent >= self.spend_limit:
            return 0
        return self.spend_limit - self.spent

    @property
    def has_recipient_policy(self) -> bool:
        return len(self.allowed_recipients) > 0

    def is_expired(self, now_sec: float) -> bool:
        return self.expires_at_sec <= now_sec

    def allows_recipient(self, recipient: str) -> bool:
        """``recipient`` must already be checksummed."""
        if not self.has_recipient_policy:
            return True
        return recipient in self.allowed_recipients

    def with_spend(self, amount: int) -> "SessionRecord":
        return replace(self, spent=self.spent + amount)

    def with_authorization_consumed(self) -> "SessionRecord":
        return replace(self, authorization=AUTHORIZATION_CONSUMED)

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form. The key authorization is memory-only and never written."""
        return {
            "id": self.id,
            "rootAddress": self.root_address,
            "accessPrivateKey": self.access_private_key,
            "accessKeyAddress": self.access_key_address,
            "createdAtMs": self.created_at_ms,
            "expiresAtSec": self.expires_at_sec,
            "spendLimit": str(self.spend_limit),
            "spent": str(self.spent),
            "allowedRecipients": list(self.allowed_recipients),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        return cls(
            id=data["id"],
            root_address=data["rootAddress"],
            access_private_key=data["accessPrivateKey"],
            access_key_address=data["accessKeyAddress"],
            created_at_ms=int(data["createdAtMs"]),
            expires_at_sec=int(data["expiresAtSec"]),
            spend_limit=int(data["spendLimit"]),
            spent=int(data.get("spent", "0")),
            allowed_recipients=tuple(data.get("allowedRecipients", [])),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Most-recent-first list of sessions."""
    sessions: Tuple[SessionRecord, ...] = ()

    def get(self, session_id: str) -> Optional[SessionRecord]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None
