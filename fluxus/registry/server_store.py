"""
Server-side encrypted passkey mapping database.

Records are keyed by an HMAC of (request origin, credential id) under the
server secret, so one credential used from two origins lands in two
unrelated rows. Addresses are sealed with AES-256-GCM under a key derived
from the secret. Without a secret of at least 32 characters the registry
is not ready and refuses every operation without opening the database.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import structlog
from cryptography.exceptions import InvalidTag

from ..config import MIN_REGISTRY_SECRET_LENGTH, settings
from . import crypto


logger = structlog.stdlib.get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS passkey_wallet_mappings (
    credential_hash TEXT PRIMARY KEY,
    address_ciphertext TEXT NOT NULL,
    iv TEXT NOT NULL,
    auth_tag TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class MappingFailure(str, Enum):
    MISSING_SECRET = "missing-secret"
    DECRYPT_FAILED = "decrypt-failed"
    STORAGE_ERROR = "storage-error"


@dataclass(frozen=True)
class MappingResult:
    ok: bool
    address: Optional[str] = None
    reason: Optional[MappingFailure] = None


class PasskeyMappingDatabase:
    """SQLite-backed store shared by all requests of one server process."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        secret_provider: Optional[Callable[[], str]] = None,
    ):
        self.db_path = Path(db_path or settings.passkey_mapping_db_path)
        self._secret_provider = secret_provider or (lambda: settings.passkey_registry_secret)
        self._conn: Optional[sqlite3.Connection] = None
        self._guard = threading.RLock()

    # ---------------------------
    # Readiness
    # ---------------------------
    def _secret(self) -> Optional[str]:
        secret = self._secret_provider() or ""
        if len(secret.strip()) < MIN_REGISTRY_SECRET_LENGTH:
            return None
        return secret

    def is_ready(self) -> bool:
        return self._secret() is not None

    # ---------------------------
    # Operations
    # ---------------------------
    def has_any(self) -> bool:
        if not self.is_ready():
            return False
        with self._guard:
            row = self._db().execute(
                "SELECT COUNT(1) AS total FROM passkey_wallet_mappings"
            ).fetchone()
        return int(row["total"] if row else 0) > 0

    def upsert(self, origin: str, credential_id: str, address: str) -> MappingResult:
        secret = self._secret()
        if secret is None:
            return MappingResult(ok=False, reason=MappingFailure.MISSING_SECRET)

        credential_hash = crypto.hmac_credential_hash(origin, credential_id, secret)
        sealed = crypto.seal_address(address, secret)
        now = _utc_now_iso()

        try:
            with self._guard:
                conn = self._db()
                with conn:
                    conn.execute(
                        """
                        INSERT INTO passkey_wallet_mappings (
                            credential_hash, address_ciphertext, iv, auth_tag, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        ON CONFLICT(credential_hash) DO UPDATE SET
                            address_ciphertext = excluded.address_ciphertext,
                            iv = excluded.iv,
                            auth_tag = excluded.auth_tag,
                            updated_at = excluded.updated_at
                        """,
                        (
                            credential_hash,
                            sealed.address_ciphertext,
                            sealed.iv,
                            sealed.auth_tag,
                            now,
                            now,
                        ),
                    )
        except sqlite3.Error as exc:
            logger.error("passkey_mapping_upsert_failed", credential_hash=credential_hash, error=str(exc))
            return MappingResult(ok=False, reason=MappingFailure.STORAGE_ERROR)

        return MappingResult(ok=True)

    def resolve(self, origin: str, credential_id: str) -> MappingResult:
        """A missing row is ``ok`` with no address; a row that won't decrypt is a failure."""
        secret = self._secret()
        if secret is None:
            return MappingResult(ok=False, reason=MappingFailure.MISSING_SECRET)

        credential_hash = crypto.hmac_credential_hash(origin, credential_id, secret)
        try:
            with self._guard:
                row = self._db().execute(
                    """
                    SELECT address_ciphertext, iv, auth_tag
                    FROM passkey_wallet_mappings
                    WHERE credential_hash = ?
                    LIMIT 1
                    """,
                    (credential_hash,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.error("passkey_mapping_lookup_failed", credential_hash=credential_hash, error=str(exc))
            return MappingResult(ok=False, reason=MappingFailure.STORAGE_ERROR)

        if row is None:
            return MappingResult(ok=True, address=None)

        try:
            address = crypto.open_address(
                crypto.SealedAddress(
                    address_ciphertext=row["address_ciphertext"],
                    iv=row["iv"],
                    auth_tag=row["auth_tag"],
                ),
                secret,
            )
        except (InvalidTag, ValueError):
            logger.warning("passkey_mapping_undecryptable", credential_hash=credential_hash)
            return MappingResult(ok=False, reason=MappingFailure.DECRYPT_FAILED)

        return MappingResult(ok=True, address=address)

    def close(self) -> None:
        with self._guard:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL;")
            conn.execute("PRAGMA foreign_keys = ON;")
            with conn:
                conn.executescript(_SCHEMA)
            self._conn = conn
        return self._conn


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# Singleton instance
_database: Optional[PasskeyMappingDatabase] = None


def get_passkey_mapping_database() -> PasskeyMappingDatabase:
    global _database
    if _database is None:
        _database = PasskeyMappingDatabase()
    return _database
