"""
Client-side encrypted passkey → wallet address cache.

Lets a returning user get their wallet address back on this device without
asking the server. Records are keyed by a hash of (origin, credential id)
and the address is sealed under a key only someone holding the credential
id on the same origin can derive. This keeps casual readers of the local
database out; it is not a defence against a compromised device.

Every public operation degrades to ``None`` / ``False`` / no-op when storage
or crypto is unavailable or a record does not decrypt.
"""

from __future__ import annotations

import asyncio
import json
import os
import sqlite3
import tempfile
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

import structlog
from cryptography.exceptions import InvalidTag

from ..config import settings
from . import crypto


logger = structlog.stdlib.get_logger(__name__)

REGISTRY_SALT_KEY = "tempo.walletRegistrySalt"
ACTIVE_CREDENTIAL_KEY = "wagmi.webAuthn.activeCredential"
LAST_ACTIVE_CREDENTIAL_KEY = "wagmi.webAuthn.lastActiveCredential"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS wallet_mappings (
    credential_hash TEXT PRIMARY KEY,
    address_ciphertext TEXT NOT NULL,
    iv TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class LocalStorage:
    """String key/value pairs in a JSON file, the way a browser keeps localStorage."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    def keys(self) -> list[str]:
        return list(self._read().keys())


@dataclass(frozen=True)
class WalletMappingRecord:
    credential_hash: str
    address_ciphertext: str
    iv: str
    created_at: str
    updated_at: str


class EncryptedMappingStore:
    """Local encrypted credential → address table."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        storage: Optional[LocalStorage] = None,
        *,
        origin: Optional[str] = None,
        iterations: int = crypto.PBKDF2_ITERATIONS,
        enabled: bool = True,
    ):
        self.db_path = Path(db_path or settings.local_registry_db_path)
        self.storage = storage or LocalStorage(settings.local_storage_path)
        self.origin = origin or settings.client_origin
        self.iterations = iterations
        self.enabled = enabled

    # ---------------------------
    # Capability gate
    # ---------------------------
    def can_use_registry(self) -> bool:
        if not self.enabled:
            return False
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.db_path.parent, os.R_OK | os.W_OK)

    # ---------------------------
    # Public API
    # ---------------------------
    async def has_any(self) -> bool:
        """Whether any mapping exists on this device. A UX hint, never a security check."""
        if not self.can_use_registry():
            return False
        try:
            return await asyncio.to_thread(self._count) > 0
        except sqlite3.Error as exc:
            logger.warning("local_registry_unreadable", error=str(exc))
            return False

    async def get(self, credential_id: str) -> Optional[str]:
        """Decrypted address for ``credential_id`` on this origin, or None."""
        if not self.can_use_registry() or not credential_id:
            return None
        try:
            return await asyncio.to_thread(self._get_sync, credential_id)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.warning("local_registry_lookup_failed", credential_id=credential_id, error=str(exc))
            return None

    async def put(self, credential_id: str, address: str) -> None:
        """Upsert the mapping with a fresh IV, keeping the original ``created_at``."""
        if not self.can_use_registry() or not credential_id:
            return
        try:
            await asyncio.to_thread(self._put_sync, credential_id, address)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.warning("local_registry_write_failed", credential_id=credential_id, error=str(exc))

    def get_active_credential_id(self) -> Optional[str]:
        """The credential the passkey connector marked active, else the last active one."""
        try:
            return (
                self.storage.get_item(ACTIVE_CREDENTIAL_KEY)
                or self.storage.get_item(LAST_ACTIVE_CREDENTIAL_KEY)
            )
        except (OSError, ValueError):
            return None

    def set_active_credential_id(self, credential_id: str) -> None:
        try:
            self.storage.set_item(ACTIVE_CREDENTIAL_KEY, credential_id)
            self.storage.set_item(LAST_ACTIVE_CREDENTIAL_KEY, credential_id)
        except (OSError, ValueError) as exc:
            logger.warning("active_credential_unsaved", credential_id=credential_id, error=str(exc))

    # ---------------------------
    # Internals (run in a worker thread)
    # ---------------------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        with conn:
            conn.executescript(_SCHEMA)
        return conn

    def _salt(self) -> Optional[str]:
        try:
            existing = self.storage.get_item(REGISTRY_SALT_KEY)
            if existing:
                return existing
            generated = crypto.generate_salt()
            self.storage.set_item(REGISTRY_SALT_KEY, generated)
            return generated
        except (OSError, ValueError) as exc:
            logger.warning("registry_salt_unavailable", error=str(exc))
            return None

    def _count(self) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT COUNT(1) AS total FROM wallet_mappings").fetchone()
        return int(row["total"] if row else 0)

    def _fetch(self, conn: sqlite3.Connection, credential_hash: str) -> Optional[WalletMappingRecord]:
        row = conn.execute(
            "SELECT credential_hash, address_ciphertext, iv, created_at, updated_at "
            "FROM wallet_mappings WHERE credential_hash = ?",
            (credential_hash,),
        ).fetchone()
        if row is None:
            return None
        return WalletMappingRecord(**dict(row))

    def _get_sync(self, credential_id: str) -> Optional[str]:
        salt = self._salt()
        if not salt:
            return None

        credential_hash = crypto.hash_credential_id(self.origin, credential_id)
        with closing(self._connect()) as conn:
            record = self._fetch(conn, credential_hash)
        if record is None:
            return None

        try:
            key = crypto.derive_credential_key(self.origin, credential_id, salt, self.iterations)
            return crypto.decrypt_with_key(record.address_ciphertext, record.iv, key)
        except (InvalidTag, ValueError):
            logger.debug("local_mapping_undecryptable", credential_id=credential_id)
            return None

    def _put_sync(self, credential_id: str, address: str) -> None:
        salt = self._salt()
        if not salt:
            return

        credential_hash = crypto.hash_credential_id(self.origin, credential_id)
        key = crypto.derive_credential_key(self.origin, credential_id, salt, self.iterations)
        ciphertext, iv = crypto.encrypt_with_key(address, key)
        now = _utc_now_iso()

        with closing(self._connect()) as conn:
            with conn:
                existing = self._fetch(conn, credential_hash)
                conn.execute(
                    "INSERT OR REPLACE INTO wallet_mappings "
                    "(credential_hash, address_ciphertext, iv, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        credential_hash,
                        ciphertext,
                        iv,
                        existing.created_at if existing else now,
                        now,
                    ),
                )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

