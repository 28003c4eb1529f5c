"""
Passkey credential → wallet address restore flow.

On sign-in the wallet address is recovered from the server registry first
(works on a new device), then from this device's encrypted cache. After an
interactive passkey authorization succeeds the binding is written to both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..registry.local_store import EncryptedMappingStore
from ..registry.remote_client import RemoteMappingRegistry
from .address import try_normalize_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RememberResult:
    address: str
    server_saved: bool


class WalletRestoreService:
    def __init__(
        self,
        local_store: Optional[EncryptedMappingStore] = None,
        remote: Optional[RemoteMappingRegistry] = None,
    ) -> None:
        self.local_store = local_store or EncryptedMappingStore()
        self.remote = remote or RemoteMappingRegistry()

    async def has_wallet_history(self) -> bool:
        """UX hint: has this device or the server seen a wallet before."""
        if await self.local_store.has_any():
            return True
        return await self.remote.has_any()

    async def restore_address(self, credential_id: Optional[str] = None) -> Optional[str]:
        credential_id = credential_id or self.local_store.get_active_credential_id()
        if not credential_id:
            return None

        address = try_normalize_address(await self.remote.resolve(credential_id))
        if address:
            logger.debug("Wallet address restored from server registry")
            return address

        address = try_normalize_address(await self.local_store.get(credential_id))
        if address:
            logger.debug("Wallet address restored from local cache")
        return address

    async def remember(self, credential_id: str, address: str) -> RememberResult:
        """Persist the binding locally and on the server. Never raises for storage problems."""
        normalized = try_normalize_address(address)
        if normalized is None:
            raise ValueError(f"Invalid address: {address!r}")

        self.local_store.set_active_credential_id(credential_id)
        await self.local_store.put(credential_id, normalized)
        server_saved = await self.remote.upsert(credential_id, normalized)
        if not server_saved:
            logger.info("Server registry did not store the mapping; local cache only")
        return RememberResult(address=normalized, server_saved=server_saved)
