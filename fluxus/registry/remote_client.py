"""Async client for the remote passkey mapping registry."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import settings


logger = logging.getLogger(__name__)


class RemoteMappingRegistry:
    """
    Thin wrapper around ``POST /api/passkey-mappings``.

    Any non-2xx status, transport error or unexpected body reads as "no
    server-side mapping": ``has_any`` -> False, ``resolve`` -> None,
    ``upsert`` -> False. Callers fall back to the local cache.
    """

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or settings.registry_api_url
        self.timeout_s = timeout_s or settings.registry_request_timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
        }

    async def _post_action(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.debug("Passkey registry %s request failed: %s", payload.get("action"), exc)
            return None

        if not response.is_success:
            logger.debug(
                "Passkey registry %s returned %d", payload.get("action"), response.status_code
            )
            return None

        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    async def has_any(self) -> bool:
        body = await self._post_action({"action": "hasAny"})
        return bool(body) and body.get("hasAny") is True

    async def resolve(self, credential_id: str) -> Optional[str]:
        body = await self._post_action({"action": "resolve", "credentialId": credential_id})
        if not body:
            return None
        address = body.get("address")
        return address if isinstance(address, str) else None

    async def upsert(self, credential_id: str, address: str) -> bool:
        body = await self._post_action(
            {"action": "upsert", "credentialId": credential_id, "address": address}
        )
        return bool(body) and body.get("ok") is True
