"""
Passkey mappings API

One POST endpoint, three actions:
- hasAny:  {"action": "hasAny"} -> {"hasAny": bool}
- resolve: {"action": "resolve", "credentialId"} -> {"address": str | null}
- upsert:  {"action": "upsert", "credentialId", "address"} -> {"ok": true}

Checks run in order: rate limit (429), readiness (503), body size (413),
JSON and schema (400). Only then is storage or crypto touched.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from typing import Annotated, Literal, Union

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictStr, TypeAdapter, ValidationError, field_validator

from ..config import settings
from ..middleware.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitExceeded,
    client_identifier,
    get_rate_limiter,
)
from ..registry.server_store import PasskeyMappingDatabase, get_passkey_mapping_database
from ..services.address import is_valid_address

logger = structlog.stdlib.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["passkey-mappings"])

CREDENTIAL_ID_MIN_LENGTH = 8
CREDENTIAL_ID_MAX_LENGTH = 4096


# ============================================================================
# Request Models
# ============================================================================


class HasAnyAction(BaseModel):
    action: Literal["hasAny"]


class ResolveAction(BaseModel):
    action: Literal["resolve"]
    credential_id: StrictStr = Field(
        alias="credentialId",
        min_length=CREDENTIAL_ID_MIN_LENGTH,
        max_length=CREDENTIAL_ID_MAX_LENGTH,
    )


class UpsertAction(BaseModel):
    action: Literal["upsert"]
    credential_id: StrictStr = Field(
        alias="credentialId",
        min_length=CREDENTIAL_ID_MIN_LENGTH,
        max_length=CREDENTIAL_ID_MAX_LENGTH,
    )
    address: StrictStr

    @field_validator("address")
    @classmethod
    def _address_is_valid(cls, value: str) -> str:
        if not is_valid_address(value):
            raise ValueError("address must be a valid EVM address")
        return value


MappingAction = Annotated[
    Union[HasAnyAction, ResolveAction, UpsertAction],
    Field(discriminator="action"),
]

_action_adapter: TypeAdapter[MappingAction] = TypeAdapter(MappingAction)


def _error(message: str, status_code: int, headers: dict | None = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


def _request_origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


# ============================================================================
# Endpoint
# ============================================================================


@router.post("/passkey-mappings")
async def passkey_mappings(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    database: PasskeyMappingDatabase = Depends(get_passkey_mapping_database),
) -> JSONResponse:
    try:
        limiter.check(client_identifier(request))
    except RateLimitExceeded as exc:
        return _error(
            "Too many requests. Please retry later.",
            status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(exc.retry_after)},
        )

    if not database.is_ready():
        return _error("Passkey registry is not configured.", status.HTTP_503_SERVICE_UNAVAILABLE)

    max_bytes = settings.passkey_mapping_max_body_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        return _error("Request body too large.", status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

    raw_body = await request.body()
    if len(raw_body) > max_bytes:
        return _error("Request body too large.", status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

    try:
        parsed = json.loads(raw_body)
    except ValueError:
        return _error("Invalid JSON payload.", status.HTTP_400_BAD_REQUEST)

    try:
        payload = _action_adapter.validate_python(parsed)
    except ValidationError:
        return _error("Invalid request payload.", status.HTTP_400_BAD_REQUEST)

    origin = _request_origin(request)

    if isinstance(payload, HasAnyAction):
        try:
            has_any = await asyncio.to_thread(database.has_any)
        except sqlite3.Error as exc:
            logger.error("passkey_mapping_count_failed", error=str(exc))
            return _error("Failed to read passkey mappings.", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse({"hasAny": has_any}, status_code=status.HTTP_200_OK)

    if isinstance(payload, ResolveAction):
        result = await asyncio.to_thread(database.resolve, origin, payload.credential_id)
        if not result.ok:
            logger.error(
                "passkey_mapping_resolve_failed",
                origin=origin,
                credential_id=payload.credential_id,
                reason=result.reason.value if result.reason else None,
            )
            return _error("Failed to resolve passkey mapping.", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse({"address": result.address}, status_code=status.HTTP_200_OK)

    result = await asyncio.to_thread(
        database.upsert, origin, payload.credential_id, payload.address
    )
    if not result.ok:
        logger.error(
            "passkey_mapping_upsert_failed",
            origin=origin,
            credential_id=payload.credential_id,
            reason=result.reason.value if result.reason else None,
        )
        return _error("Failed to persist passkey mapping.", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse({"ok": True}, status_code=status.HTTP_200_OK)
