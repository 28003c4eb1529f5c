from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..registry.server_store import PasskeyMappingDatabase, get_passkey_mapping_database

router = APIRouter()


@router.get("/healthz")
async def health_check(
    database: PasskeyMappingDatabase = Depends(get_passkey_mapping_database),
) -> Dict[str, Any]:
    """Liveness plus passkey registry readiness"""
    ready = database.is_ready()
    return {
        "status": "healthy" if ready else "degraded",
        "passkey_registry_ready": ready,
    }
