"""Health check endpoints router for monitoring service availability."""

from typing import Any

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from src.accounts.api.http.deps import get_record_store
from src.accounts.core.errors import TransientStoreError
from src.accounts.core.storage.record_store import RecordStore
from src.accounts.runtime.context import get_config

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health() -> dict[str, str]:
    """Liveness probe: 200 as long as the process is running."""
    return {"status": "healthy", "service": "accounts"}


@router.get("/ready", response_model=None)
async def readiness(
    store: RecordStore = Depends(get_record_store),
) -> dict[str, Any] | JSONResponse:
    """Readiness probe: 503 while the record store is unreachable."""
    config = get_config()
    try:
        store_healthy = await store.is_available()
    except TransientStoreError:
        store_healthy = False

    body = {
        "status": "ready" if store_healthy else "not_ready",
        "environment": config.app.environment,
        "checks": {
            "record_store": {
                "status": "healthy" if store_healthy else "unhealthy",
                "backend": config.identity.store_backend,
            }
        },
    }
    if not store_healthy:
        return JSONResponse(status_code=503, content=body)
    return body
