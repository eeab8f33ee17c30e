from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse


def build_router(container: Any) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health():
        keys = container.provider_keys
        payload = {
            "status": "ok",
            "models": len(container.registry.models),
            "providers_configured": [p.value for p in keys.configured()],
        }
        return JSONResponse(content=payload)

    @router.get("/ops/metrics")
    async def ops_metrics():
        return container.observability.snapshot()

    return router
