from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from .. import settings
from ..chat_dispatch_service import ChatDispatchError, dispatch_chat, error_payload
from ..container import utc_now_iso

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"


def cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin(),
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }


def build_router(container: Any) -> APIRouter:
    router = APIRouter()

    @router.options("/ai-chat")
    async def ai_chat_preflight() -> Response:
        return Response(status_code=200, headers=cors_headers())

    @router.post("/ai-chat")
    async def ai_chat(request: Request) -> JSONResponse:
        raw_body = await request.body()
        deps = container.chat_dispatch_deps()
        try:
            payload = await run_in_threadpool(dispatch_chat, raw_body, deps=deps)
        except ChatDispatchError as exc:
            return JSONResponse(
                content=error_payload(exc.status_code, exc.detail, now_iso=utc_now_iso),
                status_code=exc.status_code,
                headers=cors_headers(),
            )
        return JSONResponse(content=payload, headers=cors_headers())

    return router
