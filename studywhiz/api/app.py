from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from .container import AppContainer, build_app_container
from .logging_config import configure_logging
from .request_context import REQUEST_ID, REQUEST_ID_HEADER, accept_request_id
from .routes import chat_routes, misc_routes

_log = logging.getLogger(__name__)


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    app_container = container or build_app_container()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        configure_logging()
        _log.info("StudyWhiz tutor API starting (%d models)", len(app_container.registry.models))
        yield

    app = FastAPI(title="StudyWhiz Tutor API", version="0.1.0", lifespan=lifespan)
    app.state.container = app_container

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        rid = accept_request_id(request.headers.get(REQUEST_ID_HEADER, ""))
        token = REQUEST_ID.set(rid)
        store = app_container.observability
        store.inc_inflight()
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            store.dec_inflight()
            store.record(
                method=request.method,
                route=request.url.path,
                status_code=status_code,
                latency_sec=time.monotonic() - started,
            )
            REQUEST_ID.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response

    app.include_router(chat_routes.build_router(app_container))
    app.include_router(misc_routes.build_router(app_container))
    return app


app = create_app()
