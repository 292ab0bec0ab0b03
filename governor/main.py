"""FastAPI 应用入口。"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from governor.api.router import api_router
from governor.application.container import shutdown_container_resources
from governor.config import Settings, get_settings
from governor.infra.db.session import init_db
from governor.infra.logging.context import bind_log_context
from governor.infra.logging.setup import configure_logging, shutdown_logging

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


def _log_request(request: Request, started: float, *, status_code: int | None = None, exc: Exception | None = None) -> None:
    extra: dict = {
        "op": f"{request.method} {request.url.path}",
        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
    }
    if exc is None:
        logger.info("http request completed", extra={**extra, "event": "http.request.completed", "status_code": status_code})
        return
    logger.exception(
        "http request failed",
        extra={**extra, "event": "http.request.failed", "error_type": type(exc).__name__, "error": str(exc)},
    )


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """沿用调用方的 X-Request-Id（缺省时生成），绑定到日志上下文并回写响应头。"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    started = time.perf_counter()
    with bind_log_context(request_id=request_id):
        try:
            response = await call_next(request)
        except Exception as exc:
            _log_request(request, started, exc=exc)
            raise
        _log_request(request, started, status_code=response.status_code)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app(settings: Settings) -> FastAPI:
    """装配应用：生命周期内建表，退出时关闭模型客户端与日志监听器。"""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "governor starting",
            extra={"event": "api.startup.started", "payload_preview": {"execution_mode": settings.execution_mode.value}},
        )
        init_db()
        logger.info("governor ready", extra={"event": "api.startup.succeeded"})
        yield
        logger.info("governor stopping", extra={"event": "api.shutdown.started"})
        try:
            await shutdown_container_resources()
        finally:
            shutdown_logging()

    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    origins = settings.cors_allowed_origins_list()
    if origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=settings.cors_allowed_methods_list(),
            allow_headers=settings.cors_allowed_headers_list(),
            allow_credentials=settings.cors_allow_credentials,
        )
    application.middleware("http")(request_id_middleware)

    @application.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    application.include_router(api_router)
    return application


settings = get_settings()
configure_logging(settings, process_role="api")
app = create_app(settings)
