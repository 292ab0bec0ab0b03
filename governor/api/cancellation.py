"""客户端断开检测：请求处理期间轮询连接状态，断开时取消编排协程。"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_CLOSED_REQUEST = 499


async def cancel_on_disconnect(request: Request, awaitable: Awaitable[T], *, poll_interval: float = 0.5) -> T:
    """等待 awaitable 完成；期间客户端断开则取消它，子进程随取消一并被回收。"""
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if task in done:
                return task.result()
            if await request.is_disconnected():
                logger.warning(
                    "client disconnected, cancelling request",
                    extra={"event": "http.request.cancelled", "op": f"{request.method} {request.url.path}"},
                )
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                raise HTTPException(status_code=CLIENT_CLOSED_REQUEST, detail="client disconnected")
    finally:
        if not task.done():
            task.cancel()
