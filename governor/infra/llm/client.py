"""模型后端 HTTP 客户端：封装 Ollama 风格的 chat 与模型列表接口。"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

import httpx

from governor.domain.models import ChatMessage

logger = logging.getLogger(__name__)


class ModelBackendError(RuntimeError):
    """模型后端不可达、超时或返回非 2xx。"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ModelClient:
    """模型后端异步 HTTP 客户端封装。"""
    def __init__(
        self,
        base_url: str,
        *,
        model: str,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._closed = False
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def model(self) -> str:
        return self._model

    def _client_or_raise(self) -> httpx.AsyncClient:
        """返回可用客户端；若已关闭则抛出异常。"""
        if self._closed:
            raise RuntimeError("ModelClient is already closed")
        return self._client

    async def close(self) -> None:
        """关闭底层连接池。"""
        if self._closed:
            return
        await self._client.aclose()
        self._closed = True

    async def _request(
        self,
        *,
        method: str,
        path: str,
        op: str,
        json_body: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
        payload_preview: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """发送 HTTP 请求并记录结构化日志，失败统一转为 ModelBackendError。"""
        started = time.perf_counter()
        timeout = httpx.Timeout(timeout_seconds) if timeout_seconds is not None else None
        try:
            kwargs: dict[str, Any] = {"json": json_body}
            if timeout is not None:
                kwargs["timeout"] = timeout
            response = await self._client_or_raise().request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            status_code = None
            detail = str(exc) or type(exc).__name__
            if isinstance(exc, httpx.HTTPStatusError):
                status_code = exc.response.status_code
                body = exc.response.text[:500]
                detail = f"model backend error ({status_code}): {body or exc.response.reason_phrase}"
            logger.error(
                "model request failed",
                extra={
                    "event": "model.request.failed",
                    "external_service": "model",
                    "op": op,
                    "duration_ms": duration_ms,
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": detail,
                    "payload_preview": payload_preview,
                },
            )
            raise ModelBackendError(detail, status_code=status_code) from exc
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "model request completed",
            extra={
                "event": "model.request.completed",
                "external_service": "model",
                "op": op,
                "duration_ms": duration_ms,
                "status_code": response.status_code,
            },
        )
        return response

    async def chat(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        *,
        model: str | None = None,
        options: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> str:
        """非流式 chat 调用，返回助手消息文本。"""
        messages = [{"role": "system", "content": system_prompt}]
        messages += [{"role": item.role, "content": item.content} for item in history]
        body: dict[str, Any] = {
            "model": model or self._model,
            "messages": messages,
            "stream": False,
        }
        if options:
            body["options"] = options
        response = await self._request(
            method="POST",
            path="/api/chat",
            op="chat",
            json_body=body,
            timeout_seconds=timeout_seconds,
            payload_preview={
                "model": body["model"],
                "message_count": len(messages),
                "system_chars": len(system_prompt),
            },
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelBackendError(f"model backend returned invalid JSON: {exc}") from exc
        message = payload.get("message") if isinstance(payload, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""

    async def list_models(self, *, timeout_seconds: float | None = None) -> list[str]:
        """查询后端已安装的模型名称列表。"""
        response = await self._request(method="GET", path="/api/tags", op="tags", timeout_seconds=timeout_seconds)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelBackendError(f"model backend returned invalid JSON: {exc}") from exc
        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            return []
        return [str(item.get("name")) for item in models if isinstance(item, dict) and item.get("name")]
