"""日志初始化：JSON 行日志经队列异步落盘，执行凭据脱敏，按模块或会话放行 DEBUG。

一次 configure_logging 调用产出：
- 根 logger 上的 QueueHandler（挂上下文注入与 DEBUG 路由两个过滤器）；
- 后台 QueueListener，写 ``<log_dir>/<role>/governor.jsonl`` 并把 ERROR 镜像到 stderr。
"""

from __future__ import annotations

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from governor.config import Settings
from governor.infra.logging.context import get_log_context

_listener: QueueListener | None = None

_CONTEXT_KEYS = ("request_id", "session_id", "skill_id")
_TEXT_FIELDS = ("external_service", "op", "error_type")
_NUMERIC_FIELDS = ("duration_ms", "status_code", "exit_code")
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")

_SECRET_KEY = re.compile(r"(?i)^(password|sshpass|token|secret|api[-_]?key|authorization)$")
_SECRET_ASSIGNMENT = re.compile(
    r"(?i)\b(password|sshpass|token|secret|api[-_]?key)(\"?\s*[:=]\s*\"?)[^\s,;\"}]+"
)
_BEARER = re.compile(r"(?i)(authorization\s*[:=]\s*bearer\s+)[^\s,;\"]+")
_SSHPASS_ARGV = re.compile(r"(\bsshpass\s+-p\s*)\S+")
_SSH_LOGIN = re.compile(r"\b[\w.-]+@([\w.-]+)")


def redact_text(value: str | None, mode: str) -> str | None:
    """按模式脱敏文本；strict 模式额外隐藏 ssh 登录用户名。"""
    if value is None:
        return None
    text = str(value)
    mode = mode.lower()
    if mode == "off":
        return text
    text = _BEARER.sub(r"\1***", text)
    text = _SECRET_ASSIGNMENT.sub(r"\1\2***", text)
    text = _SSHPASS_ARGV.sub(r"\1***", text)
    if mode == "strict":
        text = _SSH_LOGIN.sub(r"***@\1", text)
    return text


def _mask_secret_keys(payload: Any) -> Any:
    if isinstance(payload, dict):
        return {
            key: "***" if _SECRET_KEY.match(str(key)) and value else _mask_secret_keys(value)
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [_mask_secret_keys(item) for item in payload]
    return payload


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    """序列化 payload 预览：先按键名遮蔽凭据，再做文本脱敏与截断。"""
    if payload is None:
        return None
    if isinstance(payload, str):
        serialized = payload
    else:
        if redaction_mode.lower() != "off":
            payload = _mask_secret_keys(payload)
        try:
            serialized = json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
        except TypeError:
            serialized = str(payload)
    preview = redact_text(serialized, redaction_mode) or ""
    if len(preview) > max_chars:
        preview = f"{preview[:max_chars]}...(truncated)"
    return preview


class ContextInjectionFilter(logging.Filter):
    """入队前把 contextvars 固化到 record 上，监听线程里读不到协程上下文。"""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class DebugRoutingFilter(logging.Filter):
    """低于 min_level 的记录默认丢弃；DEBUG 可按模块前缀或会话 ID 单独放行。"""

    def __init__(
        self,
        *,
        min_level: int,
        debug_modules: set[str] | frozenset[str],
        debug_session_ids: set[str] | frozenset[str],
    ) -> None:
        super().__init__()
        self._min_level = min_level
        self._module_prefixes = tuple(f"{item}." for item in debug_modules)
        self._modules = frozenset(debug_modules)
        self._sessions = frozenset(debug_session_ids)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self._min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        if record.name in self._modules or record.name.startswith(self._module_prefixes):
            return True
        session_id = getattr(record, "session_id", None) or get_log_context()["session_id"]
        return session_id in self._sessions


def _as_number(value: Any) -> int | float | None:
    if value is None or isinstance(value, (int, float)):
        return value
    text = str(value)
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


class StructuredJsonFormatter(logging.Formatter):
    """单行 JSON：固定的服务字段 + 上下文 ID + extra 中约定的结构化字段。"""

    def __init__(
        self,
        *,
        service: str,
        process_role: str,
        redaction_mode: str,
        payload_preview_chars: int,
    ) -> None:
        super().__init__()
        self._static = {"service": service, "process_role": process_role}
        self._redaction_mode = redaction_mode
        self._preview_chars = payload_preview_chars

    def _error_text(self, record: logging.LogRecord) -> str | None:
        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)
        return None if error is None else redact_text(str(error), self._redaction_mode)

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            **self._static,
            "module": record.name,
            "event": getattr(record, "event", None),
        }
        entry.update({key: getattr(record, key, None) or ctx.get(key) for key in _CONTEXT_KEYS})
        entry.update({key: getattr(record, key, None) for key in _TEXT_FIELDS})
        entry.update({key: _as_number(getattr(record, key, None)) for key in _NUMERIC_FIELDS})
        entry["message"] = redact_text(record.getMessage(), self._redaction_mode)
        entry["error"] = self._error_text(record)
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._preview_chars,
            redaction_mode=self._redaction_mode,
        )
        return json.dumps(entry, ensure_ascii=False)


def _resolve_log_file(settings: Settings, process_role: str) -> Path:
    root = settings.log_dir if settings.log_dir.is_absolute() else (Path.cwd() / settings.log_dir).resolve()
    role_dir = root / process_role
    role_dir.mkdir(parents=True, exist_ok=True)
    return role_dir / "governor.jsonl"


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """安装队列日志管线并返回 JSONL 文件路径；重复调用会先停掉旧的监听器。"""
    global _listener
    shutdown_logging()

    log_file = _resolve_log_file(settings, process_role)
    records: SimpleQueue[logging.LogRecord] = SimpleQueue()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "context": {"()": ContextInjectionFilter},
                "routing": {
                    "()": DebugRoutingFilter,
                    "min_level": getattr(logging, settings.log_level.upper(), logging.INFO),
                    "debug_modules": frozenset(settings.log_debug_modules_list()),
                    "debug_session_ids": frozenset(settings.log_debug_session_ids_list()),
                },
            },
            "handlers": {
                "queue": {
                    "class": "logging.handlers.QueueHandler",
                    "queue": records,
                    "filters": ["context", "routing"],
                }
            },
            "root": {"level": "DEBUG", "handlers": ["queue"]},
            "loggers": {name: {"level": "WARNING"} for name in _NOISY_LOGGERS},
        }
    )
    if not any(isinstance(item, QueueHandler) for item in logging.getLogger().handlers):
        raise RuntimeError("queue logging handler is not configured")

    formatter = StructuredJsonFormatter(
        service="orbit-governor",
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
    )
    jsonl = RotatingFileHandler(
        str(log_file),
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    jsonl.setFormatter(formatter)
    errors = logging.StreamHandler(stream=sys.stderr)
    errors.setLevel(logging.ERROR)
    errors.setFormatter(formatter)

    _listener = QueueListener(records, jsonl, errors, respect_handler_level=True)
    _listener.start()
    return log_file


def shutdown_logging() -> None:
    """停止监听器并关闭文件句柄；未初始化时为空操作。"""
    global _listener
    listener, _listener = _listener, None
    if listener is None:
        return
    listener.stop()
    for handler in listener.handlers:
        try:
            handler.close()
        except OSError:
            pass
