"""数据库引擎与会话工厂；SQLite 需要放开跨线程访问，仓储调用走 asyncio.to_thread。"""

from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from governor.config import get_settings
from governor.infra.db.models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **options)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)


def init_db(bind: Engine | None = None) -> None:
    """建立 conversations/messages 表（已存在则跳过）。"""
    target = bind or engine
    fields = {"external_service": "database", "op": "create_all"}
    started = time.perf_counter()
    try:
        Base.metadata.create_all(bind=target)
    except Exception as exc:
        logger.exception(
            "schema setup failed",
            extra={
                **fields,
                "event": "db.init.failed",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        raise
    logger.info(
        "schema ready",
        extra={
            **fields,
            "event": "db.init.succeeded",
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "payload_preview": {"tables": sorted(Base.metadata.tables)},
        },
    )
