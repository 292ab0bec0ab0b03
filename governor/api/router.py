"""API 总路由配置，按业务域注册 brain、skills 与 conversations 子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from governor.api.v1.brain import router as brain_router
from governor.api.v1.conversations import router as conversations_router
from governor.api.v1.skills import router as skills_router
from governor.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(brain_router, tags=["brain"])
api_router.include_router(skills_router, tags=["skills"])
api_router.include_router(conversations_router, tags=["conversations"])
