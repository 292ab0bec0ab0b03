"""依赖容器模块，负责单例化创建仓储、客户端与应用服务对象。"""

from __future__ import annotations

from functools import lru_cache

from governor.application.conversations import ConversationService
from governor.application.decision import DecisionEngine
from governor.application.orchestrator import AgentOrchestrator
from governor.application.summarizer import Summarizer
from governor.config import get_settings
from governor.domain.skills.registry import SkillRegistry
from governor.infra.db.repository import ConversationRepository
from governor.infra.db.session import SessionLocal
from governor.infra.execution.router import ExecutionRouter
from governor.infra.execution.runner import CommandRunner
from governor.infra.llm.client import ModelClient


@lru_cache(maxsize=1)
def get_skill_registry() -> SkillRegistry:
    """获取技能注册中心单例。"""
    return SkillRegistry()


@lru_cache(maxsize=1)
def get_repository() -> ConversationRepository:
    """获取会话仓储单例。"""
    return ConversationRepository(SessionLocal)


@lru_cache(maxsize=1)
def get_model_client() -> ModelClient:
    """获取模型后端客户端单例。"""
    settings = get_settings()
    return ModelClient(
        settings.model_base_url,
        model=settings.model_name,
        timeout_seconds=settings.model_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_command_runner() -> CommandRunner:
    settings = get_settings()
    return CommandRunner(
        local_shell=settings.local_shell,
        local_timeout_seconds=settings.local_timeout_seconds,
        remote_timeout_seconds=settings.remote_timeout_seconds,
        remote_connect_timeout_seconds=settings.remote_connect_timeout_seconds,
        max_output_bytes=settings.max_output_bytes,
    )


@lru_cache(maxsize=1)
def get_execution_router() -> ExecutionRouter:
    return ExecutionRouter.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_decision_engine() -> DecisionEngine:
    settings = get_settings()
    return DecisionEngine(
        client=get_model_client(),
        skill_registry=get_skill_registry(),
        timeout_seconds=settings.model_timeout_seconds,
        default_options={"temperature": settings.model_temperature},
    )


@lru_cache(maxsize=1)
def get_summarizer() -> Summarizer:
    settings = get_settings()
    return Summarizer(
        client=get_model_client(),
        timeout_seconds=settings.summary_timeout_seconds,
        max_transcript_chars=settings.summary_max_transcript_chars,
        temperature=settings.model_temperature,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> AgentOrchestrator:
    """获取编排服务单例。"""
    return AgentOrchestrator(
        settings=get_settings(),
        repository=get_repository(),
        skill_registry=get_skill_registry(),
        router=get_execution_router(),
        runner=get_command_runner(),
        decision_engine=get_decision_engine(),
        summarizer=get_summarizer(),
        model_client=get_model_client(),
    )


@lru_cache(maxsize=1)
def get_conversation_service() -> ConversationService:
    return ConversationService(get_repository())


async def shutdown_container_resources() -> None:
    """关闭共享客户端并清理依赖容器缓存。"""
    if get_model_client.cache_info().currsize:
        await get_model_client().close()

    # 按依赖顺序清理缓存，确保后续请求可重新构建全新实例。
    for provider in (
        get_orchestrator,
        get_conversation_service,
        get_summarizer,
        get_decision_engine,
        get_execution_router,
        get_command_runner,
        get_model_client,
        get_repository,
        get_skill_registry,
    ):
        provider.cache_clear()
