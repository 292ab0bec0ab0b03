"""编排服务门面：决策、路由、执行、摘要，并把对话轮次写回持久化层。"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from governor.application.decision import DecisionEngine, to_model_history
from governor.application.summarizer import Summarizer
from governor.config import Settings
from governor.domain.enums import DecisionAction, MessageRole
from governor.domain.errors import UnknownSkillError
from governor.domain.models import (
    AgentRequest,
    AgentResponse,
    ChatMessage,
    ExecutionResult,
    ExecutionTarget,
    RespondDecision,
    Skill,
    SkillRunReport,
    TargetOverrides,
    ToolReport,
)
from governor.domain.skills.registry import SkillRegistry
from governor.infra.db.repository import ConversationRepository
from governor.infra.execution.router import ExecutionRouter
from governor.infra.execution.runner import CommandRunner
from governor.infra.llm.client import ModelBackendError, ModelClient
from governor.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentOrchestrator:
    """应用编排服务门面，串联 决策 -> 路由 -> 执行 -> 摘要 的单次请求流程。

    不做自动重试；每个外部阶段各自受超时约束。校验失败抛出 KeyError/ValueError，
    由 API 层映射为 404/400。
    """
    def __init__(
        self,
        *,
        settings: Settings,
        repository: ConversationRepository,
        skill_registry: SkillRegistry,
        router: ExecutionRouter,
        runner: CommandRunner,
        decision_engine: DecisionEngine,
        summarizer: Summarizer,
        model_client: ModelClient,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._skill_registry = skill_registry
        self._router = router
        self._runner = runner
        self._decision_engine = decision_engine
        self._summarizer = summarizer
        self._model_client = model_client

    def list_skills(self) -> list[dict[str, str]]:
        return self._skill_registry.list_descriptors()

    async def brain_status(self) -> dict[str, Any]:
        """探测模型后端可用性，任何失败都体现在返回体而不是异常中。"""
        status: dict[str, Any] = {
            "ok": False,
            "model_url": self._model_client.base_url,
            "model": self._model_client.model,
        }
        try:
            models = await self._model_client.list_models(
                timeout_seconds=self._settings.model_status_timeout_seconds
            )
        except ModelBackendError as exc:
            if exc.status_code is not None:
                status["status"] = exc.status_code
            else:
                status["error"] = str(exc)
            return status
        status["ok"] = True
        status["models"] = models[:30]
        return status

    async def decide_and_respond(self, request: AgentRequest) -> AgentResponse:
        """处理一次对话请求：先让模型决策，必要时执行技能并摘要输出。"""
        if not request.session_id:
            raise ValueError("sessionId is required")

        with bind_log_context(session_id=request.session_id):
            conversation = await asyncio.to_thread(self._repository.get_conversation, request.session_id)
            if conversation is None:
                raise KeyError(f"Conversation not found: {request.session_id}")

            warnings: list[str] = []
            user_turn_saved = True
            if request.message:
                user_turn_saved = await self._persist_turn(
                    conversation.id,
                    MessageRole.user.value,
                    request.message,
                    None,
                    warnings,
                )

            history = await self._load_history(
                conversation.id,
                request.message,
                warnings,
                message_saved=user_turn_saved,
            )

            try:
                return await self._respond(conversation.id, request, history, warnings)
            except ValueError as exc:
                # 被拒绝的请求也要留下助手轮次，会话不以未应答的用户消息结尾。
                await self._persist_turn(
                    conversation.id,
                    MessageRole.assistant.value,
                    f"Request rejected: {exc}",
                    {"action": "error", "error": str(exc)},
                    warnings,
                )
                raise

    async def _respond(
        self,
        conversation_id: int,
        request: AgentRequest,
        history: list[ChatMessage],
        warnings: list[str],
    ) -> AgentResponse:
        decision = await self._decision_engine.decide(
            history,
            model=request.model,
            options=request.options,
        )

        if isinstance(decision, RespondDecision):
            response = AgentResponse(
                action=DecisionAction.respond.value,
                assistant=decision.text,
                raw=decision.raw,
                warnings=warnings,
            )
            await self._persist_turn(
                conversation_id,
                MessageRole.assistant.value,
                response.assistant,
                {"action": response.action, "degraded": decision.degraded},
                warnings,
            )
            return response

        # 模型给出的 skillId 属于不可信输入，执行前必须经注册中心校验。
        if not self._skill_registry.contains(decision.skill_id):
            raise UnknownSkillError(f"Unknown skillId: {decision.skill_id}", raw=decision.raw)
        skill = self._skill_registry.get(decision.skill_id)

        with bind_log_context(skill_id=skill.id):
            target, result, executed_at = await self._execute_skill(skill, request.overrides)
            summary = await self._summarizer.summarize(
                skill.title,
                target,
                result,
                user_request=_last_user_request(history),
                model=request.model,
            )

        response = AgentResponse(
            action=DecisionAction.run_skill.value,
            assistant=summary,
            skill_id=skill.id,
            title=skill.title,
            tool=ToolReport(
                success=result.success,
                host=target.host,
                user=target.user,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                error=result.error,
                timed_out=result.timed_out,
                truncated=result.truncated,
                duration_ms=result.duration_ms,
                executed_at=executed_at,
            ),
            raw=decision.raw,
            warnings=warnings,
        )
        await self._persist_turn(
            conversation_id,
            MessageRole.assistant.value,
            response.assistant,
            {
                "action": response.action,
                "skillId": skill.id,
                "exitCode": result.exit_code,
                "success": result.success,
            },
            warnings,
        )
        return response

    async def run_skill(
        self,
        skill_id: str,
        overrides: TargetOverrides | None = None,
        model: str | None = None,
    ) -> SkillRunReport:
        """直接执行指定技能；未知技能在任何执行之前抛出 KeyError。"""
        skill = self._skill_registry.get(skill_id)
        with bind_log_context(skill_id=skill.id):
            target, result, executed_at = await self._execute_skill(skill, overrides)
            summary = await self._summarizer.summarize(skill.title, target, result, model=model)
        return SkillRunReport(
            success=result.success,
            skill_id=skill.id,
            title=skill.title,
            host=target.host,
            user=target.user,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            summary=summary,
            error=result.error,
            timed_out=result.timed_out,
            truncated=result.truncated,
            duration_ms=result.duration_ms,
            executed_at=executed_at,
        )

    async def _execute_skill(
        self,
        skill: Skill,
        overrides: TargetOverrides | None,
    ) -> tuple[ExecutionTarget, ExecutionResult, datetime]:
        target = self._router.resolve_target(overrides)
        self._router.ensure_credentials(target)
        runner_target = self._router.runner_target(target)
        logger.info(
            "skill execution routed",
            extra={
                "event": "skill.execution.routed",
                "op": "local" if runner_target is None else "ssh",
                "payload_preview": {"host": target.host, "mode": self._router.mode.value},
            },
        )
        started = time.perf_counter()
        result = await self._runner.run(skill.command, runner_target)
        executed_at = utcnow()
        logger.info(
            "skill execution completed",
            extra={
                "event": "skill.execution.completed",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {
                    "exit_code": result.exit_code,
                    "success": result.success,
                    "timed_out": result.timed_out,
                    "truncated": result.truncated,
                },
            },
        )
        return target, result, executed_at

    async def _load_history(
        self,
        conversation_id: int,
        message: str | None,
        warnings: list[str],
        *,
        message_saved: bool = True,
    ) -> list[ChatMessage]:
        """回读最近的对话历史；本轮用户消息未能落库时补在末尾。"""
        try:
            rows = await asyncio.to_thread(
                self._repository.list_messages,
                conversation_id,
                self._settings.history_limit,
                newest=True,
            )
        except Exception as exc:
            logger.warning(
                "history load failed",
                extra={
                    "event": "conversation.history.load_failed",
                    "external_service": "database",
                    "op": "list_messages",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            warnings.append(f"history unavailable: {exc}")
            return [ChatMessage(role="user", content=message)] if message else []
        history = to_model_history([{"role": row.role, "content": row.content} for row in rows])
        if message and not message_saved:
            history.append(ChatMessage(role="user", content=message))
        return history

    async def _persist_turn(
        self,
        conversation_id: int,
        role: str,
        content: str,
        metadata: dict[str, Any] | None,
        warnings: list[str],
    ) -> bool:
        """写入对话轮次；失败只记日志并追加到 warnings，不中断本次请求。"""
        try:
            await asyncio.to_thread(self._repository.add_message, conversation_id, role, content, metadata)
        except Exception as exc:
            logger.warning(
                "conversation turn persist failed",
                extra={
                    "event": "conversation.turn.persist_failed",
                    "external_service": "database",
                    "op": "add_message",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"role": role},
                },
            )
            warnings.append(f"failed to persist {role} message: {exc}")
            return False
        return True


def _last_user_request(history: list[ChatMessage]) -> str:
    for item in reversed(history):
        if item.role == "user":
            return item.content
    return ""
