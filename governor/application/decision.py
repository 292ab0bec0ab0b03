"""决策引擎：请求模型在直接回复与执行技能之间做选择，并容错解析其输出。"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from governor.domain.enums import DecisionAction, MessageRole
from governor.domain.errors import UnsupportedActionError
from governor.domain.models import ChatMessage, Decision, RespondDecision, RunSkillDecision
from governor.domain.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

UNDECIDED_TEXT = "I could not decide an action, but I am ready."
MODEL_UNAVAILABLE_TEXT = (
    "I can't reach my reasoning backend right now ({reason}). "
    "Please try again in a moment."
)

DECISION_PROMPT_TEMPLATE = """You are OpenClaw Brain inside OpenMax.

Your goal: help non-developers get results instantly.

You may either:
1) Respond normally.
2) Run ONE skill from the list to gather facts or apply a safe fix.

Return ONLY valid JSON (no markdown). Choose one:
{{"action":"respond","text":"..."}}
{{"action":"run_skill","skillId":"<id>","reason":"..."}}

Available skills:
{catalog}

Rules:
{rules}
"""


class ChatBackend(Protocol):
    async def chat(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        *,
        model: str | None = None,
        options: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> str: ...


def safe_json_parse(text: str) -> Any | None:
    """严格解析 JSON；失败时截取首个 `{` 到末个 `}` 再试一次。"""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        pass
    # 模型常把 JSON 包在说明文字或代码块里。
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(text[start : end + 1])
    except ValueError:
        return None


def parse_decision(raw: str) -> Decision:
    """将模型原始输出转为 Decision；无法解析时降级为直接回复。"""
    parsed = safe_json_parse(raw) if raw else None
    if not isinstance(parsed, dict) or not parsed.get("action"):
        return RespondDecision(text=raw or UNDECIDED_TEXT, raw=raw)

    action = parsed.get("action")
    if action == DecisionAction.respond.value:
        text = parsed.get("text")
        return RespondDecision(text=str(text) if text else "OK.", raw=raw)
    if action == DecisionAction.run_skill.value:
        skill_id = parsed.get("skillId")
        if skill_id is None:
            skill_id = parsed.get("skill_id")
        reason = parsed.get("reason")
        return RunSkillDecision(
            skill_id=str(skill_id) if skill_id is not None else "",
            reason=str(reason) if reason is not None else None,
            raw=raw,
        )
    raise UnsupportedActionError(f"Unsupported action: {action}", raw=raw)


def to_model_history(messages: Sequence[dict[str, Any]]) -> list[ChatMessage]:
    """把持久化消息映射成模型可接受的 user/assistant 角色。"""
    history: list[ChatMessage] = []
    for item in messages:
        role = str(item.get("role") or "")
        content = str(item.get("content") or "")
        if role == MessageRole.user.value:
            history.append(ChatMessage(role="user", content=content))
        elif role == MessageRole.system.value:
            history.append(ChatMessage(role="assistant", content=f"[SYSTEM NOTE]\n{content}"))
        else:
            history.append(ChatMessage(role="assistant", content=content))
    return history


class DecisionEngine:
    """决策引擎：构建系统提示词、调用模型并解析决策。"""
    def __init__(
        self,
        *,
        client: ChatBackend,
        skill_registry: SkillRegistry,
        timeout_seconds: float = 120.0,
        default_options: dict[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._skill_registry = skill_registry
        self._timeout_seconds = timeout_seconds
        self._default_options = default_options or {"temperature": 0.2}

    def build_system_prompt(self) -> str:
        return DECISION_PROMPT_TEMPLATE.format(
            catalog=self._skill_registry.render_catalog(),
            rules=self._skill_registry.render_rules(),
        )

    async def decide(
        self,
        history: Sequence[ChatMessage],
        *,
        model: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> Decision:
        """返回 Decision；模型不可达时返回降级回复而不是抛错。

        未知 action 会抛出 UnsupportedActionError，由调用方转换为客户端错误。
        """
        try:
            raw = await self._client.chat(
                self.build_system_prompt(),
                history,
                model=model,
                options=options or self._default_options,
                timeout_seconds=self._timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "decision degraded: model unavailable",
                extra={
                    "event": "decision.degraded",
                    "external_service": "model",
                    "op": "decide",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            reason = str(exc) or type(exc).__name__
            return RespondDecision(text=MODEL_UNAVAILABLE_TEXT.format(reason=reason), degraded=True)

        decision = parse_decision(raw)
        logger.info(
            "decision parsed",
            extra={
                "event": "decision.parsed",
                "op": "decide",
                "payload_preview": {
                    "action": type(decision).__name__,
                    "skill_id": getattr(decision, "skill_id", None),
                    "raw_chars": len(raw or ""),
                },
            },
        )
        return decision
