"""决策引擎测试：容错解析、角色归一化与模型不可用时的降级。"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from governor.application.decision import (
    UNDECIDED_TEXT,
    DecisionEngine,
    parse_decision,
    safe_json_parse,
    to_model_history,
)
from governor.domain.errors import DecisionRejectedError, UnsupportedActionError
from governor.domain.models import ChatMessage, RespondDecision, RunSkillDecision
from governor.domain.skills.registry import SkillRegistry
from governor.infra.llm.client import ModelBackendError


class _ChatStub:
    """记录调用参数并返回预设回复的模型桩。"""
    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self._reply = reply
        self._error = error
        self.calls: list[dict[str, Any]] = []

    async def chat(self, system_prompt, history, *, model=None, options=None, timeout_seconds=None) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "history": list(history),
                "model": model,
                "options": options,
                "timeout_seconds": timeout_seconds,
            }
        )
        if self._error is not None:
            raise self._error
        return self._reply or ""


def test_safe_json_parse_recovers_embedded_object() -> None:
    assert safe_json_parse('{"a": 1}') == {"a": 1}
    assert safe_json_parse('```json\n{"a": 1}\n```') == {"a": 1}
    assert safe_json_parse("no json here") is None
    assert safe_json_parse("} backwards {") is None


def test_parse_decision_with_surrounding_prose() -> None:
    """说明文字包裹的 JSON 仍能解析出 respond 决策。"""
    raw = "I'll just chat.\n{\"action\":\"respond\",\"text\":\"Hi\"}\nthanks"
    decision = parse_decision(raw)
    assert isinstance(decision, RespondDecision)
    assert decision.text == "Hi"
    assert decision.raw == raw


def test_parse_decision_degrades_to_raw_text() -> None:
    assert parse_decision("just words") == RespondDecision(text="just words", raw="just words")
    assert parse_decision('{"text": "no action"}').text == '{"text": "no action"}'
    assert parse_decision("").text == UNDECIDED_TEXT


def test_parse_decision_respond_without_text() -> None:
    assert parse_decision('{"action": "respond"}').text == "OK."


def test_parse_decision_run_skill_accepts_both_key_styles() -> None:
    decision = parse_decision('{"action":"run_skill","skillId":"vpn-status","reason":"vpn question"}')
    assert decision == RunSkillDecision(
        skill_id="vpn-status",
        reason="vpn question",
        raw='{"action":"run_skill","skillId":"vpn-status","reason":"vpn question"}',
    )
    assert parse_decision('{"action":"run_skill","skill_id":"repo-sync"}').skill_id == "repo-sync"


def test_parse_decision_unknown_action_is_client_error() -> None:
    raw = '{"action":"delete_everything"}'
    with pytest.raises(UnsupportedActionError) as exc_info:
        parse_decision(raw)
    assert isinstance(exc_info.value, DecisionRejectedError)
    assert isinstance(exc_info.value, ValueError)
    assert exc_info.value.raw == raw


def test_to_model_history_normalizes_roles() -> None:
    """system 消息转为带 [SYSTEM NOTE] 前缀的 assistant 消息。"""
    history = to_model_history(
        [
            {"role": "user", "content": "hi"},
            {"role": "system", "content": "vpn restarted"},
            {"role": "assistant", "content": "hello"},
        ]
    )
    assert history == [
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="assistant", content="[SYSTEM NOTE]\nvpn restarted"),
        ChatMessage(role="assistant", content="hello"),
    ]


def test_system_prompt_embeds_catalog_and_rules() -> None:
    engine = DecisionEngine(client=_ChatStub("{}"), skill_registry=SkillRegistry())
    prompt = engine.build_system_prompt()
    assert "- health-check: System Health Check" in prompt
    assert "use service-restart." in prompt
    assert '{"action":"respond","text":"..."}' in prompt
    assert prompt.rstrip().endswith("- Otherwise respond.")


def test_decide_passes_model_options_and_timeout() -> None:
    stub = _ChatStub('{"action":"run_skill","skillId":"health-check"}')
    engine = DecisionEngine(client=stub, skill_registry=SkillRegistry(), timeout_seconds=7)
    history = [ChatMessage(role="user", content="how is the server?")]

    decision = asyncio.run(engine.decide(history, model="llama3", options={"temperature": 0}))

    assert isinstance(decision, RunSkillDecision)
    assert decision.skill_id == "health-check"
    call = stub.calls[0]
    assert call["model"] == "llama3"
    assert call["options"] == {"temperature": 0}
    assert call["timeout_seconds"] == 7
    assert call["history"] == history


def test_decide_uses_default_options() -> None:
    stub = _ChatStub('{"action":"respond","text":"hey"}')
    engine = DecisionEngine(client=stub, skill_registry=SkillRegistry(), default_options={"temperature": 0.5})
    asyncio.run(engine.decide([]))
    assert stub.calls[0]["options"] == {"temperature": 0.5}


def test_decide_degrades_when_model_unavailable() -> None:
    """模型后端故障时返回降级回复而不是抛错。"""
    engine = DecisionEngine(client=_ChatStub(error=ModelBackendError("connection refused")), skill_registry=SkillRegistry())
    decision = asyncio.run(engine.decide([ChatMessage(role="user", content="hi")]))
    assert isinstance(decision, RespondDecision)
    assert decision.degraded is True
    assert "connection refused" in decision.text
