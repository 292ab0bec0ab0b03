"""编排服务测试：决策 -> 执行 -> 摘要主流程、校验错误与持久化软失败。"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from governor.application.decision import DecisionEngine
from governor.application.orchestrator import AgentOrchestrator
from governor.application.summarizer import Summarizer
from governor.config import Settings
from governor.domain.enums import ExecutionMode
from governor.domain.errors import UnknownSkillError, UnsupportedActionError
from governor.domain.models import AgentRequest, ExecutionResult, ExecutionTarget, TargetOverrides
from governor.domain.skills.catalog import HEALTH_CHECK
from governor.domain.skills.registry import SkillRegistry
from governor.infra.db.models import Base
from governor.infra.db.repository import ConversationRepository
from governor.infra.execution.router import ExecutionRouter
from governor.infra.llm.client import ModelBackendError


class _ModelStub:
    """按顺序返回预设回复的模型桩；回复为异常时直接抛出。"""
    base_url = "http://model.test"
    model = "gemma3:4b"

    def __init__(self, replies=(), models=None, status_error: Exception | None = None) -> None:
        self._replies = list(replies)
        self._models = models or []
        self._status_error = status_error
        self.calls: list[dict] = []

    async def chat(self, system_prompt, history, *, model=None, options=None, timeout_seconds=None) -> str:
        self.calls.append({"system_prompt": system_prompt, "history": list(history), "model": model})
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def list_models(self, *, timeout_seconds=None) -> list[str]:
        if self._status_error is not None:
            raise self._status_error
        return self._models


class _RunnerStub:
    def __init__(self, result: ExecutionResult | None = None) -> None:
        self._result = result or ExecutionResult(success=True, stdout="up 3 days", stderr="", exit_code=0, duration_ms=12.5)
        self.calls: list[tuple] = []

    async def run(self, command, target, **kwargs) -> ExecutionResult:
        self.calls.append((command, target))
        return self._result


class _FailingWriteRepository(ConversationRepository):
    def add_message(self, conversation_id, role, content, metadata=None):
        raise RuntimeError("database is locked")


def _repo(tmp_path: Path, cls=ConversationRepository) -> ConversationRepository:
    engine = create_engine(f"sqlite:///{tmp_path / 'repo.db'}", connect_args={"check_same_thread": False})
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)
    Base.metadata.create_all(bind=engine)
    return cls(session_factory)


def _build(
    repository: ConversationRepository,
    model: _ModelStub,
    runner: _RunnerStub,
    *,
    mode: ExecutionMode = ExecutionMode.local,
    host: str = "127.0.0.1",
    password: str | None = None,
    history_limit: int = 30,
) -> AgentOrchestrator:
    registry = SkillRegistry()
    return AgentOrchestrator(
        settings=Settings(history_limit=history_limit),
        repository=repository,
        skill_registry=registry,
        router=ExecutionRouter(mode=mode, default_target=ExecutionTarget(host=host, user="root", password=password)),
        runner=runner,  # type: ignore[arg-type]
        decision_engine=DecisionEngine(client=model, skill_registry=registry),
        summarizer=Summarizer(client=model),
        model_client=model,  # type: ignore[arg-type]
    )


def test_missing_session_id_is_rejected(tmp_path: Path) -> None:
    orchestrator = _build(_repo(tmp_path), _ModelStub(), _RunnerStub())
    with pytest.raises(ValueError, match="sessionId is required"):
        asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id=None, message="hi")))


def test_unknown_session_is_not_found(tmp_path: Path) -> None:
    model = _ModelStub()
    orchestrator = _build(_repo(tmp_path), model, _RunnerStub())
    with pytest.raises(KeyError):
        asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="missing", message="hi")))
    assert model.calls == []


def test_respond_persists_both_turns(tmp_path: Path) -> None:
    """直接回复时写入用户轮次与助手轮次。"""
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    model = _ModelStub(['Sure.\n{"action":"respond","text":"Hi there"}'])
    runner = _RunnerStub()
    orchestrator = _build(repo, model, runner)

    response = asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="hello")))

    assert response.action == "respond"
    assert response.assistant == "Hi there"
    assert response.tool is None
    assert response.warnings == []
    assert runner.calls == []
    assert [item.content for item in model.calls[0]["history"]] == ["hello"]

    messages = repo.list_messages(conversation.id)
    assert [(item.role, item.content) for item in messages] == [("user", "hello"), ("assistant", "Hi there")]
    assert messages[1].metadata_json == {"action": "respond", "degraded": False}


def test_run_skill_health_check_locally(tmp_path: Path) -> None:
    """local 模式下执行注册表模板，不携带执行目标，并写入执行元数据。"""
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    model = _ModelStub(['{"action":"run_skill","skillId":"health-check","reason":"status"}', "Server is healthy."])
    runner = _RunnerStub()
    orchestrator = _build(repo, model, runner, mode=ExecutionMode.local, host="203.0.113.9")
    started = datetime.now(timezone.utc)

    response = asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="how is the box?")))

    assert runner.calls == [(HEALTH_CHECK.command, None)]
    assert response.action == "run_skill"
    assert response.skill_id == "health-check"
    assert response.title == HEALTH_CHECK.title
    assert response.assistant == "Server is healthy."
    assert response.tool is not None
    assert response.tool.exit_code == 0
    assert response.tool.stdout == "up 3 days"
    assert response.tool.host == "203.0.113.9"
    assert response.tool.executed_at >= started
    assert "User request:\nhow is the box?" in model.calls[1]["history"][0].content

    assistant_turn = repo.list_messages(conversation.id)[-1]
    assert assistant_turn.metadata_json == {
        "action": "run_skill",
        "skillId": "health-check",
        "exitCode": 0,
        "success": True,
    }


def test_unknown_model_skill_never_executes(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    runner = _RunnerStub()
    orchestrator = _build(repo, _ModelStub(['{"action":"run_skill","skillId":"rm-rf-root"}']), runner)

    with pytest.raises(UnknownSkillError) as exc_info:
        asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="wipe it")))
    assert exc_info.value.raw == '{"action":"run_skill","skillId":"rm-rf-root"}'
    assert runner.calls == []

    user_turn, note = repo.list_messages(conversation.id)
    assert (user_turn.role, user_turn.content) == ("user", "wipe it")
    assert note.role == "assistant"
    assert note.content == "Request rejected: Unknown skillId: rm-rf-root"
    assert note.metadata_json == {"action": "error", "error": "Unknown skillId: rm-rf-root"}


def test_unsupported_action_is_rejected(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    repo.create_conversation("u1", "s1")
    orchestrator = _build(repo, _ModelStub(['{"action":"format_disk"}']), _RunnerStub())
    with pytest.raises(UnsupportedActionError):
        asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="?")))


def test_remote_without_credentials_is_rejected(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    runner = _RunnerStub()
    orchestrator = _build(
        repo,
        _ModelStub(['{"action":"run_skill","skillId":"vpn-status"}']),
        runner,
        mode=ExecutionMode.remote,
        host="203.0.113.9",
    )
    with pytest.raises(ValueError, match="Missing target password"):
        asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="vpn?")))
    assert runner.calls == []
    assert repo.list_messages(conversation.id)[-1].metadata_json["action"] == "error"


def test_history_uses_most_recent_turns(tmp_path: Path) -> None:
    """历史窗口取最近的 N 条消息，而不是最早的 N 条。"""
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    for index in range(5):
        repo.add_message(conversation.id, "user", f"old-{index}")
    model = _ModelStub(['{"action":"respond","text":"ok"}'])
    orchestrator = _build(repo, model, _RunnerStub(), history_limit=2)

    asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="latest")))

    assert [item.content for item in model.calls[0]["history"]] == ["old-4", "latest"]


def test_request_without_message_still_decides(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    repo.add_message(conversation.id, "system", "vpn restarted")
    model = _ModelStub(['{"action":"respond","text":"noted"}'])
    orchestrator = _build(repo, model, _RunnerStub())

    response = asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1")))

    assert response.assistant == "noted"
    assert model.calls[0]["history"][0].content == "[SYSTEM NOTE]\nvpn restarted"
    assert [item.role for item in repo.list_messages(conversation.id)] == ["system", "assistant"]


def test_persistence_failures_become_warnings(tmp_path: Path) -> None:
    """写入失败只产生 warnings；未落库的用户消息仍会交给模型决策。"""
    repo = _repo(tmp_path, cls=_FailingWriteRepository)
    repo.create_conversation("u1", "s1")
    model = _ModelStub(['{"action":"respond","text":"hi"}'])
    orchestrator = _build(repo, model, _RunnerStub())

    response = asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="hello")))

    assert response.assistant == "hi"
    assert len(response.warnings) == 2
    assert all("database is locked" in item for item in response.warnings)
    assert [(item.role, item.content) for item in model.calls[0]["history"]] == [("user", "hello")]


def test_unsaved_user_turn_follows_loaded_history(tmp_path: Path) -> None:
    repo = _repo(tmp_path, cls=_FailingWriteRepository)
    conversation = repo.create_conversation("u1", "s1")
    ConversationRepository.add_message(repo, conversation.id, "user", "is the vpn up?")
    ConversationRepository.add_message(repo, conversation.id, "assistant", "yes")
    model = _ModelStub(['{"action":"respond","text":"ok"}'])
    orchestrator = _build(repo, model, _RunnerStub())

    asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="check the vpn please")))

    assert [item.content for item in model.calls[0]["history"]] == ["is the vpn up?", "yes", "check the vpn please"]
    assert model.calls[0]["history"][-1].role == "user"


def test_degraded_decision_when_model_down(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    conversation = repo.create_conversation("u1", "s1")
    orchestrator = _build(repo, _ModelStub([ModelBackendError("connection refused")]), _RunnerStub())

    response = asyncio.run(orchestrator.decide_and_respond(AgentRequest(session_id="s1", message="hi")))

    assert response.action == "respond"
    assert "connection refused" in response.assistant
    assert repo.list_messages(conversation.id)[-1].metadata_json == {"action": "respond", "degraded": True}


def test_run_skill_directly(tmp_path: Path) -> None:
    runner = _RunnerStub(ExecutionResult(success=False, stdout="", stderr="vpn down", exit_code=3, error="command exited with code 3"))
    model = _ModelStub([ModelBackendError("offline")])
    orchestrator = _build(_repo(tmp_path), model, runner)
    started = datetime.now(timezone.utc)

    report = asyncio.run(orchestrator.run_skill("vpn-status", model="llama3"))

    assert report.skill_id == "vpn-status"
    assert report.success is False
    assert report.exit_code == 3
    assert report.error == "command exited with code 3"
    assert report.summary == "Executed VPN Status on 127.0.0.1 (failed, exit code 3). Summary unavailable: offline"
    assert report.executed_at >= started
    assert model.calls[0]["model"] == "llama3"


def test_run_unknown_skill_directly_fails_before_execution(tmp_path: Path) -> None:
    runner = _RunnerStub()
    orchestrator = _build(_repo(tmp_path), _ModelStub(), runner)
    with pytest.raises(KeyError):
        asyncio.run(orchestrator.run_skill("nope"))
    assert runner.calls == []


def test_run_skill_ignores_overrides_without_opt_in(tmp_path: Path) -> None:
    runner = _RunnerStub()
    orchestrator = _build(_repo(tmp_path), _ModelStub(["done"]), runner, mode=ExecutionMode.auto)
    report = asyncio.run(orchestrator.run_skill("health-check", TargetOverrides(host="198.51.100.1", user="x")))
    assert report.host == "127.0.0.1"
    assert runner.calls == [(HEALTH_CHECK.command, None)]


def test_brain_status(tmp_path: Path) -> None:
    ok = _build(_repo(tmp_path), _ModelStub(models=["gemma3:4b", "llama3"]), _RunnerStub())
    assert asyncio.run(ok.brain_status()) == {
        "ok": True,
        "model_url": "http://model.test",
        "model": "gemma3:4b",
        "models": ["gemma3:4b", "llama3"],
    }

    down = _build(_repo(tmp_path), _ModelStub(status_error=ModelBackendError("connect failed")), _RunnerStub())
    assert asyncio.run(down.brain_status())["error"] == "connect failed"

    http_error = _build(
        _repo(tmp_path),
        _ModelStub(status_error=ModelBackendError("model backend error (503): busy", status_code=503)),
        _RunnerStub(),
    )
    status = asyncio.run(http_error.brain_status())
    assert status["ok"] is False
    assert status["status"] == 503
