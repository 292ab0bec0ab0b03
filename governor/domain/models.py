"""领域数据结构定义：技能、执行目标、执行结果与决策等核心值对象。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class Skill:
    """预置技能：命令体在配置期固定，绝不由运行时输入拼接。"""
    id: str
    title: str
    command: str
    when: str = ""


@dataclass(frozen=True, slots=True)
class ExecutionTarget:
    """单次请求的执行目标。"""
    host: str
    user: str
    password: str | None = None
    port: int = 22

    def __repr__(self) -> str:
        # 避免密码出现在日志与异常文本中。
        masked = "***" if self.password else None
        return f"ExecutionTarget(host={self.host!r}, user={self.user!r}, password={masked!r}, port={self.port})"


@dataclass(frozen=True, slots=True)
class TargetOverrides:
    """调用方提交的执行目标覆盖项，仅在显式开启时生效。"""
    host: str | None = None
    user: str | None = None
    password: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """命令执行的归一化结果，每次调用只产生一次。"""
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    error: str | None = None
    timed_out: bool = False
    truncated: bool = False
    duration_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """发送给模型的一条对话消息。"""
    role: str
    content: str


@dataclass(frozen=True, slots=True)
class RespondDecision:
    """模型选择直接回复。degraded 表示模型不可用时的降级回复。"""
    text: str
    raw: str | None = None
    degraded: bool = False


@dataclass(frozen=True, slots=True)
class RunSkillDecision:
    """模型选择执行技能；skill_id 属于不可信输入，必须经注册中心校验。"""
    skill_id: str
    reason: str | None = None
    raw: str | None = None


Decision = Union[RespondDecision, RunSkillDecision]


@dataclass(slots=True)
class ToolReport:
    """编排结果中的执行摘要。"""
    success: bool
    host: str
    user: str
    exit_code: int
    stdout: str
    stderr: str
    error: str | None
    timed_out: bool
    truncated: bool
    duration_ms: float
    executed_at: datetime


@dataclass(slots=True)
class AgentResponse:
    """编排器对外的唯一响应结构。"""
    action: str
    assistant: str
    skill_id: str | None = None
    title: str | None = None
    tool: ToolReport | None = None
    raw: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SkillRunReport:
    """直接执行技能接口的扁平结果。"""
    success: bool
    skill_id: str
    title: str
    host: str
    user: str
    exit_code: int
    stdout: str
    stderr: str
    summary: str | None
    error: str | None
    timed_out: bool
    truncated: bool
    duration_ms: float
    executed_at: datetime


@dataclass(slots=True)
class AgentRequest:
    """决策接口入参。"""
    session_id: str | None
    message: str | None = None
    model: str | None = None
    options: dict[str, Any] | None = None
    overrides: TargetOverrides | None = None
