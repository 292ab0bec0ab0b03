"""API 请求与响应数据模型定义，对外统一使用 camelCase 字段名。"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """对外字段为 camelCase，内部仍可按 snake_case 构造。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class TargetOverrideBody(CamelModel):
    """执行目标覆盖项，仅在服务端开启覆盖开关后生效。"""
    host: str | None = None
    user: str | None = None
    password: str | None = None


class AgentRequestBody(TargetOverrideBody):
    """决策接口请求体。sessionId 缺失由服务层返回 400。"""
    session_id: str | None = None
    message: str | None = None
    model: str | None = None
    options: dict[str, Any] | None = None


class SkillRunRequestBody(TargetOverrideBody):
    """直接执行技能接口请求体。"""
    model: str | None = None


class ToolSchema(CamelModel):
    """技能执行摘要。"""
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


class AgentResponseSchema(CamelModel):
    """决策接口响应模型。"""
    action: str
    assistant: str
    skill_id: str | None = None
    title: str | None = None
    tool: ToolSchema | None = None
    raw: str | None = None
    warnings: list[str] = []


class SkillRunResponse(CamelModel):
    """直接执行技能接口响应模型。"""
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


class SkillDescriptor(CamelModel):
    id: str
    title: str


class SkillListResponse(CamelModel):
    skills: list[SkillDescriptor]


class BrainStatusResponse(CamelModel):
    """模型后端状态；models / error / status 三者按探测结果择一出现。"""
    ok: bool
    model_url: str
    model: str
    models: list[str] | None = None
    error: str | None = None
    status: int | None = None


class ConversationCreateBody(CamelModel):
    user_id: str | None = None
    title: str | None = None


class ConversationUpdateBody(CamelModel):
    title: str | None = None


class ConversationSchema(CamelModel):
    """会话响应模型。"""
    id: int
    user_id: str
    session_id: str
    title: str | None
    created_at: datetime
    updated_at: datetime


class MessageCreateBody(CamelModel):
    session_id: str | None = None
    role: str | None = None
    content: str | None = None
    metadata: dict[str, Any] | None = None


class MessageSchema(CamelModel):
    """消息响应模型。"""
    id: int
    conversation_id: int
    role: str
    content: str
    timestamp: datetime
    metadata: dict[str, Any] | None = None


class SearchResultSchema(MessageSchema):
    """检索结果：消息本体附带所属会话的 sessionId 与标题。"""
    session_id: str
    title: str | None = None
