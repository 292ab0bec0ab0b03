"""领域枚举定义：统一执行模式、决策动作与消息角色取值。"""

from __future__ import annotations

from enum import Enum


class ExecutionMode(str, Enum):
    """命令执行位置模式。"""
    local = "local"
    remote = "remote"
    auto = "auto"


class DecisionAction(str, Enum):
    """模型决策动作枚举。"""
    respond = "respond"
    run_skill = "run_skill"


class MessageRole(str, Enum):
    """会话消息角色枚举。"""
    user = "user"
    assistant = "assistant"
    system = "system"
