"""领域异常定义：模型决策被拒绝时的客户端错误。"""

from __future__ import annotations


class DecisionRejectedError(ValueError):
    """模型给出的决策无法执行，属于客户端可见错误。"""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class UnsupportedActionError(DecisionRejectedError):
    """模型返回了未知 action。"""


class UnknownSkillError(DecisionRejectedError):
    """模型选择的 skillId 不在注册中心内。"""
