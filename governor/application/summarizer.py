"""执行结果摘要：二次调用模型把命令输出转述给非技术用户，失败时给出模板兜底。"""

from __future__ import annotations

import logging

from governor.application.decision import ChatBackend
from governor.domain.models import ChatMessage, ExecutionResult, ExecutionTarget

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """You are OpenMax. Summarize the following tool output for a non-developer.

Rules:
- Do not invent.
- Keep it short.
- Mention any problems.
- Give next steps.
"""


def fallback_summary(skill_title: str, host: str, result: ExecutionResult, reason: str) -> str:
    """模型不可用时的确定性摘要，保证调用方总能拿到完成信号。"""
    outcome = "succeeded" if result.success else "failed"
    return (
        f"Executed {skill_title} on {host} ({outcome}, exit code {result.exit_code}). "
        f"Summary unavailable: {reason}"
    )


def _tail(text: str, limit: int) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return f"...(earlier output trimmed)\n{text[-limit:]}"


class Summarizer:
    """执行结果摘要器。"""
    def __init__(
        self,
        *,
        client: ChatBackend,
        timeout_seconds: float = 60.0,
        max_transcript_chars: int = 12_000,
        temperature: float = 0.2,
    ) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._max_transcript_chars = max_transcript_chars
        self._temperature = temperature

    def build_transcript(
        self,
        skill_title: str,
        target: ExecutionTarget,
        result: ExecutionResult,
        user_request: str | None = None,
    ) -> str:
        # stdout 与 stderr 平分字符预算，保留尾部（错误通常在末尾）。
        budget = self._max_transcript_chars // 2
        parts: list[str] = []
        if user_request is not None:
            parts.append(f"User request:\n{user_request}\n")
        parts.append(f"Tool: {skill_title}")
        parts.append(f"Host: {target.host}")
        parts.append(f"Exit code: {result.exit_code}")
        if result.timed_out:
            parts.append("Note: the command timed out and was stopped.")
        if result.truncated:
            parts.append("Note: the output was truncated.")
        parts.append(f"\nSTDOUT:\n{_tail(result.stdout or '', budget)}")
        parts.append(f"\nSTDERR:\n{_tail(result.stderr or '', budget)}")
        return "\n".join(parts)

    async def summarize(
        self,
        skill_title: str,
        target: ExecutionTarget,
        result: ExecutionResult,
        *,
        user_request: str | None = None,
        model: str | None = None,
    ) -> str:
        """返回非空摘要；任何失败都回退到模板文本。"""
        transcript = self.build_transcript(skill_title, target, result, user_request)
        try:
            summary = await self._client.chat(
                SUMMARY_SYSTEM_PROMPT,
                [ChatMessage(role="user", content=transcript)],
                model=model,
                options={"temperature": self._temperature},
                timeout_seconds=self._timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "summary degraded: model unavailable",
                extra={
                    "event": "summary.degraded",
                    "external_service": "model",
                    "op": "summarize",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return fallback_summary(skill_title, target.host, result, str(exc) or type(exc).__name__)
        if not summary or not summary.strip():
            return fallback_summary(skill_title, target.host, result, "empty model reply")
        return summary.strip()
