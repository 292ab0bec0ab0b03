"""决策接口：接收对话请求，返回直接回复或技能执行结果；并提供模型后端状态查询。"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from governor.api.cancellation import cancel_on_disconnect
from governor.api.v1.schemas import AgentRequestBody, AgentResponseSchema, BrainStatusResponse, ToolSchema
from governor.application.container import get_orchestrator
from governor.application.orchestrator import AgentOrchestrator
from governor.domain.errors import DecisionRejectedError
from governor.domain.models import AgentRequest, AgentResponse, TargetOverrides

router = APIRouter()
logger = logging.getLogger(__name__)


def _service() -> AgentOrchestrator:
    return get_orchestrator()


def _overrides(body: AgentRequestBody) -> TargetOverrides | None:
    if not (body.host or body.user or body.password):
        return None
    return TargetOverrides(host=body.host, user=body.user, password=body.password)


def _to_schema(response: AgentResponse) -> AgentResponseSchema:
    tool = None
    if response.tool is not None:
        item = response.tool
        tool = ToolSchema(
            success=item.success,
            host=item.host,
            user=item.user,
            exit_code=item.exit_code,
            stdout=item.stdout,
            stderr=item.stderr,
            error=item.error,
            timed_out=item.timed_out,
            truncated=item.truncated,
            duration_ms=item.duration_ms,
            executed_at=item.executed_at,
        )
    return AgentResponseSchema(
        action=response.action,
        assistant=response.assistant,
        skill_id=response.skill_id,
        title=response.title,
        tool=tool,
        raw=response.raw,
        warnings=response.warnings,
    )


@router.post("/brain/agent", response_model=AgentResponseSchema)
async def brain_agent(
    body: AgentRequestBody,
    request: Request,
    orchestrator: AgentOrchestrator = Depends(_service),
) -> AgentResponseSchema:
    """让模型决定直接回复还是执行一个预置技能。"""
    agent_request = AgentRequest(
        session_id=body.session_id,
        message=body.message,
        model=body.model,
        options=body.options,
        overrides=_overrides(body),
    )
    try:
        response = await cancel_on_disconnect(request, orchestrator.decide_and_respond(agent_request))
    except HTTPException:
        raise
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from exc
    except DecisionRejectedError as exc:
        # 决策被拒绝时把模型原文一并返回，便于定位提示词问题。
        raise HTTPException(status_code=400, detail={"error": str(exc), "raw": exc.raw}) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(
            "agent request failed",
            extra={"event": "brain.agent.failed", "error_type": type(exc).__name__, "error": str(exc)},
        )
        raise HTTPException(status_code=500, detail=f"Failed to process agent request: {exc}") from exc
    return _to_schema(response)


@router.get("/brain/status", response_model=BrainStatusResponse, response_model_exclude_none=True)
async def brain_status(orchestrator: AgentOrchestrator = Depends(_service)) -> BrainStatusResponse:
    """探测模型后端，返回可用模型列表或失败原因。"""
    return BrainStatusResponse(**await orchestrator.brain_status())
