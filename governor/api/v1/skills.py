"""技能目录接口：列出可用技能，并直接执行指定技能。"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from governor.api.cancellation import cancel_on_disconnect
from governor.api.v1.schemas import SkillDescriptor, SkillListResponse, SkillRunRequestBody, SkillRunResponse
from governor.application.container import get_orchestrator
from governor.application.orchestrator import AgentOrchestrator
from governor.domain.models import TargetOverrides

router = APIRouter()
logger = logging.getLogger(__name__)


def _service() -> AgentOrchestrator:
    return get_orchestrator()


@router.get("/openclaw/skills", response_model=SkillListResponse)
def list_skills(orchestrator: AgentOrchestrator = Depends(_service)) -> SkillListResponse:
    """按注册顺序返回技能 id 与标题。"""
    return SkillListResponse(skills=[SkillDescriptor(**item) for item in orchestrator.list_skills()])


@router.post("/openclaw/skills/{skill_id}", response_model=SkillRunResponse)
async def run_skill(
    skill_id: str,
    request: Request,
    body: SkillRunRequestBody | None = None,
    orchestrator: AgentOrchestrator = Depends(_service),
) -> SkillRunResponse:
    """执行预置技能并摘要输出；未知技能直接 404，不触发任何执行。"""
    body = body or SkillRunRequestBody()
    overrides = None
    if body.host or body.user or body.password:
        overrides = TargetOverrides(host=body.host, user=body.user, password=body.password)
    try:
        report = await cancel_on_disconnect(
            request,
            orchestrator.run_skill(skill_id, overrides=overrides, model=body.model),
        )
    except HTTPException:
        raise
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown skill: {skill_id}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(
            "skill run failed",
            extra={"event": "skill.run.failed", "error_type": type(exc).__name__, "error": str(exc)},
        )
        raise HTTPException(status_code=500, detail=f"Failed to execute skill: {exc}") from exc
    return SkillRunResponse(
        success=report.success,
        skill_id=report.skill_id,
        title=report.title,
        host=report.host,
        user=report.user,
        exit_code=report.exit_code,
        stdout=report.stdout,
        stderr=report.stderr,
        summary=report.summary,
        error=report.error,
        timed_out=report.timed_out,
        truncated=report.truncated,
        duration_ms=report.duration_ms,
        executed_at=report.executed_at,
    )
