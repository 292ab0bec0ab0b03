"""会话记忆接口：会话创建、列表、标题修改，消息追加、查询与全文检索。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from governor.api.v1.schemas import (
    ConversationCreateBody,
    ConversationSchema,
    ConversationUpdateBody,
    MessageCreateBody,
    MessageSchema,
    SearchResultSchema,
)
from governor.application.container import get_conversation_service
from governor.application.conversations import ConversationService
from governor.infra.db.models import ConversationORM, MessageORM

router = APIRouter()


def _service() -> ConversationService:
    return get_conversation_service()


def _conversation(item: ConversationORM) -> ConversationSchema:
    return ConversationSchema(
        id=item.id,
        user_id=item.user_id,
        session_id=item.session_id,
        title=item.title,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _message(item: MessageORM) -> MessageSchema:
    return MessageSchema(
        id=item.id,
        conversation_id=item.conversation_id,
        role=item.role,
        content=item.content,
        timestamp=item.timestamp,
        metadata=item.metadata_json,
    )


@router.post("/conversations", response_model=ConversationSchema, status_code=status.HTTP_201_CREATED)
def create_conversation(
    body: ConversationCreateBody,
    service: ConversationService = Depends(_service),
) -> ConversationSchema:
    """创建会话，sessionId 由服务端生成。"""
    try:
        return _conversation(service.create_conversation(body.user_id, body.title))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/conversations/{user_id}", response_model=list[ConversationSchema])
def list_conversations(
    user_id: str,
    limit: int = 50,
    service: ConversationService = Depends(_service),
) -> list[ConversationSchema]:
    return [_conversation(item) for item in service.list_user_conversations(user_id, limit)]


@router.get("/conversation/{session_id}", response_model=ConversationSchema)
def get_conversation(
    session_id: str,
    service: ConversationService = Depends(_service),
) -> ConversationSchema:
    try:
        return _conversation(service.get_conversation(session_id))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from exc


@router.patch("/conversation/{session_id}", response_model=ConversationSchema)
def update_conversation(
    session_id: str,
    body: ConversationUpdateBody,
    service: ConversationService = Depends(_service),
) -> ConversationSchema:
    try:
        return _conversation(service.update_title(session_id, body.title))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from exc


@router.post("/messages", response_model=MessageSchema, status_code=status.HTTP_201_CREATED)
def add_message(
    body: MessageCreateBody,
    service: ConversationService = Depends(_service),
) -> MessageSchema:
    """向会话追加消息；角色仅允许 user/assistant/system。"""
    try:
        return _message(service.add_message(body.session_id, body.role, body.content, body.metadata))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/messages/{session_id}", response_model=list[MessageSchema])
def list_messages(
    session_id: str,
    limit: int = 100,
    service: ConversationService = Depends(_service),
) -> list[MessageSchema]:
    try:
        return [_message(item) for item in service.list_messages(session_id, limit)]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=exc.args[0]) from exc


@router.get("/search", response_model=list[SearchResultSchema])
def search_messages(
    user_id: str | None = Query(default=None, alias="userId"),
    query: str | None = None,
    limit: int = 50,
    service: ConversationService = Depends(_service),
) -> list[SearchResultSchema]:
    """在用户的全部会话中检索消息内容，按时间倒序。"""
    try:
        rows = service.search(user_id, query, limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        SearchResultSchema(
            **_message(row["message"]).model_dump(),
            session_id=row["session_id"],
            title=row["title"],
        )
        for row in rows
    ]
