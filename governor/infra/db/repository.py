"""仓储实现：封装会话与消息的持久化读写。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from governor.domain.enums import MessageRole
from governor.infra.db.models import ConversationORM, MessageORM

_VALID_ROLES = {role.value for role in MessageRole}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationRepository:
    """会话仓储实现，作为编排器的持久化契约。"""
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create_conversation(self, user_id: str, session_id: str, title: str | None = None) -> ConversationORM:
        """创建会话。"""
        with self._session_factory.begin() as db:
            conversation = ConversationORM(user_id=user_id, session_id=session_id, title=title)
            db.add(conversation)
            db.flush()
            db.refresh(conversation)
            return conversation

    def get_conversation(self, session_id: str) -> ConversationORM | None:
        """按对外 session_id 查询会话。"""
        with self._session_factory() as db:
            stmt = select(ConversationORM).where(ConversationORM.session_id == session_id)
            return db.execute(stmt).scalars().first()

    def list_user_conversations(self, user_id: str, limit: int = 50) -> list[ConversationORM]:
        """按最近更新时间倒序列出用户会话。"""
        with self._session_factory() as db:
            stmt = (
                select(ConversationORM)
                .where(ConversationORM.user_id == user_id)
                .order_by(ConversationORM.updated_at.desc(), ConversationORM.id.desc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars().all())

    def update_conversation_title(self, session_id: str, title: str | None) -> ConversationORM | None:
        """更新会话标题，会话不存在时返回 None。"""
        with self._session_factory.begin() as db:
            stmt = select(ConversationORM).where(ConversationORM.session_id == session_id)
            conversation = db.execute(stmt).scalars().first()
            if conversation is None:
                return None
            conversation.title = title
            conversation.updated_at = utcnow()
            db.add(conversation)
            db.flush()
            return conversation

    def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> MessageORM:
        """写入一条消息，并同步刷新会话 updated_at。"""
        if role not in _VALID_ROLES:
            raise ValueError(f"invalid role: {role}")
        with self._session_factory.begin() as db:
            conversation = db.get(ConversationORM, conversation_id)
            if conversation is None:
                raise KeyError(f"Conversation not found: {conversation_id}")
            message = MessageORM(
                conversation_id=conversation_id,
                role=role,
                content=content,
                metadata_json=metadata or {},
            )
            db.add(message)
            conversation.updated_at = utcnow()
            db.add(conversation)
            db.flush()
            db.refresh(message)
            return message

    def list_messages(self, conversation_id: int, limit: int = 100, *, newest: bool = False) -> list[MessageORM]:
        """按时间正序返回消息；newest=True 时取最近的 limit 条。"""
        with self._session_factory() as db:
            stmt = select(MessageORM).where(MessageORM.conversation_id == conversation_id)
            if newest:
                stmt = stmt.order_by(MessageORM.timestamp.desc(), MessageORM.id.desc()).limit(limit)
                return list(reversed(db.execute(stmt).scalars().all()))
            stmt = stmt.order_by(MessageORM.timestamp.asc(), MessageORM.id.asc()).limit(limit)
            return list(db.execute(stmt).scalars().all())

    def search_messages(self, user_id: str, query: str, limit: int = 50) -> list[dict[str, Any]]:
        """在用户全部会话中做不区分大小写的内容检索。"""
        with self._session_factory() as db:
            stmt = (
                select(MessageORM, ConversationORM.session_id, ConversationORM.title)
                .join(ConversationORM, MessageORM.conversation_id == ConversationORM.id)
                .where(
                    ConversationORM.user_id == user_id,
                    func.lower(MessageORM.content).contains(query.lower(), autoescape=True),
                )
                .order_by(MessageORM.timestamp.desc(), MessageORM.id.desc())
                .limit(limit)
            )
            return [
                {"message": message, "session_id": session_id, "title": title}
                for message, session_id, title in db.execute(stmt).all()
            ]
