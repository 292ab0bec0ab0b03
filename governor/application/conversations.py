"""会话记忆服务：会话与消息的增查改、检索，校验入参后委托仓储。"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from governor.domain.enums import MessageRole
from governor.infra.db.models import ConversationORM, MessageORM
from governor.infra.db.repository import ConversationRepository

logger = logging.getLogger(__name__)

_VALID_ROLES = tuple(role.value for role in MessageRole)


class ConversationService:
    """会话记忆门面，供 REST 层直接调用（阻塞方法，由调用方放入线程）。"""
    def __init__(self, repository: ConversationRepository) -> None:
        self._repository = repository

    def create_conversation(self, user_id: str | None, title: str | None = None) -> ConversationORM:
        if not user_id:
            raise ValueError("userId is required")
        conversation = self._repository.create_conversation(user_id, str(uuid4()), title)
        logger.info(
            "conversation created",
            extra={"event": "conversation.created", "session_id": conversation.session_id},
        )
        return conversation

    def list_user_conversations(self, user_id: str, limit: int = 50) -> list[ConversationORM]:
        return self._repository.list_user_conversations(user_id, limit)

    def get_conversation(self, session_id: str) -> ConversationORM:
        conversation = self._repository.get_conversation(session_id)
        if conversation is None:
            raise KeyError(f"Conversation not found: {session_id}")
        return conversation

    def update_title(self, session_id: str, title: str | None) -> ConversationORM:
        conversation = self._repository.update_conversation_title(session_id, title)
        if conversation is None:
            raise KeyError(f"Conversation not found: {session_id}")
        return conversation

    def add_message(
        self,
        session_id: str | None,
        role: str | None,
        content: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> MessageORM:
        """按 session_id 追加消息。缺字段或角色非法抛 ValueError，会话不存在抛 KeyError。"""
        if not session_id or not role or not content:
            raise ValueError("sessionId, role, and content are required")
        if role not in _VALID_ROLES:
            raise ValueError(f"role must be one of: {', '.join(_VALID_ROLES)}")
        conversation = self.get_conversation(session_id)
        return self._repository.add_message(conversation.id, role, content, metadata)

    def list_messages(self, session_id: str, limit: int = 100) -> list[MessageORM]:
        conversation = self.get_conversation(session_id)
        return self._repository.list_messages(conversation.id, limit)

    def search(self, user_id: str | None, query: str | None, limit: int = 50) -> list[dict[str, Any]]:
        if not user_id or not query:
            raise ValueError("userId and query are required")
        return self._repository.search_messages(user_id, query, limit)
