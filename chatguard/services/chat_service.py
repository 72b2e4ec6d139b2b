# chatguard/services/chat_service.py
"""
Chat read path and chat creation.

Every query that returns messages to a reader goes through
`is_visible_to`, which hides shadowbanned messages from everyone except
their sender.
"""

import time
from collections.abc import Callable
from typing import Any

from chatguard.auth.verify import AuthenticatedCaller
from chatguard.db import paths
from chatguard.db.document_store import (
    DocumentStore,
    Transaction,
    TransientStoreError,
    document_store,
)
from chatguard.infrastructure.observability.logging import get_logger
from chatguard.models.domain.chat_domain import ChatMessage, is_visible_to
from chatguard.models.domain.user_domain import Role
from chatguard.security.sanitizer import sanitize_string, validate_identifier
from chatguard.services.errors import NotFound, TransientStoreFailure, ValidationFailed
from chatguard.services.sanction_service import SanctionService, sanction_service

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
MAX_CHAT_TITLE_LENGTH = 100


class ChatService:
    def __init__(
        self,
        store: DocumentStore,
        sanctions: SanctionService,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.sanctions = sanctions
        self.clock = clock

    async def list_messages(
        self,
        caller: AuthenticatedCaller | None,
        chat_id: Any,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> dict:
        """
        Newest-first page of messages visible to the caller.

        `next_cursor` is the last message id of the underlying page, so a
        page may hold fewer visible messages than `limit`.
        """
        viewer = await self.sanctions.get_verified_user(caller)
        chat_id = validate_identifier(chat_id, "Chat ID")
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        try:
            if await self.store.get(paths.chat(chat_id)) is None:
                raise NotFound("Chat not found")
            ids = await self.store.list_index(
                paths.chat_messages_index(chat_id), limit=limit, after=cursor
            )
            docs = await self.store.get_many([paths.message(chat_id, mid) for mid in ids])
        except TransientStoreError as e:
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e

        messages = [
            ChatMessage.from_document(mid, {"chat_id": chat_id, **doc})
            for mid, doc in zip(ids, docs)
            if doc is not None
        ]
        visible = [m for m in messages if is_visible_to(m, viewer.id)]

        return {
            "success": True,
            "messages": [
                m.model_dump(exclude={"shadowbanned", "toxicity_score", "flags"}) for m in visible
            ],
            "next_cursor": ids[-1] if len(ids) == limit else None,
        }

    async def create_chat(self, caller: AuthenticatedCaller | None, title: Any) -> dict:
        admin = await self.sanctions.require_role(caller, (Role.ADMIN,))
        clean_title = sanitize_string(title, MAX_CHAT_TITLE_LENGTH)
        if not clean_title:
            raise ValidationFailed("Chat title is required")

        chat_id = paths.new_id()

        async def _create(txn: Transaction) -> None:
            txn.set(
                paths.chat(chat_id),
                {"title": clean_title, "created_by": admin.id, "created_at": self.clock()},
            )

        try:
            await self.store.run_transaction(_create)
        except TransientStoreError as e:
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e

        logger.info("Chat created", chat_id=chat_id, actor_id=admin.id)
        return {"success": True, "chat_id": chat_id}


chat_service = ChatService(store=document_store, sanctions=sanction_service)


def get_chat_service() -> ChatService:
    return chat_service
