from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class ReportStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    DISMISSED = "dismissed"
    ACTIONED = "actioned"


class ChatMessage(BaseModel):
    """
    Persisted chat message (chats/{chat_id}/messages/{id}).

    `shadowbanned` and `sender_tier` are snapshots of the sender at write
    time. They are never recomputed on read.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    chat_id: str
    sender_id: str
    sender_display_name: str | None = None
    message: str
    toxicity_score: float = 0.0
    flags: list[str] = []
    shadowbanned: bool = False
    sender_tier: str = "free"
    created_at: float

    @classmethod
    def from_document(cls, message_id: str, doc: dict[str, Any]) -> "ChatMessage":
        return cls.model_validate({**doc, "id": message_id})


def is_visible_to(message: ChatMessage, viewer_id: str | None) -> bool:
    """
    Read-path visibility predicate.

    Every query that returns messages to someone other than their sender
    must apply this: shadowbanned messages are only visible to their sender.
    """
    if not message.shadowbanned:
        return True
    return viewer_id is not None and message.sender_id == viewer_id


class Report(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    reporter_id: str
    reported_user_id: str
    chat_id: str
    message_id: str
    message_content: str
    reason: str
    status: ReportStatus = ReportStatus.PENDING
    created_at: float

