"""
chat.py
-------
Chat write and read endpoints.

    POST /chats/{chat_id}/messages   send a message (full write pipeline)
    GET  /chats/{chat_id}/messages   list messages visible to the caller
    POST /chats/{chat_id}/reports    report a message

Missing credentials are passed through as `None`; the pipeline rejects them
as its first stage.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from chatguard.auth.verify import AuthenticatedCaller, optional_caller
from chatguard.models.api.write_request import ReportMessageRequest, SendMessageRequest
from chatguard.services.chat_service import ChatService, get_chat_service
from chatguard.services.orchestrator import MessageOrchestrator, get_orchestrator
from chatguard.utils.audit_helpers import RequestMeta, request_meta
from chatguard.utils.request_body import body_fields, json_body

router = APIRouter(prefix="/chats", tags=["chat"])


@router.post("/{chat_id}/messages")
async def send_message(
    chat_id: str,
    body: Any = Depends(json_body),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    meta: RequestMeta = Depends(request_meta),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator),
):
    body = body_fields(body, SendMessageRequest)
    return await orchestrator.send_message(caller, chat_id, body.message, meta)


@router.get("/{chat_id}/messages")
async def list_messages(
    chat_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    chats: ChatService = Depends(get_chat_service),
):
    return await chats.list_messages(caller, chat_id, limit=limit, cursor=cursor)


@router.post("/{chat_id}/reports")
async def report_message(
    chat_id: str,
    body: Any = Depends(json_body),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    meta: RequestMeta = Depends(request_meta),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator),
):
    body = body_fields(body, ReportMessageRequest)
    return await orchestrator.report_message(
        caller, chat_id, body.message_id, body.reason, meta
    )
