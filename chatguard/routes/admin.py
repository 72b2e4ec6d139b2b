"""
Privileged moderation endpoints. The only mutators of sanction state besides
the automatic mute. Roles are re-read from the store on every call.

    POST /admin/ban                          admin
    POST /admin/shadowban                    admin, mod
    POST /admin/role                         admin
    POST /admin/chats                        admin
    GET  /admin/users/{uid}/sanctions        admin, mod
"""

from fastapi import APIRouter, Depends, Query

from chatguard.auth.verify import AuthenticatedCaller, optional_caller
from chatguard.models.api.admin_request import (
    BanRequest,
    CreateChatRequest,
    SetRoleRequest,
    ShadowbanRequest,
)
from chatguard.services.chat_service import ChatService, get_chat_service
from chatguard.services.sanction_service import SanctionService, get_sanction_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/ban")
async def ban_user(
    body: BanRequest,
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    sanctions: SanctionService = Depends(get_sanction_service),
):
    return await sanctions.set_ban(caller, body.target_user_id, body.banned, body.reason)


@router.post("/shadowban")
async def shadowban_user(
    body: ShadowbanRequest,
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    sanctions: SanctionService = Depends(get_sanction_service),
):
    return await sanctions.set_shadowban(
        caller, body.target_user_id, body.shadowbanned, body.reason
    )


@router.post("/role")
async def set_role(
    body: SetRoleRequest,
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    sanctions: SanctionService = Depends(get_sanction_service),
):
    return await sanctions.set_role(caller, body.target_user_id, body.role)


@router.post("/chats")
async def create_chat(
    body: CreateChatRequest,
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    chats: ChatService = Depends(get_chat_service),
):
    return await chats.create_chat(caller, body.title)


@router.get("/users/{uid}/sanctions")
async def list_sanctions(
    uid: str,
    limit: int = Query(default=50, ge=1, le=200),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    sanctions: SanctionService = Depends(get_sanction_service),
):
    events = await sanctions.list_sanction_events(caller, uid, limit=limit)
    return {"success": True, "events": events}
