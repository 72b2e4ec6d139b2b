"""
Self-service user endpoints.

    POST /users/profile    create the profile on first sign-in (idempotent)
    POST /users/username   one-time username claim
    PUT  /settings         allowed preference fields only
"""

from typing import Any

from fastapi import APIRouter, Depends

from chatguard.auth.verify import AuthenticatedCaller, optional_caller
from chatguard.models.api.write_request import SaveSettingsRequest, SetUsernameRequest
from chatguard.services.orchestrator import MessageOrchestrator, get_orchestrator
from chatguard.services.user_service import UserService, get_user_service
from chatguard.utils.audit_helpers import RequestMeta, request_meta
from chatguard.utils.request_body import body_fields, json_body

router = APIRouter(tags=["users"])


@router.post("/users/profile")
async def ensure_profile(
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    users: UserService = Depends(get_user_service),
):
    return await users.ensure_profile(caller)


@router.post("/users/username")
async def set_username(
    body: Any = Depends(json_body),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    users: UserService = Depends(get_user_service),
):
    body = body_fields(body, SetUsernameRequest)
    return await users.set_username(caller, body.username)


@router.put("/settings")
async def save_settings(
    body: Any = Depends(json_body),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    meta: RequestMeta = Depends(request_meta),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator),
):
    if body is None:
        data = {}
    elif isinstance(body, dict):
        data = SaveSettingsRequest.model_validate(body).model_dump(exclude_unset=True)
    else:
        # Rejected as a non-object at the validation stage
        data = body
    return await orchestrator.save_settings(caller, data, meta)
