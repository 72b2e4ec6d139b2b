"""
Saved dashboard configs.

    POST   /configs         create or update (rate limit + tier quota)
    GET    /configs         own configs, or public ones with ?public=true
    DELETE /configs/{id}    owner or staff
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from chatguard.auth.verify import AuthenticatedCaller, optional_caller
from chatguard.models.api.write_request import SaveConfigRequest
from chatguard.services.config_service import ConfigService, get_config_service
from chatguard.services.orchestrator import MessageOrchestrator, get_orchestrator
from chatguard.utils.audit_helpers import RequestMeta, request_meta
from chatguard.utils.request_body import body_fields, json_body

router = APIRouter(prefix="/configs", tags=["configs"])


@router.post("")
async def save_config(
    body: Any = Depends(json_body),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    meta: RequestMeta = Depends(request_meta),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator),
):
    body = body_fields(body, SaveConfigRequest)
    return await orchestrator.save_config(
        caller, body.config_id, body.name, body.config_json, body.is_public, meta
    )


@router.get("")
async def list_configs(
    public: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=50),
    cursor: str | None = Query(default=None),
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    configs: ConfigService = Depends(get_config_service),
):
    return await configs.list_configs(caller, public=public, limit=limit, cursor=cursor)


@router.delete("/{config_id}")
async def delete_config(
    config_id: str,
    caller: AuthenticatedCaller | None = Depends(optional_caller),
    configs: ConfigService = Depends(get_config_service),
):
    return await configs.delete_config(caller, config_id)
