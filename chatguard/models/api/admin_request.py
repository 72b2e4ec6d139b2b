# chatguard/models/api/admin_request.py
"""
Privileged moderation request models. Role checks happen in the service
against the stored user record.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _AdminBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    target_user_id: Any = Field(default=None, alias="targetUserId")


class BanRequest(_AdminBody):
    banned: Any = None
    reason: Any = None


class ShadowbanRequest(_AdminBody):
    shadowbanned: Any = None
    reason: Any = None


class SetRoleRequest(_AdminBody):
    role: Any = None


class CreateChatRequest(BaseModel):
    title: Any = None
