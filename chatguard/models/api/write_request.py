# chatguard/models/api/write_request.py
"""
Request bodies for the guarded write paths.

Fields are loose (`Any`, all optional): payload validation is stage 4 of
the write pipeline and must not run before authentication, ban and
rate-limit checks. Routes never declare these as body parameters; they are
filled from the raw body by `utils.request_body.body_fields`. Ids of the
sender/owner are never part of a body.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _LooseBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SendMessageRequest(_LooseBody):
    message: Any = Field(default=None, description="Message text (sanitized server-side)")


class ReportMessageRequest(_LooseBody):
    message_id: Any = Field(default=None, alias="messageId", description="Reported message")
    reason: Any = Field(default=None, description="Why the message is being reported")


class SaveConfigRequest(_LooseBody):
    config_id: Any = Field(default=None, alias="configId", description="Set to update")
    name: Any = Field(default=None, description="Config name")
    config_json: Any = Field(default=None, alias="configJson", description="Layout object")
    is_public: Any = Field(default=False, alias="isPublic")


class SaveSettingsRequest(_LooseBody):
    theme_preference: Any = None
    display_name: Any = None
    dashboard_layout_settings: Any = None
    desktop_preferences: Any = None


class SetUsernameRequest(_LooseBody):
    username: Any = None
