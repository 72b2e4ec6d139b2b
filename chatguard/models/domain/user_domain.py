from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class Role(StrEnum):
    USER = "user"
    MOD = "mod"
    ADMIN = "admin"


class SubscriptionTier(StrEnum):
    FREE = "free"
    PRO = "pro"


class SanctionState(StrEnum):
    NORMAL = "normal"
    SHADOWBANNED = "shadowbanned"
    BANNED = "banned"


PRIVILEGED_ROLES = frozenset({Role.MOD, Role.ADMIN})
_ROLE_VALUES = frozenset(r.value for r in Role)
_TIER_VALUES = frozenset(t.value for t in SubscriptionTier)


class UserRecord(BaseModel):
    """Authoritative user document (users/{uid}). Server-owned."""

    model_config = ConfigDict(extra="allow")

    id: str
    display_name: str | None = None
    display_name_lower: str | None = None
    display_name_set: bool = False
    email: str | None = None
    is_anonymous: bool = False
    role: Role = Role.USER
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE

    banned: bool = False
    ban_reason: str | None = None
    banned_by: str | None = None
    banned_at: float | None = None

    shadowbanned: bool = False
    shadowban_reason: str | None = None
    shadowban_by: str | None = None
    shadowban_at: float | None = None

    # Chat violation count at the last manual un-shadowban; auto-mute counts from here
    auto_mute_baseline: int = 0

    # Tokens issued before this instant are treated as revoked
    tokens_valid_after: float | None = None

    theme_preference: str = "dark"
    dashboard_layout_settings: dict[str, Any] = {}
    desktop_preferences: dict[str, Any] = {}

    created_at: float | None = None
    updated_at: float | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _unknown_role_is_user(cls, value: Any) -> Any:
        # Unrecognized roles get the least privilege
        return value if isinstance(value, str) and value in _ROLE_VALUES else Role.USER

    @field_validator("subscription_tier", mode="before")
    @classmethod
    def _unknown_tier_is_free(cls, value: Any) -> Any:
        return value if isinstance(value, str) and value in _TIER_VALUES else SubscriptionTier.FREE

    @classmethod
    def from_document(cls, uid: str, doc: dict[str, Any]) -> "UserRecord":
        return cls.model_validate({**doc, "id": uid})

    @property
    def sanction_state(self) -> SanctionState:
        if self.banned:
            return SanctionState.BANNED
        if self.shadowbanned:
            return SanctionState.SHADOWBANNED
        return SanctionState.NORMAL

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def rate_limit_tier(self) -> str:
        """Mods and admins get the staff catalog entry; everyone else their subscription."""
        if self.is_privileged:
            return self.role.value
        return self.subscription_tier.value
