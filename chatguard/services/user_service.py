# chatguard/services/user_service.py
"""
User profile lifecycle: first-sign-in profile creation and the one-time
username claim. Sanction, role and tier fields are only ever written here
with their safe defaults.
"""

import re
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
from chatguard.models.domain.user_domain import Role, SubscriptionTier
from chatguard.security.blocked_words import contains_blocked_term
from chatguard.services.errors import (
    AccessDenied,
    AccountSuspended,
    AuthRequired,
    TransientStoreFailure,
    ValidationFailed,
)

logger = get_logger(__name__)

USERNAME_MIN_LENGTH = 4
USERNAME_MAX_LENGTH = 20
USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def default_profile(caller: AuthenticatedCaller, now: float) -> dict:
    if caller.name:
        name = caller.name
    elif caller.is_anonymous:
        name = f"Guest_{caller.uid[:6]}"
    else:
        name = "User"
    return {
        "display_name": name,
        "display_name_lower": name.lower(),
        "display_name_set": False,
        "email": caller.email,
        "is_anonymous": caller.is_anonymous,
        "role": Role.USER.value,
        "subscription_tier": SubscriptionTier.FREE.value,
        "banned": False,
        "shadowbanned": False,
        "theme_preference": "dark",
        "dashboard_layout_settings": {},
        "desktop_preferences": {},
        "created_at": now,
        "updated_at": now,
    }


def validate_username(username: Any) -> str:
    if not username or not isinstance(username, str):
        raise ValidationFailed("Username is required")
    trimmed = username.strip()
    if not USERNAME_MIN_LENGTH <= len(trimmed) <= USERNAME_MAX_LENGTH:
        raise ValidationFailed(
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
        )
    if not USERNAME_RE.match(trimmed):
        raise ValidationFailed("Username can only contain letters, numbers, and underscores")
    if contains_blocked_term(trimmed):
        raise ValidationFailed("That username is not allowed")
    return trimmed


class UserService:
    def __init__(self, store: DocumentStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def ensure_profile(self, caller: AuthenticatedCaller | None) -> dict:
        """Create users/{uid} with safe defaults if it does not exist yet."""
        if caller is None:
            raise AuthRequired("Authentication required")

        async def _ensure(txn: Transaction) -> bool:
            if await txn.get(paths.user(caller.uid)) is not None:
                return False
            txn.set(paths.user(caller.uid), default_profile(caller, self.clock()))
            return True

        created = await self._run(_ensure)
        if created:
            logger.info(
                "Created user profile", user_id=caller.uid, is_anonymous=caller.is_anonymous
            )
        return {"success": True, "created": created}

    async def set_username(self, caller: AuthenticatedCaller | None, username: Any) -> dict:
        """
        One-time username claim.

        Uniqueness is case-insensitive: usernames/{lower} is claimed in the
        same transaction as the profile update, so two callers racing for
        the same name cannot both win.
        """
        if caller is None:
            raise AuthRequired("Authentication required")
        name = validate_username(username)

        async def _claim(txn: Transaction) -> None:
            existing = await txn.get(paths.user(caller.uid))
            if existing is not None:
                if existing.get("banned"):
                    raise AccountSuspended("Account suspended")
                if existing.get("display_name_set"):
                    raise AccessDenied("Username already set")

            claim = await txn.get(paths.username(name))
            if claim is not None and claim.get("uid") != caller.uid:
                raise ValidationFailed("Username is already taken")

            now = self.clock()
            profile = existing if existing is not None else default_profile(caller, now)
            profile.update(
                {
                    "display_name": name,
                    "display_name_lower": name.lower(),
                    "display_name_set": True,
                    "updated_at": now,
                }
            )
            txn.set(paths.user(caller.uid), profile)
            txn.set(paths.username(name), {"uid": caller.uid, "created_at": now})

        await self._run(_claim)
        logger.info("Username set", user_id=caller.uid)
        return {"success": True}

    async def _run(self, fn) -> Any:
        try:
            return await self.store.run_transaction(fn)
        except TransientStoreError as e:
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e


user_service = UserService(store=document_store)


def get_user_service() -> UserService:
    return user_service
