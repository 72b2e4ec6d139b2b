# chatguard/services/sanction_service.py
"""
Sanction Store - authoritative per-user moderation state.

States: NORMAL, SHADOWBANNED, BANNED (BANNED dominates).

Transitions and who may perform them:
- NORMAL -> SHADOWBANNED: mod/admin action, or the automatic mute after
  repeated chat rate-limit violations (the only non-privileged transition;
  idempotent)
- SHADOWBANNED -> NORMAL: mod/admin action only
- * -> BANNED, BANNED -> NORMAL: admin action only
- Admin accounts can never be banned or shadowbanned.

Every transition writes a sanction_events/{id} document in the same
transaction as the state change, carrying the actor and the reason.

User state is re-read from the store on every call. Nothing here is cached.
"""

import time
from collections.abc import Callable, Iterable
from typing import Any

from chatguard.auth.verify import AuthenticatedCaller
from chatguard.db import paths
from chatguard.db.document_store import (
    DocumentStore,
    Transaction,
    TransientStoreError,
    document_store,
)
from chatguard.infrastructure.audit.audit_logger import AuditLogger, audit_logger
from chatguard.infrastructure.observability.logging import get_logger
from chatguard.middleware.rate_limiter import ActionKind, should_auto_mute
from chatguard.models.domain.user_domain import Role, SanctionState, UserRecord
from chatguard.services.errors import (
    AccessDenied,
    AccountSuspended,
    AuthRequired,
    NotFound,
    TransientStoreFailure,
    ValidationFailed,
)

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"
AUTO_MUTE_REASON = "auto_mute_spam"
DEFAULT_BAN_REASON = "Violation of terms"
DEFAULT_SHADOWBAN_REASON = "manual_mod_action"


def _require_target_id(target_user_id: Any) -> str:
    if not target_user_id or not isinstance(target_user_id, str):
        raise ValidationFailed("Target user ID is required")
    return target_user_id


def _require_flag(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationFailed(f"{label} flag must be a boolean")
    return value


class SanctionService:
    def __init__(
        self,
        store: DocumentStore,
        audit: AuditLogger,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_user(self, uid: str) -> UserRecord | None:
        """Fresh read of users/{uid}."""
        try:
            doc = await self.store.get(paths.user(uid))
        except TransientStoreError as e:
            logger.error("Failed to load user record", user_id=uid, error=str(e))
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e
        return UserRecord.from_document(uid, doc) if doc else None

    async def get_verified_user(self, caller: AuthenticatedCaller | None) -> UserRecord:
        """
        Authenticate the caller and load their record, rejecting banned users.

        Raises:
            AuthRequired: no verified identity, or the token predates a revocation
            NotFound: the user has no profile yet
            AccountSuspended: the user is banned
        """
        if caller is None or not caller.uid:
            raise AuthRequired("Authentication required")

        user = await self.load_user(caller.uid)
        if user is None:
            raise NotFound("User record not found")

        if (
            user.tokens_valid_after is not None
            and caller.auth_time is not None
            and caller.auth_time < user.tokens_valid_after
        ):
            raise AuthRequired("Authentication token has been revoked")

        if user.banned:
            raise AccountSuspended("Account suspended")

        return user

    async def require_role(
        self, caller: AuthenticatedCaller | None, allowed_roles: Iterable[Role]
    ) -> UserRecord:
        """Role is read from the store, never from token claims."""
        user = await self.get_verified_user(caller)
        if user.role not in set(allowed_roles):
            raise AccessDenied("Insufficient permissions")
        return user

    async def list_sanction_events(
        self, caller: AuthenticatedCaller | None, target_user_id: Any, limit: int = 50
    ) -> list[dict]:
        await self.require_role(caller, (Role.ADMIN, Role.MOD))
        target_user_id = _require_target_id(target_user_id)
        try:
            event_ids = await self.store.list_index(
                paths.sanction_events_index(target_user_id), limit=max(1, min(limit, 200))
            )
            docs = await self.store.get_many([paths.sanction_event(eid) for eid in event_ids])
        except TransientStoreError as e:
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e
        return [{"id": eid, **doc} for eid, doc in zip(event_ids, docs) if doc]

    # ------------------------------------------------------------------
    # Automatic escalation
    # ------------------------------------------------------------------

    async def auto_mute(self, uid: str, violation_count: int) -> bool:
        """
        NORMAL -> SHADOWBANNED after repeated chat rate-limit violations.

        Idempotent: returns False without writing if the user is already
        shadowbanned (or banned), is an admin, or does not exist. After a
        manual un-shadowban the threshold is counted from the violation
        count at that moment, not from zero.
        """

        async def _mute(txn: Transaction) -> bool:
            doc = await txn.get(paths.user(uid))
            if doc is None:
                return False
            user = UserRecord.from_document(uid, doc)
            if user.sanction_state is not SanctionState.NORMAL or user.role is Role.ADMIN:
                return False
            # A count at or below the baseline means the limiter record expired
            baseline = user.auto_mute_baseline if violation_count > user.auto_mute_baseline else 0
            if not should_auto_mute(violation_count - baseline):
                return False

            now = self.clock()
            await txn.update(
                paths.user(uid),
                {
                    "shadowbanned": True,
                    "shadowban_reason": AUTO_MUTE_REASON,
                    "shadowban_by": SYSTEM_ACTOR,
                    "shadowban_at": now,
                    "updated_at": now,
                },
            )
            self._record_event(
                txn,
                uid=uid,
                action="auto_mute",
                actor_id=SYSTEM_ACTOR,
                reason=AUTO_MUTE_REASON,
                previous=user.sanction_state,
                new=SanctionState.SHADOWBANNED,
                now=now,
                metadata={"violation_count": violation_count},
            )
            return True

        muted = await self.store.run_transaction(_mute)
        if muted:
            logger.warning("Auto-muted user for spam", user_id=uid, violation_count=violation_count)
            await self.audit.log_security_event(
                user_id=uid,
                event_type="auto_mute",
                severity="high",
                description="User automatically shadowbanned for repeated rate-limit violations",
                metadata={"violation_count": violation_count},
            )
        return muted

    # ------------------------------------------------------------------
    # Privileged transitions
    # ------------------------------------------------------------------

    async def set_ban(
        self,
        caller: AuthenticatedCaller | None,
        target_user_id: Any,
        banned: Any,
        reason: Any = None,
    ) -> dict:
        actor = await self.require_role(caller, (Role.ADMIN,))
        target_user_id = _require_target_id(target_user_id)
        banned = _require_flag(banned, "Banned")

        if target_user_id == actor.id:
            raise AccessDenied("Cannot ban yourself")

        reason_text = reason if isinstance(reason, str) and reason.strip() else DEFAULT_BAN_REASON

        async def _apply(txn: Transaction) -> None:
            target = await self._load_target(txn, target_user_id)
            if target.role is Role.ADMIN:
                raise AccessDenied("Cannot ban another admin")

            now = self.clock()
            await txn.update(
                paths.user(target_user_id),
                {
                    "banned": banned,
                    "ban_reason": reason_text if banned else None,
                    "banned_by": actor.id if banned else None,
                    "banned_at": now if banned else None,
                    "updated_at": now,
                },
            )
            new_state = SanctionState.BANNED if banned else (
                SanctionState.SHADOWBANNED if target.shadowbanned else SanctionState.NORMAL
            )
            self._record_event(
                txn,
                uid=target_user_id,
                action="ban" if banned else "unban",
                actor_id=actor.id,
                reason=reason_text if banned else None,
                previous=target.sanction_state,
                new=new_state,
                now=now,
            )

        await self._run(_apply)
        await self.audit.log(
            user_id=target_user_id,
            action="user_banned" if banned else "user_unbanned",
            resource_type="user",
            resource_id=target_user_id,
            actor_id=actor.id,
        )
        logger.info(
            "Ban state changed", target_user_id=target_user_id, banned=banned, actor_id=actor.id
        )
        return {"success": True, "message": f"User {'banned' if banned else 'unbanned'}"}

    async def set_shadowban(
        self,
        caller: AuthenticatedCaller | None,
        target_user_id: Any,
        shadowbanned: Any,
        reason: Any = None,
    ) -> dict:
        actor = await self.require_role(caller, (Role.ADMIN, Role.MOD))
        target_user_id = _require_target_id(target_user_id)
        shadowbanned = _require_flag(shadowbanned, "Shadowbanned")

        reason_text = (
            reason if isinstance(reason, str) and reason.strip() else DEFAULT_SHADOWBAN_REASON
        )

        async def _apply(txn: Transaction) -> None:
            target = await self._load_target(txn, target_user_id)
            if target.role is Role.ADMIN:
                raise AccessDenied("Cannot shadowban an admin")

            now = self.clock()
            update = {
                "shadowbanned": shadowbanned,
                "shadowban_reason": reason_text if shadowbanned else None,
                "shadowban_by": actor.id if shadowbanned else None,
                "shadowban_at": now if shadowbanned else None,
                "updated_at": now,
            }
            if not shadowbanned:
                record = await txn.get(
                    paths.rate_limit(target_user_id, str(ActionKind.CHAT_MESSAGE))
                ) or {}
                update["auto_mute_baseline"] = int(record.get("violation_count", 0))
            await txn.update(paths.user(target_user_id), update)
            if target.banned:
                new_state = SanctionState.BANNED
            else:
                new_state = SanctionState.SHADOWBANNED if shadowbanned else SanctionState.NORMAL
            self._record_event(
                txn,
                uid=target_user_id,
                action="shadowban" if shadowbanned else "unshadowban",
                actor_id=actor.id,
                reason=reason_text if shadowbanned else None,
                previous=target.sanction_state,
                new=new_state,
                now=now,
            )

        await self._run(_apply)
        await self.audit.log(
            user_id=target_user_id,
            action="user_shadowbanned" if shadowbanned else "user_unshadowbanned",
            resource_type="user",
            resource_id=target_user_id,
            actor_id=actor.id,
        )
        label = "shadowbanned" if shadowbanned else "un-shadowbanned"
        return {"success": True, "message": f"User {label}"}

    async def set_role(
        self, caller: AuthenticatedCaller | None, target_user_id: Any, role: Any
    ) -> dict:
        actor = await self.require_role(caller, (Role.ADMIN,))
        target_user_id = _require_target_id(target_user_id)

        try:
            new_role = Role(role)
        except ValueError as e:
            valid = ", ".join(r.value for r in Role)
            raise ValidationFailed(f"Invalid role. Must be one of: {valid}") from e

        if target_user_id == actor.id and new_role is not Role.ADMIN:
            raise AccessDenied("Cannot demote yourself")

        async def _apply(txn: Transaction) -> None:
            target = await self._load_target(txn, target_user_id)
            now = self.clock()
            await txn.update(
                paths.user(target_user_id),
                {"role": new_role.value, "role_updated_by": actor.id, "role_updated_at": now},
            )
            self._record_event(
                txn,
                uid=target_user_id,
                action="set_role",
                actor_id=actor.id,
                reason=None,
                previous=target.sanction_state,
                new=target.sanction_state,
                now=now,
                metadata={"previous_role": target.role.value, "role": new_role.value},
            )

        await self._run(_apply)
        await self.audit.log(
            user_id=target_user_id,
            action="role_changed",
            resource_type="user",
            resource_id=target_user_id,
            actor_id=actor.id,
            metadata={"role": new_role.value},
        )
        return {"success": True, "message": f"Role updated to '{new_role.value}'"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(self, fn) -> Any:
        try:
            return await self.store.run_transaction(fn)
        except TransientStoreError as e:
            logger.error("Sanction transaction failed", error=str(e))
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e

    @staticmethod
    async def _load_target(txn: Transaction, target_user_id: str) -> UserRecord:
        doc = await txn.get(paths.user(target_user_id))
        if doc is None:
            raise NotFound("User not found")
        return UserRecord.from_document(target_user_id, doc)

    @staticmethod
    def _record_event(
        txn: Transaction,
        *,
        uid: str,
        action: str,
        actor_id: str,
        reason: str | None,
        previous: SanctionState,
        new: SanctionState,
        now: float,
        metadata: dict | None = None,
    ) -> None:
        event_id = paths.new_id()
        txn.set(
            paths.sanction_event(event_id),
            {
                "user_id": uid,
                "action": action,
                "actor_id": actor_id,
                "reason": reason,
                "previous_state": previous.value,
                "new_state": new.value,
                "metadata": metadata or {},
                "created_at": now,
            },
        )
        txn.index_add(paths.sanction_events_index(uid), event_id, now)


# Global singleton
sanction_service = SanctionService(store=document_store, audit=audit_logger)


def get_sanction_service() -> SanctionService:
    """FastAPI dependency."""
    return sanction_service
