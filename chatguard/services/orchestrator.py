# chatguard/services/orchestrator.py
"""
Message Orchestrator - the guarded write pipeline.

Every write an untrusted client can trigger (chat message, report, config
save, settings save) runs the same strictly ordered stages; each stage can
short-circuit with a terminal WritePathError:

    1. authenticate caller               -> AuthRequired
    2. load user record, ban check       -> NotFound / AccountSuspended
    3. rate limit (auto-mute on chat)    -> RateLimited
    4. sanitize + validate payload       -> ValidationFailed
    5. score content (chat only)         -> ContentRejected
    6. persist in one transaction        -> NotFound / AccessDenied /
                                            QuotaExceeded / TransientStoreFailure
    7. return the new resource id

Stage 6 re-reads the user inside the persist transaction, so the
`shadowbanned` and `sender_tier` snapshots reflect state at commit time, not
the copy loaded in stage 2. Nothing here retries a stage; store conflicts are
retried inside the document store only.
"""

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
from chatguard.infrastructure.audit.audit_logger import AuditLogger, audit_logger
from chatguard.infrastructure.observability.logging import get_logger
from chatguard.middleware.rate_limiter import (
    ActionKind,
    RateLimitDecision,
    RateLimiter,
    rate_limiter,
    should_auto_mute,
)
from chatguard.models.domain.chat_domain import ChatMessage, Report, is_visible_to
from chatguard.models.domain.user_domain import UserRecord
from chatguard.security.sanitizer import (
    validate_config,
    validate_identifier,
    validate_message,
    validate_report_reason,
    validate_settings,
)
from chatguard.services.errors import (
    AccessDenied,
    AccountSuspended,
    ContentRejected,
    NotFound,
    QuotaExceeded,
    RateLimited,
    TransientStoreFailure,
)
from chatguard.services.moderation_service import score_toxicity, should_block
from chatguard.services.quota_guard import QuotaGuard, quota_guard
from chatguard.services.sanction_service import SanctionService, sanction_service
from chatguard.utils.audit_helpers import (
    RequestMeta,
    audit_data_modification,
    audit_security_event,
)

logger = get_logger(__name__)

# Reports are always limited with the most restrictive catalog entry
REPORT_RATE_TIER = "free"

_RATE_LIMIT_MESSAGES = {
    ActionKind.CHAT_MESSAGE: "Rate limit exceeded. Please wait.",
    ActionKind.REPORT: "Too many reports. Please wait.",
    ActionKind.CONFIG_SAVE: "Too many saves. Please wait.",
    ActionKind.SETTINGS_SAVE: "Too many saves. Please wait.",
}


class MessageOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        sanctions: SanctionService,
        limiter: RateLimiter,
        quota: QuotaGuard,
        audit: AuditLogger,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.sanctions = sanctions
        self.limiter = limiter
        self.quota = quota
        self.audit = audit
        self.clock = clock

    # ------------------------------------------------------------------
    # Stages 1-3
    # ------------------------------------------------------------------

    async def _admit(
        self,
        caller: AuthenticatedCaller | None,
        action: ActionKind,
        meta: RequestMeta | None,
        tier: str | None = None,
    ) -> UserRecord:
        user = await self.sanctions.get_verified_user(caller)

        decision = await self.limiter.check(user.id, action, tier or user.rate_limit_tier)
        if meta is not None:
            meta.record_rate_limit(decision.to_info())

        if not decision.allowed:
            await self._on_rate_limited(user, action, decision, meta)
            raise RateLimited(_RATE_LIMIT_MESSAGES[action], retry_after=decision.retry_after)

        return user

    async def _on_rate_limited(
        self,
        user: UserRecord,
        action: ActionKind,
        decision: RateLimitDecision,
        meta: RequestMeta | None,
    ) -> None:
        logger.warning(
            "Rate limit exceeded",
            user_id=user.id,
            action=str(action),
            violation_count=decision.violation_count,
            error=decision.error,
        )
        await audit_security_event(
            self.audit,
            meta,
            event_type="rate_limit_exceeded",
            severity="medium",
            description=f"User exceeded {action} rate limit",
            user_id=user.id,
            metadata={
                "action": str(action),
                "violation_count": decision.violation_count,
                "limit": decision.limit,
                "window_seconds": decision.window_seconds,
            },
        )

        if action is ActionKind.CHAT_MESSAGE and should_auto_mute(decision.violation_count):
            try:
                await self.sanctions.auto_mute(user.id, decision.violation_count)
            except TransientStoreError as e:
                # Best effort: the RateLimited response still goes out
                logger.error("Auto-mute failed", user_id=user.id, error=str(e))

    async def _persist(self, fn) -> Any:
        try:
            return await self.store.run_transaction(fn)
        except TransientStoreError as e:
            logger.error("Persist transaction failed", error=str(e), attempts=e.attempts)
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e

    # ------------------------------------------------------------------
    # sendMessage
    # ------------------------------------------------------------------

    async def send_message(
        self,
        caller: AuthenticatedCaller | None,
        chat_id: Any,
        message: Any,
        meta: RequestMeta | None = None,
    ) -> dict:
        user = await self._admit(caller, ActionKind.CHAT_MESSAGE, meta)

        chat_id = validate_identifier(chat_id, "Chat ID")
        text = validate_message(message)

        result = score_toxicity(text)
        if should_block(result.score):
            logger.info(
                "Blocked message",
                user_id=user.id,
                chat_id=chat_id,
                score=result.score,
                flags=sorted(result.flags),
            )
            await audit_security_event(
                self.audit,
                meta,
                event_type="content_rejected",
                severity="low",
                description="Message blocked by toxicity filter",
                user_id=user.id,
                metadata={
                    "chat_id": chat_id,
                    "score": result.score,
                    "flags": sorted(result.flags),
                    "length": len(text),
                },
            )
            raise ContentRejected("Message contains inappropriate content")

        message_id = paths.new_id()

        async def _write(txn: Transaction) -> None:
            # Fresh read: snapshots must reflect state at commit time
            doc = await txn.get(paths.user(user.id))
            if doc is None:
                raise NotFound("User record not found")
            sender = UserRecord.from_document(user.id, doc)
            if sender.banned:
                raise AccountSuspended("Account suspended")

            if await txn.get(paths.chat(chat_id)) is None:
                raise NotFound("Chat not found")

            now = self.clock()
            txn.set(
                paths.message(chat_id, message_id),
                {
                    "chat_id": chat_id,
                    "sender_id": sender.id,
                    "sender_display_name": sender.display_name,
                    "message": text,
                    "toxicity_score": result.score,
                    "flags": sorted(result.flags),
                    "shadowbanned": sender.shadowbanned,
                    "sender_tier": sender.subscription_tier.value,
                    "created_at": now,
                },
            )
            txn.index_add(paths.chat_messages_index(chat_id), message_id, now)

        await self._persist(_write)
        logger.info("Message sent", user_id=user.id, chat_id=chat_id, message_id=message_id)
        return {"success": True, "message_id": message_id}

    # ------------------------------------------------------------------
    # reportMessage
    # ------------------------------------------------------------------

    async def report_message(
        self,
        caller: AuthenticatedCaller | None,
        chat_id: Any,
        message_id: Any,
        reason: Any,
        meta: RequestMeta | None = None,
    ) -> dict:
        user = await self._admit(caller, ActionKind.REPORT, meta, tier=REPORT_RATE_TIER)

        chat_id = validate_identifier(chat_id, "Chat ID")
        message_id = validate_identifier(message_id, "Message ID")
        reason_text = validate_report_reason(reason)

        report_id = paths.new_id()

        async def _write(txn: Transaction) -> str:
            doc = await txn.get(paths.message(chat_id, message_id))
            if doc is None:
                raise NotFound("Message not found")
            reported = ChatMessage.from_document(message_id, {"chat_id": chat_id, **doc})

            # A message the reporter cannot see does not exist for them
            if not is_visible_to(reported, user.id):
                raise NotFound("Message not found")
            if reported.sender_id == user.id:
                raise AccessDenied("Cannot report your own message")

            now = self.clock()
            report = Report(
                id=report_id,
                reporter_id=user.id,
                reported_user_id=reported.sender_id,
                chat_id=chat_id,
                message_id=message_id,
                message_content=reported.message,
                reason=reason_text,
                created_at=now,
            )
            txn.set(paths.report(report_id), report.model_dump(mode="json", exclude={"id"}))
            txn.index_add(paths.REPORTS_PENDING_INDEX, report_id, now)
            return reported.sender_id

        reported_user_id = await self._persist(_write)
        logger.info(
            "Message reported",
            reporter_id=user.id,
            reported_user_id=reported_user_id,
            chat_id=chat_id,
            message_id=message_id,
            report_id=report_id,
        )
        return {"success": True, "report_id": report_id}

    # ------------------------------------------------------------------
    # saveConfig
    # ------------------------------------------------------------------

    async def save_config(
        self,
        caller: AuthenticatedCaller | None,
        config_id: Any,
        name: Any,
        config_json: Any,
        is_public: Any = False,
        meta: RequestMeta | None = None,
    ) -> dict:
        user = await self._admit(caller, ActionKind.CONFIG_SAVE, meta)

        clean_name, config = validate_config(name, config_json)
        public = is_public is True

        if config_id is not None and config_id != "":
            config_id = validate_identifier(config_id, "Config ID")
            await self._persist(
                lambda txn: self._update_config(txn, user.id, config_id, clean_name, config, public)
            )
            action = "config_updated"
        else:
            config_id = paths.new_id()
            await self._persist(
                lambda txn: self._create_config(txn, user.id, config_id, clean_name, config, public)
            )
            action = "config_created"

        await audit_data_modification(
            self.audit,
            meta,
            user_id=user.id,
            action=action,
            resource_type="config",
            resource_id=config_id,
            changes={"is_public": public},
        )
        return {"success": True, "config_id": config_id}

    async def _create_config(
        self,
        txn: Transaction,
        uid: str,
        config_id: str,
        name: str,
        config: dict,
        public: bool,
    ) -> None:
        doc = await txn.get(paths.user(uid))
        if doc is None:
            raise NotFound("User record not found")
        # Ceiling follows the subscription on record, never the request
        tier = UserRecord.from_document(uid, doc).subscription_tier.value

        decision = await self.quota.try_reserve(txn, uid, "config", tier)
        if not decision.allowed:
            raise QuotaExceeded(
                f"Config limit reached ({decision.ceiling} for {tier} tier). "
                "Upgrade to Pro for unlimited configs.",
                limit=decision.ceiling,
            )

        now = self.clock()
        txn.set(
            paths.config(config_id),
            {
                "user_id": uid,
                "name": name,
                "config_json": config,
                "is_public": public,
                "created_at": now,
                "updated_at": now,
            },
        )
        txn.index_add(paths.configs_by_owner_index(uid), config_id, now)
        if public:
            txn.index_add(paths.CONFIGS_PUBLIC_INDEX, config_id, now)

    async def _update_config(
        self,
        txn: Transaction,
        uid: str,
        config_id: str,
        name: str,
        config: dict,
        public: bool,
    ) -> None:
        existing = await txn.get(paths.config(config_id))
        if existing is None:
            raise NotFound("Config not found")
        if existing.get("user_id") != uid:
            raise AccessDenied("Access denied")

        await txn.update(
            paths.config(config_id),
            {"name": name, "config_json": config, "is_public": public, "updated_at": self.clock()},
        )
        if public:
            txn.index_add(
                paths.CONFIGS_PUBLIC_INDEX, config_id, existing.get("created_at") or self.clock()
            )
        else:
            txn.index_remove(paths.CONFIGS_PUBLIC_INDEX, config_id)

    # ------------------------------------------------------------------
    # saveSettings
    # ------------------------------------------------------------------

    async def save_settings(
        self,
        caller: AuthenticatedCaller | None,
        data: Any,
        meta: RequestMeta | None = None,
    ) -> dict:
        user = await self._admit(caller, ActionKind.SETTINGS_SAVE, meta)

        update = validate_settings(data)
        if not update:
            return {"success": True}

        fields = dict(update)
        if "display_name" in fields:
            fields["display_name_lower"] = fields["display_name"].lower()

        async def _write(txn: Transaction) -> None:
            try:
                await txn.update(paths.user(user.id), {**fields, "updated_at": self.clock()})
            except KeyError as e:
                raise NotFound("User record not found") from e

        await self._persist(_write)
        logger.info("Settings saved", user_id=user.id, fields=sorted(update))
        return {"success": True}


# Global singleton
orchestrator = MessageOrchestrator(
    store=document_store,
    sanctions=sanction_service,
    limiter=rate_limiter,
    quota=quota_guard,
    audit=audit_logger,
)


def get_orchestrator() -> MessageOrchestrator:
    """FastAPI dependency."""
    return orchestrator
