"""
AuditLogger - Centralized audit logging for abuse-mitigation decisions.

This module records security-relevant outcomes of the write paths:
- Rate limit violations and automatic mutes
- Content rejected by the toxicity scorer
- Privileged moderation actions (ban, shadowban, role changes)

Usage:
    from chatguard.infrastructure.audit import audit_logger

    await audit_logger.log_security_event(
        user_id="user-123",
        event_type="rate_limit_exceeded",
        severity="medium",
        description="User exceeded chat_message rate limit",
        metadata={"violation_count": 3},
    )

Design Principles:
- Write to both the document store (audit_logs/{id}) and structured logs
- Never fail the request if audit logging fails
- Never store message text, only its length and flags
"""

import time
from typing import Any

from chatguard.db import paths
from chatguard.db.document_store import DocumentStore, TransientStoreError, document_store
from chatguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SYSTEM_USER_ID = "system"


class AuditLogger:
    """
    Centralized audit logging service.

    Logs to:
    1. Document store (audit_logs collection) - queryable by moderation tooling
    2. Structured logs (stdout) - real-time monitoring
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    async def log(
        self,
        user_id: str | None,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        actor_id: str | None = None,
        ip_address: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log an audit event to the store and structured logs.

        Args:
            user_id: User the event concerns (None for unauthenticated)
            action: Action name (e.g., "message_blocked", "user_banned")
            resource_type: Type of resource (e.g., "chat_message", "user")
            resource_id: Specific resource ID
            actor_id: Who performed the action if not the user
            ip_address: Client IP address
            request_id: Request correlation ID for tracing
            metadata: Additional context (JSON-serializable dict)

        Returns:
            True if logged successfully, False if failed (never raises)
        """
        user_id = user_id or SYSTEM_USER_ID
        entry = {
            "user_id": user_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "actor_id": actor_id or user_id,
            "ip_address": ip_address,
            "request_id": request_id,
            "metadata": metadata or {},
            "created_at": time.time(),
        }

        # Structured log FIRST (fast, cannot fail the request)
        logger.info(
            "Audit event",
            audit_action=action,
            user_id=user_id,
            actor_id=entry["actor_id"],
            resource_type=resource_type,
            resource_id=resource_id,
            request_id=request_id,
        )

        entry_path = paths.audit_log(paths.new_id())

        async def _write(txn):
            txn.set(entry_path, entry)

        try:
            await self.store.run_transaction(_write)
            return True
        except (TransientStoreError, ValueError, TypeError) as e:
            # NEVER fail the request due to audit logging failure
            logger.error(
                "Failed to write audit log to store",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data=entry,
            )
            return False

    async def log_security_event(
        self,
        user_id: str | None,
        event_type: str,
        severity: str,
        description: str,
        ip_address: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log security events (rate limit exceeded, content rejected, auto-mutes).

        Args:
            user_id: User involved (None if unauthenticated)
            event_type: Type of security event (e.g., "rate_limit_exceeded")
            severity: Severity level ("low", "medium", "high", "critical")
            description: Human-readable description
            ip_address: Client IP
            request_id: Request ID
            metadata: Additional context

        Returns:
            True if logged successfully
        """
        audit_metadata = dict(metadata or {})
        audit_metadata.update(
            {
                "event_type": event_type,
                "severity": severity,
                "description": description,
            }
        )

        return await self.log(
            user_id=user_id,
            action="security_event",
            resource_type="security",
            ip_address=ip_address,
            request_id=request_id,
            metadata=audit_metadata,
        )


# Global singleton instance
audit_logger = AuditLogger(document_store)
