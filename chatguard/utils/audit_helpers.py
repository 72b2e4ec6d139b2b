"""
Audit Helper Utilities - request context for services that audit.

Services never see the FastAPI Request. Routes hand them a RequestMeta
built from request.state (populated by RequestContextMiddleware), which
carries the correlation fields for audit entries and a slot for the rate
limit decision that RateLimitHeadersMiddleware turns into headers.

Usage:
    from chatguard.utils.audit_helpers import RequestMeta, request_meta

    @router.post("/chats/{chat_id}/messages")
    async def send(meta: RequestMeta = Depends(request_meta), ...):
        return await orchestrator.send_message(caller, chat_id, body.message, meta)
"""

from dataclasses import dataclass
from typing import Any

from fastapi import Request

from chatguard.infrastructure.audit.audit_logger import AuditLogger


@dataclass
class RequestMeta:
    request_id: str | None = None
    ip_address: str | None = None
    state: Any = None

    def record_rate_limit(self, info: dict) -> None:
        """Expose the decision to RateLimitHeadersMiddleware (no-op outside HTTP)."""
        if self.state is not None:
            self.state.rate_limit_info = info


def request_meta(request: Request) -> RequestMeta:
    """FastAPI dependency."""
    return RequestMeta(
        request_id=getattr(request.state, "request_id", None),
        ip_address=getattr(request.state, "ip_address", None),
        state=request.state,
    )


async def audit_security_event(
    audit: AuditLogger,
    meta: RequestMeta | None,
    event_type: str,
    severity: str,
    description: str,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    One-line helper for security events (rate limiting, content rejection).

    Examples:
        await audit_security_event(
            audit_logger,
            meta,
            event_type="rate_limit_exceeded",
            severity="medium",
            description="User exceeded chat_message rate limit",
            user_id=user.id,
            metadata={"violation_count": 3},
        )
    """
    meta = meta or RequestMeta()
    return await audit.log_security_event(
        user_id=user_id,
        event_type=event_type,
        severity=severity,
        description=description,
        ip_address=meta.ip_address,
        request_id=meta.request_id,
        metadata=metadata,
    )


async def audit_data_modification(
    audit: AuditLogger,
    meta: RequestMeta | None,
    user_id: str,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    changes: dict[str, Any] | None = None,
) -> bool:
    """One-line helper for auditing creates, updates and deletes."""
    meta = meta or RequestMeta()
    return await audit.log(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_address=meta.ip_address,
        request_id=meta.request_id,
        metadata={"changes": changes} if changes else None,
    )
