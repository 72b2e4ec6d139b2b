"""
Audit logging infrastructure for abuse-mitigation decisions.

Records rate limit violations, rejected content and moderation actions
for review by moderation tooling.
"""

from chatguard.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
