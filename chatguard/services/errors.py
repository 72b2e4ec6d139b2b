"""
Write-path error taxonomy.

Every outcome a caller can see from a guarded write is one of these. They are
terminal: nothing in the write pipeline retries them. Only store conflicts are
retried, inside the document store, before surfacing as TransientStoreFailure.
"""


class WritePathError(Exception):
    """Base exception for user-visible write-path failures."""

    code = "write_failed"
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        body.update(self.details)
        return body


class AuthRequired(WritePathError):
    code = "auth_required"
    status_code = 401


class AccountSuspended(WritePathError):
    code = "account_suspended"
    status_code = 403


class RateLimited(WritePathError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str, retry_after: int | None = None, **details):
        super().__init__(message, **details)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after"] = retry_after


class ValidationFailed(WritePathError):
    code = "validation_failed"
    status_code = 400


class ContentRejected(WritePathError):
    code = "content_rejected"
    status_code = 422


class QuotaExceeded(WritePathError):
    code = "quota_exceeded"
    status_code = 403


class NotFound(WritePathError):
    code = "not_found"
    status_code = 404


class AccessDenied(WritePathError):
    code = "access_denied"
    status_code = 403


class TransientStoreFailure(WritePathError):
    code = "transient_store_failure"
    status_code = 503
