"""
RequestContext Middleware - request tracking for audit entries.

Adds to request.state:
- request_id: UUID for tracing this request
- ip_address: Client IP address (X-Forwarded-For only from trusted proxies)
- user_agent: Client user agent string

Request.state namespace convention:
- request_id, ip_address, user_agent: set here
- rate_limit_info: set by the write pipeline via RequestMeta
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from chatguard.config import settings
from chatguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = self._extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        logger.debug(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            ip_address=request.state.ip_address,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Only trusts X-Forwarded-For when TRUST_X_FORWARDED_FOR is enabled
        and the direct peer is one of TRUSTED_PROXY_IPS.
        """
        direct_ip = request.client.host if request.client else None

        if not settings.TRUST_X_FORWARDED_FOR:
            return direct_ip

        if direct_ip and direct_ip in settings.TRUSTED_PROXY_IPS:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                # "client, proxy1, proxy2": first entry is the original client
                return forwarded_for.split(",")[0].strip()

        return direct_ip
