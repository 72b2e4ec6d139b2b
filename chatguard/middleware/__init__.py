"""
Middleware components for request processing.

This package contains:
- Request context (request ID, IP address, user agent)
- Rate limiting (sliding window limiter and response headers)
- CORS for the browser dashboard
"""

from chatguard.middleware.cors import CORSMiddleware
from chatguard.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from chatguard.middleware.rate_limiter import rate_limiter
from chatguard.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
    "RateLimitHeadersMiddleware",
    "CORSMiddleware",
    "rate_limiter",
]
