"""
Rate Limiter - per-user, per-action sliding window over the document store.

This module provides sliding window rate limiting for every write path:
- chat messages, reports, config saves, settings saves
- tier-specific thresholds from a fixed server-side catalog
- violation counting for auto-mute escalation

Design:
- Sliding window algorithm (fair and accurate)
- One record per (user, action): rate_limits/{uid}_{action}
- Read, prune, decide and write happen in a single store transaction, so
  concurrent requests on the same key serialize (retry on conflict)
- Fail-closed behavior: if the store cannot complete the transaction, the
  request is denied

Usage:
    from chatguard.middleware.rate_limiter import rate_limiter

    decision = await rate_limiter.check(user_id, "chat_message", "free")
    if not decision.allowed:
        raise RateLimited("Rate limit exceeded. Please wait.")
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from chatguard.config import settings
from chatguard.db import paths
from chatguard.db.document_store import (
    DocumentStore,
    Transaction,
    TransientStoreError,
    document_store,
)
from chatguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ActionKind(StrEnum):
    CHAT_MESSAGE = "chat_message"
    REPORT = "report"
    CONFIG_SAVE = "config_save"
    SETTINGS_SAVE = "settings_save"


@dataclass(frozen=True)
class RateLimitTier:
    max_requests: int
    window_seconds: int


# Server-side catalog. Never derived from request payloads.
RATE_LIMITS: dict[str, RateLimitTier] = {
    "free": RateLimitTier(max_requests=10, window_seconds=60),
    "pro": RateLimitTier(max_requests=30, window_seconds=60),
    "admin": RateLimitTier(max_requests=60, window_seconds=60),
    "mod": RateLimitTier(max_requests=60, window_seconds=60),
}

DEFAULT_TIER = "free"


def get_tier_limits(tier: str) -> RateLimitTier:
    """Unknown tiers fall back to the most restrictive entry."""
    return RATE_LIMITS.get(tier, RATE_LIMITS[DEFAULT_TIER])


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    violation_count: int
    limit: int
    window_seconds: int
    retry_after: int | None = None
    error: str | None = None

    def to_info(self) -> dict:
        """Info dict consumed by RateLimitHeadersMiddleware."""
        info = {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "window_seconds": self.window_seconds,
        }
        if self.retry_after is not None:
            info["retry_after"] = self.retry_after
        if self.error:
            info["error"] = self.error
        return info


class RateLimiter:
    """
    Transactional sliding-window rate limiter.

    Example:
        If the free tier allows 10 requests per 60s and a user sent 10
        requests starting at 10:00:00, the next one is allowed once the
        first timestamp is more than 60s old.

    Record layout:
        timestamps: list[float]   request times inside the retention horizon
        violation_count: int      monotonic count of denied attempts
        last_violation: float     time of the last denied attempt
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], float] = time.time,
        record_ttl_s: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.record_ttl_s = record_ttl_s

    async def check(self, user_id: str, action: str, tier: str) -> RateLimitDecision:
        """
        Decide allow/deny for one request and record it atomically.

        Args:
            user_id: Authenticated caller id
            action: Action kind (e.g. "chat_message")
            tier: Catalog key re-derived from the user record

        Returns:
            RateLimitDecision (denied on store failure)
        """
        limits = get_tier_limits(tier)
        path = paths.rate_limit(user_id, str(action))

        async def _decide(txn: Transaction) -> RateLimitDecision:
            # Server time only, read per attempt so retries see a fresh window
            now = self.clock()
            window_start = now - limits.window_seconds

            record = await txn.get(path) or {}
            violation_count = int(record.get("violation_count", 0))
            recent = [ts for ts in record.get("timestamps", []) if ts > window_start]

            if len(recent) >= limits.max_requests:
                violation_count += 1
                txn.set(
                    path,
                    {
                        "timestamps": recent,
                        "violation_count": violation_count,
                        "last_violation": now,
                        "updated_at": now,
                    },
                    ttl_s=self.record_ttl_s,
                )
                oldest = min(recent) if recent else now
                retry_after = max(1, math.ceil(oldest + limits.window_seconds - now))
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    violation_count=violation_count,
                    limit=limits.max_requests,
                    window_seconds=limits.window_seconds,
                    retry_after=retry_after,
                )

            recent.append(now)
            updated = {
                "timestamps": recent,
                "violation_count": violation_count,
                "updated_at": now,
            }
            if "last_violation" in record:
                updated["last_violation"] = record["last_violation"]
            txn.set(path, updated, ttl_s=self.record_ttl_s)

            return RateLimitDecision(
                allowed=True,
                remaining=limits.max_requests - len(recent),
                violation_count=violation_count,
                limit=limits.max_requests,
                window_seconds=limits.window_seconds,
            )

        try:
            return await self.store.run_transaction(_decide)
        except TransientStoreError as e:
            # Fail closed: an undecidable request is a denied request
            logger.error(
                "Rate limiter store error, failing closed",
                error=str(e),
                user_id=user_id,
                action=str(action),
                tier=tier,
            )
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                violation_count=0,
                limit=limits.max_requests,
                window_seconds=limits.window_seconds,
                retry_after=1,
                error="rate_limiter_error",
            )


def should_auto_mute(violation_count: int, threshold: int | None = None) -> bool:
    """Repeated chat rate-limit violations escalate to an automatic shadowban."""
    if threshold is None:
        threshold = settings.AUTO_MUTE_THRESHOLD
    return violation_count >= threshold


# Global singleton
rate_limiter = RateLimiter(
    store=document_store,
    record_ttl_s=settings.RATE_LIMIT_RECORD_TTL_S,
)
