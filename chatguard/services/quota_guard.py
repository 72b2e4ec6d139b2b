# chatguard/services/quota_guard.py
"""
Quota Guard - count-based resource ceilings per tier.

Same check-then-write discipline as the rate limiter, but over a standing
count instead of a time window. `try_reserve` runs INSIDE the caller's
transaction: it counts the owner's index (a watched read), so the creation
that follows commits only if no concurrent creation changed the count.

Usage:
    async def _create(txn):
        user = await txn.get(paths.user(uid))
        decision = await quota_guard.try_reserve(txn, uid, "config", tier_of(user))
        if not decision.allowed:
            return decision
        txn.set(...)
        txn.index_add(paths.configs_by_owner_index(uid), config_id, now)
"""

from dataclasses import dataclass

from chatguard.db import paths
from chatguard.db.document_store import Transaction
from chatguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Server-side ceilings per subscription tier. None means unlimited.
QUOTA_LIMITS: dict[str, dict[str, int | None]] = {
    "config": {"free": 3, "pro": None},
}

_OWNER_INDEXES = {
    "config": paths.configs_by_owner_index,
}


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    count: int
    ceiling: int | None


def get_ceiling(resource_kind: str, tier: str) -> int | None:
    """Unknown tiers get the free ceiling."""
    limits = QUOTA_LIMITS[resource_kind]
    return limits[tier] if tier in limits else limits["free"]


class QuotaGuard:
    async def try_reserve(
        self, txn: Transaction, owner_id: str, resource_kind: str, tier: str
    ) -> QuotaDecision:
        """
        Decide whether `owner_id` may create one more `resource_kind`.

        Denial performs no mutation. The caller writes the resource and its
        index entry in the same transaction when allowed.
        """
        ceiling = get_ceiling(resource_kind, tier)
        count = await txn.count(_OWNER_INDEXES[resource_kind](owner_id))

        if ceiling is not None and count >= ceiling:
            logger.info(
                "Quota ceiling reached",
                user_id=owner_id,
                resource_kind=resource_kind,
                tier=tier,
                count=count,
                ceiling=ceiling,
            )
            return QuotaDecision(allowed=False, count=count, ceiling=ceiling)

        return QuotaDecision(allowed=True, count=count, ceiling=ceiling)


quota_guard = QuotaGuard()
