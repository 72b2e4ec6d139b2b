import asyncio
import copy

import pytest

from chatguard.auth.verify import AuthenticatedCaller
from chatguard.db import paths
from chatguard.db.document_store import (
    DocumentStore,
    Transaction,
    TransactionConflict,
    TransientStoreError,
)
from chatguard.infrastructure.audit.audit_logger import AuditLogger
from chatguard.middleware.rate_limiter import RateLimiter
from chatguard.services.chat_service import ChatService
from chatguard.services.config_service import ConfigService
from chatguard.services.orchestrator import MessageOrchestrator
from chatguard.services.quota_guard import QuotaGuard
from chatguard.services.sanction_service import SanctionService
from chatguard.services.user_service import UserService

START_TIME = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryTransaction(Transaction):
    """Records the version of every key it reads; commit fails if any moved."""

    def __init__(self, store: "InMemoryStore"):
        super().__init__()
        self.store = store
        self.read_versions: dict[tuple[str, str], int] = {}

    async def _read(self, path: str) -> dict | None:
        key = ("doc", path)
        self.read_versions.setdefault(key, self.store.versions.get(key, 0))
        # Yield so concurrent transactions genuinely interleave
        await asyncio.sleep(0)
        doc = self.store.docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def _count(self, index: str) -> int:
        key = ("idx", index)
        self.read_versions.setdefault(key, self.store.versions.get(key, 0))
        await asyncio.sleep(0)
        return len(self.store.indexes.get(index, {}))


class InMemoryStore(DocumentStore):
    """Optimistic-concurrency store with the same retry loop as the Redis one."""

    def __init__(self, **kwargs):
        kwargs.setdefault("max_attempts", 200)
        kwargs.setdefault("base_delay", 0)
        kwargs.setdefault("max_delay", 0)
        kwargs.setdefault("timeout", 10.0)
        super().__init__(**kwargs)
        self.docs: dict[str, dict] = {}
        self.indexes: dict[str, dict[str, float]] = {}
        self.versions: dict[tuple[str, str], int] = {}
        self.unavailable = False
        self.commits = 0

    def _bump(self, kind: str, name: str) -> None:
        key = (kind, name)
        self.versions[key] = self.versions.get(key, 0) + 1

    async def _attempt(self, fn):
        if self.unavailable:
            raise TransientStoreError("Store unavailable: simulated outage")

        txn = InMemoryTransaction(self)
        result = await fn(txn)

        # Commit is atomic: no awaits between validation and apply
        for key, version in txn.read_versions.items():
            if self.versions.get(key, 0) != version:
                raise TransactionConflict()

        for op in txn.writes:
            kind = op[0]
            if kind == "set":
                self.docs[op[1]] = copy.deepcopy(op[2])
                self._bump("doc", op[1])
            elif kind == "delete":
                self.docs.pop(op[1], None)
                self._bump("doc", op[1])
            elif kind == "index_add":
                self.indexes.setdefault(op[1], {})[op[2]] = op[3]
                self._bump("idx", op[1])
            elif kind == "index_remove":
                self.indexes.get(op[1], {}).pop(op[2], None)
                self._bump("idx", op[1])
        self.commits += 1
        return result

    async def get(self, path: str) -> dict | None:
        if self.unavailable:
            raise TransientStoreError("Store unavailable: simulated outage")
        doc = self.docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def get_many(self, paths_: list[str]) -> list[dict | None]:
        return [await self.get(p) for p in paths_]

    async def list_index(self, index, limit, after=None, newest_first=True):
        members = sorted(
            self.indexes.get(index, {}).items(),
            key=lambda item: (item[1], item[0]),
            reverse=newest_first,
        )
        ids = [member for member, _ in members]
        start = ids.index(after) + 1 if after in ids else 0
        return ids[start : start + limit]

    async def ping(self) -> bool:
        return not self.unavailable

    # Test helpers (bypass transactions)

    def put(self, path: str, doc: dict) -> None:
        self.docs[path] = copy.deepcopy(doc)
        self._bump("doc", path)

    def doc(self, path: str) -> dict | None:
        return self.docs.get(path)

    def docs_under(self, prefix: str) -> dict[str, dict]:
        return {p: d for p, d in self.docs.items() if p.startswith(prefix)}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def audit(store):
    return AuditLogger(store)


@pytest.fixture
def sanctions(store, audit, clock):
    return SanctionService(store=store, audit=audit, clock=clock)


@pytest.fixture
def limiter(store, clock):
    return RateLimiter(store=store, clock=clock)


@pytest.fixture
def orchestrator(store, sanctions, limiter, audit, clock):
    return MessageOrchestrator(
        store=store,
        sanctions=sanctions,
        limiter=limiter,
        quota=QuotaGuard(),
        audit=audit,
        clock=clock,
    )


@pytest.fixture
def chats(store, sanctions, clock):
    return ChatService(store=store, sanctions=sanctions, clock=clock)


@pytest.fixture
def configs(store, sanctions, audit):
    return ConfigService(store=store, sanctions=sanctions, audit=audit)


@pytest.fixture
def users(store, clock):
    return UserService(store=store, clock=clock)


@pytest.fixture
def seed_user(store, clock):
    def _seed(uid: str, **fields) -> AuthenticatedCaller:
        doc = {
            "display_name": uid,
            "display_name_lower": uid.lower(),
            "role": "user",
            "subscription_tier": "free",
            "banned": False,
            "shadowbanned": False,
            "created_at": clock.now - 3600,
        }
        doc.update(fields)
        store.put(paths.user(uid), doc)
        return AuthenticatedCaller(uid=uid, auth_time=clock.now - 60)

    return _seed


@pytest.fixture
def seed_chat(store, clock):
    def _seed(chat_id: str = "general") -> str:
        store.put(paths.chat(chat_id), {"title": chat_id, "created_at": clock.now - 3600})
        return chat_id

    return _seed
