# chatguard/db/document_store.py
"""
Transactional document store.

All shared mutable state (rate limit records, user sanction state, quota
counts) is mutated through `run_transaction`, which runs a callback as one
optimistic transaction and retries it on conflict.

Usage:
    from chatguard.db.document_store import document_store

    async def _bump(txn):
        doc = await txn.get("counters/x") or {"n": 0}
        txn.set("counters/x", {"n": doc["n"] + 1})
        return doc["n"] + 1

    value = await document_store.run_transaction(_bump)

Design:
- Reads inside a transaction are watched; writes are buffered and committed
  atomically. A concurrent commit to any watched key aborts the attempt.
- The callback may run several times; it must not have side effects outside
  the transaction object.
- Exceptions raised by the callback abort without writing and propagate.
- Retry exhaustion, timeouts and connection errors raise TransientStoreError.
"""

import asyncio
import json
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from redis.exceptions import RedisError, WatchError

from chatguard.config import settings
from chatguard.infrastructure.observability.logging import get_logger
from chatguard.services.redis_client import fast_redis

logger = get_logger(__name__)

T = TypeVar("T")

DOC_PREFIX = "doc:"
INDEX_PREFIX = "idx:"


class TransientStoreError(Exception):
    """Raised when the store could not complete an operation (conflict, timeout, outage)."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class TransactionConflict(Exception):
    """A watched key changed before commit; the attempt must be retried."""


class Transaction:
    """
    Buffered write set plus watched reads for a single attempt.

    Subclasses provide `_read` and `_count` for their backend.
    """

    def __init__(self):
        self.writes: list[tuple] = []
        self._local: dict[str, dict | None] = {}

    async def _read(self, path: str) -> dict | None:
        raise NotImplementedError

    async def _count(self, index: str) -> int:
        raise NotImplementedError

    async def get(self, path: str) -> dict | None:
        if path in self._local:
            doc = self._local[path]
            return dict(doc) if doc is not None else None
        return await self._read(path)

    async def count(self, index: str) -> int:
        """Number of members in a secondary index (watched)."""
        base = await self._count(index)
        for op in self.writes:
            if op[0] == "index_add" and op[1] == index:
                base += 1
            elif op[0] == "index_remove" and op[1] == index:
                base -= 1
        return max(base, 0)

    def set(self, path: str, data: dict, ttl_s: int | None = None) -> None:
        self._local[path] = dict(data)
        self.writes.append(("set", path, dict(data), ttl_s))

    async def update(self, path: str, fields: dict) -> dict:
        """Merge fields into an existing document. Raises KeyError if it does not exist."""
        current = await self.get(path)
        if current is None:
            raise KeyError(path)
        current.update(fields)
        self.set(path, current)
        return current

    def delete(self, path: str) -> None:
        self._local[path] = None
        self.writes.append(("delete", path))

    def index_add(self, index: str, member: str, score: float) -> None:
        self.writes.append(("index_add", index, member, score))

    def index_remove(self, index: str, member: str) -> None:
        self.writes.append(("index_remove", index, member))


class DocumentStore:
    """
    Backend-independent retry loop around optimistic transactions.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        base_delay: float = 0.01,
        max_delay: float = 0.25,
        timeout: float = 5.0,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout

    async def _attempt(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        raise NotImplementedError

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """
        Run `fn` atomically, retrying on conflict.

        Raises:
            TransientStoreError: retries exhausted, timeout or backend failure
        """
        try:
            async with asyncio.timeout(self.timeout):
                return await self._run_with_retry(fn)
        except TimeoutError as e:
            logger.error("Store transaction timed out", timeout=self.timeout)
            raise TransientStoreError(f"Transaction timed out after {self.timeout}s") from e

    async def _run_with_retry(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._attempt(fn)
            except TransactionConflict:
                if attempt == self.max_attempts:
                    break
                delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
                logger.debug("Store transaction conflict, retrying", attempt=attempt, delay=delay)
                await asyncio.sleep(delay * random.uniform(0.5, 1.0))

        logger.error("Store transaction failed after all retries", attempts=self.max_attempts)
        raise TransientStoreError(
            f"Transaction conflicted {self.max_attempts} times", attempts=self.max_attempts
        )

    async def get(self, path: str) -> dict | None:
        raise NotImplementedError

    async def get_many(self, paths: list[str]) -> list[dict | None]:
        raise NotImplementedError

    async def list_index(
        self,
        index: str,
        limit: int,
        after: str | None = None,
        newest_first: bool = True,
    ) -> list[str]:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError


class RedisTransaction(Transaction):
    def __init__(self, pipe):
        super().__init__()
        self.pipe = pipe

    async def _read(self, path: str) -> dict | None:
        key = DOC_PREFIX + path
        await self.pipe.watch(key)
        raw = await self.pipe.get(key)
        return json.loads(raw) if raw else None

    async def _count(self, index: str) -> int:
        key = INDEX_PREFIX + index
        await self.pipe.watch(key)
        return int(await self.pipe.zcard(key))


class RedisDocumentStore(DocumentStore):
    """
    Document store on Redis WATCH/MULTI/EXEC.

    Documents are JSON strings under `doc:{path}`; indexes are sorted sets
    under `idx:{name}` scored by creation time.
    """

    def _client(self):
        if not fast_redis.client:
            raise TransientStoreError("Redis not initialized")
        return fast_redis.client

    async def _attempt(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        try:
            async with self._client().pipeline(transaction=True) as pipe:
                txn = RedisTransaction(pipe)
                result = await fn(txn)
                pipe.multi()
                for op in txn.writes:
                    self._queue(pipe, op)
                await pipe.execute()
                return result
        except WatchError as e:
            raise TransactionConflict() from e
        except RedisError as e:
            logger.error("Redis transaction error", error=str(e), error_type=type(e).__name__)
            raise TransientStoreError(f"Store unavailable: {e}") from e

    @staticmethod
    def _queue(pipe, op: tuple) -> None:
        kind = op[0]
        if kind == "set":
            _, path, data, ttl_s = op
            pipe.set(DOC_PREFIX + path, json.dumps(data), ex=ttl_s)
        elif kind == "delete":
            pipe.delete(DOC_PREFIX + op[1])
        elif kind == "index_add":
            _, index, member, score = op
            pipe.zadd(INDEX_PREFIX + index, {member: score})
        elif kind == "index_remove":
            _, index, member = op
            pipe.zrem(INDEX_PREFIX + index, member)
        else:
            raise ValueError(f"Unknown write op: {kind}")

    async def get(self, path: str) -> dict | None:
        try:
            raw = await self._client().get(DOC_PREFIX + path)
        except RedisError as e:
            raise TransientStoreError(f"Store unavailable: {e}") from e
        return json.loads(raw) if raw else None

    async def get_many(self, paths: list[str]) -> list[dict | None]:
        if not paths:
            return []
        try:
            raws = await self._client().mget([DOC_PREFIX + p for p in paths])
        except RedisError as e:
            raise TransientStoreError(f"Store unavailable: {e}") from e
        return [json.loads(raw) if raw else None for raw in raws]

    async def list_index(
        self,
        index: str,
        limit: int,
        after: str | None = None,
        newest_first: bool = True,
    ) -> list[str]:
        key = INDEX_PREFIX + index
        client = self._client()
        try:
            start = 0
            if after:
                rank = await (client.zrevrank(key, after) if newest_first else client.zrank(key, after))
                if rank is not None:
                    start = int(rank) + 1
            stop = start + limit - 1
            if newest_first:
                return list(await client.zrevrange(key, start, stop))
            return list(await client.zrange(key, start, stop))
        except RedisError as e:
            raise TransientStoreError(f"Store unavailable: {e}") from e

    async def ping(self) -> bool:
        return await fast_redis.ping()


def _build_store() -> RedisDocumentStore:
    return RedisDocumentStore(**settings.get_store_config())


# Global instance
document_store: DocumentStore = _build_store()


def get_document_store() -> DocumentStore:
    """FastAPI dependency returning the process-wide store."""
    return document_store
