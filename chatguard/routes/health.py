# chatguard/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from chatguard.config import settings
from chatguard.db.document_store import DocumentStore, get_document_store

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "chatguard"}


@router.get("/readyz")
async def readyz(store: DocumentStore = Depends(get_document_store)):
    """
    Readiness check against the document store.
    """
    checks = {}

    t0 = time.time()
    try:
        store_ok = bool(await store.ping())
        checks["document_store"] = {
            "ok": store_ok,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
    except (RedisError, OSError) as e:
        store_ok = False
        checks["document_store"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    checks["configuration"] = {"ok": True, "environment": settings.environment}

    return {"overall_ok": store_ok, "checks": checks, "timestamp": time.time()}
