from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from chatguard.middleware.cors import CORSMiddleware
from chatguard.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from chatguard.middleware.request_context import RequestContextMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(CORSMiddleware, allowed_origins=["https://dash.example"])

    @app.get("/limited")
    async def limited(request: Request):
        request.state.rate_limit_info = {
            "allowed": False,
            "limit": 10,
            "remaining": 0,
            "retry_after": 7,
        }
        return {"ip": request.state.ip_address}

    @app.get("/plain")
    async def plain():
        return {"ok": True}

    return app


def test_rate_limit_headers_middleware():
    response = TestClient(_app()).get("/limited")

    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["Retry-After"] == "7"
    assert "X-RateLimit-Reset" in response.headers


def test_no_rate_limit_headers_without_decision():
    response = TestClient(_app()).get("/plain")

    assert "X-RateLimit-Limit" not in response.headers
    assert "X-Request-ID" in response.headers


def test_cors_allowed_and_rejected_origins():
    client = TestClient(_app())

    allowed = client.get("/plain", headers={"Origin": "https://dash.example"})
    assert allowed.headers["Access-Control-Allow-Origin"] == "https://dash.example"

    preflight = client.options(
        "/plain",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
    )
    assert preflight.status_code == 403


def test_forwarded_for_ignored_by_default():
    response = TestClient(_app()).get("/limited", headers={"X-Forwarded-For": "1.2.3.4"})

    assert response.json()["ip"] != "1.2.3.4"
