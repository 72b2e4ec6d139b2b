"""
HTTP-level tests: routes, error rendering and response headers, with the
services wired to the in-memory store.
"""

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from chatguard.auth.verify import AuthenticatedCaller, optional_caller
from chatguard.db import paths
from chatguard.db.document_store import get_document_store
from chatguard.main import app
from chatguard.services.chat_service import get_chat_service
from chatguard.services.config_service import get_config_service
from chatguard.services.orchestrator import get_orchestrator
from chatguard.services.sanction_service import get_sanction_service
from chatguard.services.user_service import get_user_service


def _caller_from_header(request: Request) -> AuthenticatedCaller | None:
    uid = request.headers.get("x-test-uid")
    return AuthenticatedCaller(uid=uid) if uid else None


@pytest.fixture
def client(store, orchestrator, chats, configs, users, sanctions):
    app.dependency_overrides[optional_caller] = _caller_from_header
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_chat_service] = lambda: chats
    app.dependency_overrides[get_config_service] = lambda: configs
    app.dependency_overrides[get_user_service] = lambda: users
    app.dependency_overrides[get_sanction_service] = lambda: sanctions
    app.dependency_overrides[get_document_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(uid: str) -> dict:
    return {"x-test-uid": uid}


def test_send_message_success_with_headers(client, seed_user, seed_chat):
    seed_user("u1")
    seed_chat()

    response = client.post("/chats/general/messages", json={"message": "hello"}, headers=_as("u1"))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message_id"]
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "X-Request-ID" in response.headers


def test_missing_auth_rejected_before_validation(client):
    response = client.post("/chats/general/messages", json={})

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "Authentication required",
        "code": "auth_required",
    }


def test_banned_user_gets_403(client, seed_user, seed_chat):
    seed_user("u1", banned=True)
    seed_chat()

    response = client.post("/chats/general/messages", json={"message": "hi"}, headers=_as("u1"))

    assert response.status_code == 403
    assert response.json()["code"] == "account_suspended"


def test_rate_limited_response(client, seed_user, seed_chat):
    seed_user("u1")
    seed_chat()
    for i in range(10):
        client.post("/chats/general/messages", json={"message": f"m{i}"}, headers=_as("u1"))

    response = client.post("/chats/general/messages", json={"message": "more"}, headers=_as("u1"))

    assert response.status_code == 429
    body = response.json()
    assert body["code"] == "rate_limited"
    assert body["retry_after"] >= 1
    assert response.headers["Retry-After"] == str(body["retry_after"])
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_toxic_message_rejected(client, seed_user, seed_chat, store):
    seed_user("u1")
    seed_chat()

    response = client.post(
        "/chats/general/messages",
        json={"message": "you are such a f***ing idiot"},
        headers=_as("u1"),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "content_rejected"
    assert store.docs_under("chats/general/messages/") == {}


def test_list_messages_hides_shadowbanned(client, seed_user, seed_chat):
    seed_user("muted", shadowbanned=True)
    seed_user("viewer")
    seed_chat()
    client.post("/chats/general/messages", json={"message": "secret"}, headers=_as("muted"))

    own = client.get("/chats/general/messages", headers=_as("muted")).json()
    other = client.get("/chats/general/messages", headers=_as("viewer")).json()

    assert [m["message"] for m in own["messages"]] == ["secret"]
    assert other["messages"] == []


def test_report_route_accepts_camel_case(client, seed_user, seed_chat):
    seed_user("author")
    seed_user("reporter")
    seed_chat()
    sent = client.post(
        "/chats/general/messages", json={"message": "spammy text"}, headers=_as("author")
    ).json()

    response = client.post(
        "/chats/general/reports",
        json={"messageId": sent["message_id"], "reason": "advertising"},
        headers=_as("reporter"),
    )

    assert response.status_code == 200
    assert response.json()["report_id"]


def test_config_quota_over_http(client, seed_user):
    seed_user("u1")
    for i in range(3):
        ok = client.post(
            "/configs", json={"name": f"c{i}", "configJson": {"i": i}}, headers=_as("u1")
        )
        assert ok.status_code == 200

    response = client.post("/configs", json={"name": "c3", "configJson": {}}, headers=_as("u1"))

    assert response.status_code == 403
    assert response.json()["code"] == "quota_exceeded"

    listed = client.get("/configs", headers=_as("u1")).json()
    assert len(listed["configs"]) == 3

    config_id = listed["configs"][0]["id"]
    assert client.delete(f"/configs/{config_id}", headers=_as("u1")).status_code == 200


def test_settings_route(client, seed_user, store):
    seed_user("u1")

    response = client.put(
        "/settings",
        json={"theme_preference": "custom", "role": "admin"},
        headers=_as("u1"),
    )

    assert response.status_code == 200
    doc = store.doc(paths.user("u1"))
    assert doc["theme_preference"] == "custom"
    assert doc["role"] == "user"


def test_profile_and_username_routes(client, store):
    assert client.post("/users/profile", headers=_as("new-user")).json()["created"] is True

    response = client.post(
        "/users/username", json={"username": "Fresh_Name"}, headers=_as("new-user")
    )

    assert response.status_code == 200
    assert store.doc(paths.user("new-user"))["display_name"] == "Fresh_Name"


def test_admin_shadowban_routes(client, seed_user):
    seed_user("admin-1", role="admin")
    seed_user("admin-2", role="admin")
    seed_user("u1")

    denied = client.post(
        "/admin/shadowban",
        json={"targetUserId": "admin-2", "shadowbanned": True},
        headers=_as("admin-1"),
    )
    assert denied.status_code == 403
    assert denied.json()["code"] == "access_denied"

    ok = client.post(
        "/admin/shadowban",
        json={"targetUserId": "u1", "shadowbanned": True, "reason": "spam"},
        headers=_as("admin-1"),
    )
    assert ok.status_code == 200

    events = client.get("/admin/users/u1/sanctions", headers=_as("admin-1")).json()
    assert [e["new_state"] for e in events["events"]] == ["shadowbanned"]


def test_non_admin_cannot_ban(client, seed_user):
    seed_user("u1")
    seed_user("u2")

    response = client.post(
        "/admin/ban", json={"targetUserId": "u2", "banned": True}, headers=_as("u1")
    )

    assert response.status_code == 403


def test_admin_creates_chat(client, seed_user, store):
    seed_user("admin-1", role="admin")

    response = client.post("/admin/chats", json={"title": "Markets"}, headers=_as("admin-1"))

    assert response.status_code == 200
    assert store.doc(paths.chat(response.json()["chat_id"]))["title"] == "Markets"


NON_OBJECT_BODIES = ['["not", "an", "object"]', '"just a string"', "[1]", "5", "{not json"]

WRITE_ENDPOINTS = [
    ("post", "/chats/general/messages"),
    ("post", "/chats/general/reports"),
    ("post", "/configs"),
    ("put", "/settings"),
]


@pytest.mark.parametrize("method,url", WRITE_ENDPOINTS)
@pytest.mark.parametrize("raw", NON_OBJECT_BODIES)
def test_banned_user_suspended_regardless_of_body(client, seed_user, seed_chat, method, url, raw):
    seed_user("u1", banned=True)
    seed_chat()

    response = client.request(
        method, url, content=raw, headers={**_as("u1"), "content-type": "application/json"}
    )

    assert response.status_code == 403
    assert response.json()["code"] == "account_suspended"


@pytest.mark.parametrize("method,url", WRITE_ENDPOINTS)
@pytest.mark.parametrize("raw", ["[1]", "{not json"])
def test_anonymous_rejected_regardless_of_body(client, method, url, raw):
    response = client.request(method, url, content=raw, headers={"content-type": "application/json"})

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "Authentication required",
        "code": "auth_required",
    }


@pytest.mark.parametrize("method,url", WRITE_ENDPOINTS)
@pytest.mark.parametrize("raw", ["[1]", "{not json"])
def test_non_object_body_fails_validation_after_admission(
    client, seed_user, seed_chat, store, method, url, raw
):
    seed_user("u1")
    seed_chat()

    response = client.request(
        method, url, content=raw, headers={**_as("u1"), "content-type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["code"] == "validation_failed"
    # Rate limit was consumed before validation ran
    assert "X-RateLimit-Remaining" in response.headers


def test_bad_query_parameter_uses_error_envelope(client, seed_user):
    seed_user("u1")

    response = client.get("/chats/general/messages?limit=0", headers=_as("u1"))

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Invalid request",
        "code": "validation_failed",
    }
