import asyncio

import pytest

from chatguard.auth.verify import AuthenticatedCaller
from chatguard.db import paths
from chatguard.models.domain.user_domain import Role, SanctionState, UserRecord
from chatguard.services.errors import (
    AccessDenied,
    AccountSuspended,
    AuthRequired,
    NotFound,
    ValidationFailed,
)
from chatguard.services.sanction_service import AUTO_MUTE_REASON, SYSTEM_ACTOR


def _user(store, uid) -> UserRecord:
    return UserRecord.from_document(uid, store.doc(paths.user(uid)))


def _events(store, uid) -> list[dict]:
    return [d for d in store.docs_under("sanction_events/").values() if d["user_id"] == uid]


@pytest.mark.asyncio
async def test_verified_user_requires_caller(sanctions):
    with pytest.raises(AuthRequired):
        await sanctions.get_verified_user(None)


@pytest.mark.asyncio
async def test_verified_user_missing_profile(sanctions):
    with pytest.raises(NotFound):
        await sanctions.get_verified_user(AuthenticatedCaller(uid="ghost"))


@pytest.mark.asyncio
async def test_banned_user_is_suspended(sanctions, seed_user):
    caller = seed_user("u1", banned=True)
    with pytest.raises(AccountSuspended):
        await sanctions.get_verified_user(caller)


@pytest.mark.asyncio
async def test_revoked_token_rejected(sanctions, seed_user, clock):
    caller = seed_user("u1", tokens_valid_after=clock.now)
    assert caller.auth_time < clock.now
    with pytest.raises(AuthRequired):
        await sanctions.get_verified_user(caller)


@pytest.mark.asyncio
async def test_role_comes_from_store_not_claims(sanctions, seed_user):
    seed_user("u1", role="user")
    caller = AuthenticatedCaller(uid="u1", claims={"role": "admin", "admin": True})
    with pytest.raises(AccessDenied):
        await sanctions.require_role(caller, (Role.ADMIN,))


@pytest.mark.asyncio
async def test_auto_mute_is_idempotent(sanctions, seed_user, store):
    seed_user("spammer")

    assert await sanctions.auto_mute("spammer", 5) is True
    assert await sanctions.auto_mute("spammer", 6) is False
    assert await sanctions.auto_mute("spammer", 7) is False

    user = _user(store, "spammer")
    assert user.sanction_state is SanctionState.SHADOWBANNED
    assert user.shadowban_reason == AUTO_MUTE_REASON
    assert user.shadowban_by == SYSTEM_ACTOR

    events = _events(store, "spammer")
    assert len(events) == 1
    assert events[0]["actor_id"] == SYSTEM_ACTOR
    assert events[0]["previous_state"] == "normal"
    assert events[0]["new_state"] == "shadowbanned"


@pytest.mark.asyncio
async def test_concurrent_auto_mutes_transition_once(sanctions, seed_user, store):
    seed_user("spammer")

    results = await asyncio.gather(*(sanctions.auto_mute("spammer", 5 + i) for i in range(5)))

    assert sum(results) == 1
    assert len(_events(store, "spammer")) == 1


@pytest.mark.asyncio
async def test_auto_mute_never_touches_admins(sanctions, seed_user, store):
    seed_user("boss", role="admin")

    assert await sanctions.auto_mute("boss", 10) is False
    assert _user(store, "boss").shadowbanned is False


@pytest.mark.asyncio
async def test_unshadowban_resets_auto_mute_threshold(sanctions, seed_user, store):
    mod = seed_user("mod-1", role="mod")
    seed_user("spammer")
    store.put(paths.rate_limit("spammer", "chat_message"), {"timestamps": [], "violation_count": 5})
    assert await sanctions.auto_mute("spammer", 5) is True

    await sanctions.set_shadowban(mod, "spammer", False)
    assert _user(store, "spammer").auto_mute_baseline == 5

    # One more violation after the reprieve is not a fresh crossing
    assert await sanctions.auto_mute("spammer", 6) is False
    assert _user(store, "spammer").shadowbanned is False

    assert await sanctions.auto_mute("spammer", 10) is True
    assert _user(store, "spammer").shadowbanned is True


@pytest.mark.asyncio
async def test_expired_violation_record_counts_from_zero(sanctions, seed_user, store):
    seed_user("spammer", auto_mute_baseline=8)

    assert await sanctions.auto_mute("spammer", 5) is True


@pytest.mark.asyncio
async def test_unknown_stored_role_and_tier_fall_back(sanctions, seed_user):
    caller = seed_user("u1", role="superuser", subscription_tier="enterprise")

    user = await sanctions.get_verified_user(caller)

    assert user.role is Role.USER
    assert user.subscription_tier.value == "free"
    with pytest.raises(AccessDenied):
        await sanctions.require_role(caller, (Role.ADMIN, Role.MOD))


@pytest.mark.asyncio
async def test_admin_cannot_shadowban_admin(sanctions, seed_user, store):
    admin = seed_user("admin-1", role="admin")
    seed_user("admin-2", role="admin")

    with pytest.raises(AccessDenied):
        await sanctions.set_shadowban(admin, "admin-2", True, "test")

    assert _user(store, "admin-2").shadowbanned is False
    assert _events(store, "admin-2") == []


@pytest.mark.asyncio
async def test_admin_shadowbans_user_with_audit_trail(sanctions, seed_user, store):
    admin = seed_user("admin-1", role="admin")
    seed_user("u1")

    result = await sanctions.set_shadowban(admin, "u1", True, "spamming links")

    assert result["success"] is True
    user = _user(store, "u1")
    assert user.shadowbanned is True
    assert user.shadowban_by == "admin-1"
    [event] = _events(store, "u1")
    assert event["actor_id"] == "admin-1"
    assert event["reason"] == "spamming links"

    listed = await sanctions.list_sanction_events(admin, "u1")
    assert [e["action"] for e in listed] == ["shadowban"]


@pytest.mark.asyncio
async def test_mod_can_shadowban_but_not_ban(sanctions, seed_user):
    mod = seed_user("mod-1", role="mod")
    seed_user("u1")

    await sanctions.set_shadowban(mod, "u1", True)
    with pytest.raises(AccessDenied):
        await sanctions.set_ban(mod, "u1", True)


@pytest.mark.asyncio
async def test_ban_and_unban(sanctions, seed_user, store):
    admin = seed_user("admin-1", role="admin")
    seed_user("u1", shadowbanned=True)

    await sanctions.set_ban(admin, "u1", True, "harassment")
    assert _user(store, "u1").sanction_state is SanctionState.BANNED

    await sanctions.set_ban(admin, "u1", False)
    # Shadowban is orthogonal and survives the unban
    assert _user(store, "u1").sanction_state is SanctionState.SHADOWBANNED

    actions = sorted(e["action"] for e in _events(store, "u1"))
    assert actions == ["ban", "unban"]


@pytest.mark.asyncio
async def test_ban_guards(sanctions, seed_user):
    admin = seed_user("admin-1", role="admin")
    seed_user("admin-2", role="admin")

    with pytest.raises(AccessDenied):
        await sanctions.set_ban(admin, "admin-1", True)
    with pytest.raises(AccessDenied):
        await sanctions.set_ban(admin, "admin-2", True)
    with pytest.raises(NotFound):
        await sanctions.set_ban(admin, "nobody", True)
    with pytest.raises(ValidationFailed):
        await sanctions.set_ban(admin, "admin-2", "yes")


@pytest.mark.asyncio
async def test_set_role(sanctions, seed_user, store):
    admin = seed_user("admin-1", role="admin")
    seed_user("u1")

    await sanctions.set_role(admin, "u1", "mod")
    assert _user(store, "u1").role is Role.MOD

    with pytest.raises(ValidationFailed):
        await sanctions.set_role(admin, "u1", "superuser")
    with pytest.raises(AccessDenied):
        await sanctions.set_role(admin, "admin-1", "user")
