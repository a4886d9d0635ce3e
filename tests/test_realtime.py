import json
from types import SimpleNamespace

import pytest

from meetcute.core import redis as core_redis
from meetcute.core.auth import LOCAL_USER, AuthenticatedUser, get_current_user
from meetcute.core.flags import get_flags
from meetcute.services import realtime


class _FakeRedis:
    def __init__(self, fail_on: str = "") -> None:
        self.published: list[tuple[str, dict]] = []
        self.fail_on = fail_on

    async def publish(self, channel: str, payload: str) -> None:
        if channel == self.fail_on:
            raise ConnectionError("redis went away")
        self.published.append((channel, json.loads(payload)))


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> _FakeRedis:
    monkeypatch.setenv("FF_USE_REDIS", "true")
    get_flags.cache_clear()
    fake = _FakeRedis()
    monkeypatch.setattr(core_redis, "_client", fake)
    return fake


def _match(**overrides) -> SimpleNamespace:
    fields = dict(id="m-1", user1_id="alice", user2_id="bob", confidence_score=0.95, status="pending")
    fields.update(overrides)
    return SimpleNamespace(**fields)


async def test_match_created_reaches_both_owners(fake_redis: _FakeRedis) -> None:
    await realtime.match_created(_match())

    created = [(c, e["data"]) for c, e in fake_redis.published if e["type"] == "match.created"]
    assert created == [
        ("user:alice", {"match_id": "m-1", "confidence": 0.95}),
        ("user:bob", {"match_id": "m-1", "confidence": 0.95}),
    ]
    changed = [c for c, e in fake_redis.published if e["type"] == "notifications.changed"]
    assert changed == ["user:alice", "user:bob"]


async def test_one_failed_channel_does_not_stop_the_rest(fake_redis: _FakeRedis) -> None:
    fake_redis.fail_on = "user:alice"

    sent = await core_redis.notify_users(["alice", "bob", "bob"], "message.created", {"conversation_id": "c-1"})

    assert sent == 1
    assert fake_redis.published == [
        ("user:bob", {"type": "message.created", "data": {"conversation_id": "c-1"}})
    ]


async def test_publishing_is_a_no_op_when_redis_is_off(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRedis()
    monkeypatch.setattr(core_redis, "_client", fake)

    assert await core_redis.notify_users(["alice"], "match.updated") == 0
    assert fake.published == []


async def test_local_user_is_an_admin_when_auth0_is_off() -> None:
    user = await get_current_user("")
    assert user is LOCAL_USER
    assert user.is_admin
    assert not AuthenticatedUser(user_id="alice").is_admin


@pytest.mark.parametrize("header", ["", "Basic abc", "Bearer"])
async def test_malformed_authorization_is_refused(monkeypatch: pytest.MonkeyPatch, header: str) -> None:
    monkeypatch.setenv("FF_USE_AUTH0", "true")
    get_flags.cache_clear()

    with pytest.raises(PermissionError):
        await get_current_user(header)
