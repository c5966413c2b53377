"""Tests for PairingRepository and SessionRepository over SQLite."""

import asyncio

import pytest

from webhook_bridge.core.context import InboundContext
from webhook_bridge.storage.pairing_repo import CODE_ALPHABET, CODE_LENGTH, PairingRepository
from webhook_bridge.storage.session_repo import SessionRepository

CHANNEL = "http-webhook"
NOW = 1_767_225_600_000


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(db, clock):
    return PairingRepository(db, ttl_minutes=60, clock=clock)


@pytest.mark.asyncio
async def test_upsert_is_idempotent_while_pending(repo):
    code, created = await repo.upsert_pairing_request(CHANNEL, "u9", {"name": "Nine"})
    assert created
    assert len(code) == CODE_LENGTH
    assert set(code) <= set(CODE_ALPHABET)

    again, created_again = await repo.upsert_pairing_request(CHANNEL, "u9")
    assert again == code
    assert not created_again


@pytest.mark.asyncio
async def test_concurrent_first_messages_create_one_request(repo):
    results = await asyncio.gather(
        repo.upsert_pairing_request(CHANNEL, "u9"),
        repo.upsert_pairing_request(CHANNEL, "u9"),
    )
    assert sorted(created for _, created in results) == [False, True]
    assert results[0][0] == results[1][0]
    assert len(await repo.list_pending(CHANNEL)) == 1


@pytest.mark.asyncio
async def test_upsert_losing_insert_race_returns_existing_code(repo, monkeypatch):
    winner, _ = await repo.upsert_pairing_request(CHANNEL, "u9")
    lookup = repo._pending_code
    calls = []

    async def stale_then_fresh(channel, sender_id):
        calls.append(sender_id)
        return None if len(calls) == 1 else await lookup(channel, sender_id)

    monkeypatch.setattr(repo, "_pending_code", stale_then_fresh)
    code, created = await repo.upsert_pairing_request(CHANNEL, "u9")
    assert (code, created) == (winner, False)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_expired_request_is_recreated(repo, clock):
    await repo.upsert_pairing_request(CHANNEL, "u9")
    clock.now += 60 * 60_000
    _, created = await repo.upsert_pairing_request(CHANNEL, "u9")
    assert created
    assert len(await repo.list_pending(CHANNEL)) == 1


@pytest.mark.asyncio
async def test_approve_moves_sender_to_allow_list(repo):
    code, _ = await repo.upsert_pairing_request(CHANNEL, "u9", {"name": "Nine"})
    assert await repo.read_allow_from(CHANNEL) == []

    request = await repo.approve(CHANNEL, code.lower())
    assert request is not None
    assert request.sender_id == "u9"
    assert request.sender_name == "Nine"
    assert await repo.read_allow_from(CHANNEL) == ["u9"]
    assert await repo.list_pending(CHANNEL) == []
    assert await repo.approve(CHANNEL, code) is None


@pytest.mark.asyncio
async def test_expired_code_cannot_be_approved(repo, clock):
    code, _ = await repo.upsert_pairing_request(CHANNEL, "u9")
    clock.now += 61 * 60_000
    assert await repo.approve(CHANNEL, code) is None
    assert await repo.list_pending(CHANNEL) == []
    assert await repo.purge_expired(CHANNEL) == 1


@pytest.mark.asyncio
async def test_list_pending_scoped_by_channel(repo):
    await repo.upsert_pairing_request(CHANNEL, "a")
    await repo.upsert_pairing_request("other", "b")
    pending = await repo.list_pending(CHANNEL)
    assert [p.sender_id for p in pending] == ["a"]


def _ctx(session_key: str, message_sid: str) -> InboundContext:
    return InboundContext(
        body="[HTTP Webhook u1] hi",
        raw_body="hi",
        command_body="hi",
        from_="http-webhook:u1",
        to="http-webhook:default",
        session_key=session_key,
        account_id="default",
        sender_id="u1",
        sender_name="Alice",
        provider="http-webhook",
        surface="http-webhook",
        originating_channel="http-webhook",
        originating_to="http-webhook:u1",
        message_sid=message_sid,
    )


@pytest.mark.asyncio
async def test_session_updated_at_round_trip(db, clock):
    sessions = SessionRepository(db, clock=clock)
    key = "agent:main:http-webhook:dm:u1"
    assert await sessions.read_updated_at(key) is None

    await sessions.record_inbound(key, _ctx(key, "m1"))
    assert await sessions.read_updated_at(key) == NOW

    clock.now += 5_000
    await sessions.record_inbound(key, _ctx(key, "m2"))
    assert await sessions.read_updated_at(key) == NOW + 5_000
    cursor = await db.conn.execute(
        "SELECT created_at, last_message_id FROM sessions WHERE session_key = ?", (key,)
    )
    row = await cursor.fetchone()
    assert (row["created_at"], row["last_message_id"]) == (NOW, "m2")
    assert sessions.store_path == db.path
