"""HTTP-level tests for the webhook listener."""

import asyncio
import json

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer, unused_port

from conftest import INBOUND_TOKEN, make_account
from webhook_bridge.messenger.auth import VENDOR_AUTH_HEADER
from webhook_bridge.messenger.payloads import TextInbound
from webhook_bridge.messenger.webhook import (
    MAX_BODY_BYTES,
    PayloadTooLarge,
    WebhookAdapter,
    normalize_webhook_path,
    read_body,
)

AUTH = {"Authorization": f"Bearer {INBOUND_TOKEN}"}


def _adapter(path="/hook", **kwargs) -> WebhookAdapter:
    account = make_account(inbound={"port": 5000, "path": path, "token": INBOUND_TOKEN})
    return WebhookAdapter(account, **kwargs)


@pytest.fixture
def received():
    return []


@pytest.fixture
def adapter(received):
    adapter = _adapter()

    async def on_message(payload):
        received.append(payload)

    adapter.on_message(on_message)
    return adapter


@pytest_asyncio.fixture
async def client(adapter):
    async with TestClient(TestServer(adapter.build_app())) as client:
        yield client


async def _drain(adapter: WebhookAdapter) -> None:
    for _ in range(50):
        if adapter.pending_tasks == 0:
            return
        await asyncio.sleep(0.01)


@pytest.mark.parametrize(
    "raw, expected",
    [(None, "/"), ("", "/"), ("  ", "/"), ("hook", "/hook"), ("/hook/", "/hook"), ("/", "/")],
)
def test_normalize_webhook_path(raw, expected):
    assert normalize_webhook_path(raw) == expected


@pytest.mark.asyncio
async def test_health_needs_no_auth(client):
    response = await client.get("/health")
    assert response.status == 200
    assert await response.text() == "ok"


@pytest.mark.asyncio
async def test_unknown_path_is_404(client):
    response = await client.post("/other", json={"from": "u1", "text": "hi"}, headers=AUTH)
    assert response.status == 404


@pytest.mark.asyncio
async def test_wrong_method_is_405_with_allow_header(client):
    response = await client.get("/hook", headers=AUTH)
    assert response.status == 405
    assert response.headers["Allow"] == "POST"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer wrong-secret"},
        {"Authorization": f"Token {INBOUND_TOKEN}"},
        {"Authorization": f"Bearer  {INBOUND_TOKEN}"},
    ],
)
async def test_bad_auth_is_401(client, received, headers):
    response = await client.post("/hook", json={"from": "u1", "text": "hi"}, headers=headers)
    assert response.status == 401
    assert received == []


@pytest.mark.asyncio
async def test_vendor_header_takes_precedence(client, adapter, received):
    headers = {VENDOR_AUTH_HEADER: f"Bearer {INBOUND_TOKEN}", "Authorization": "Bearer nope"}
    response = await client.post("/hook", json={"from": "u1", "text": "hi"}, headers=headers)
    assert response.status == 200
    await _drain(adapter)
    assert len(received) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, message",
    [
        (b"", "empty payload"),
        (b"   ", "empty payload"),
        (b"{not json", "invalid json"),
        (b'{"text": "hi"}', "missing 'from'"),
        (b'{"from": "u1"}', "either 'text' or 'messages'"),
        (b'{"from": "u1", "text": "   "}', "either 'text' or 'messages'"),
        (b'{"from": "u1", "text": "hi", "timestamp": 1e17}', "timestamp"),
        (b'{"from": "u1", "text": "hi", "timestamp": 1e999}', "timestamp"),
    ],
)
async def test_malformed_bodies_are_400(client, received, body, message):
    response = await client.post("/hook", data=body, headers=AUTH)
    assert response.status == 400
    assert message in await response.text()
    assert received == []


@pytest.mark.asyncio
async def test_accepted_text_message(client, adapter, received):
    response = await client.post("/hook", json={"from": " u1 ", "text": "hi"}, headers=AUTH)
    assert response.status == 200
    assert await response.text() == "OK"
    await _drain(adapter)

    assert len(received) == 1
    payload = received[0]
    assert isinstance(payload, TextInbound)
    assert payload.sender_id == "u1"
    assert adapter.status.last_inbound_at is not None


@pytest.mark.asyncio
async def test_ack_is_sent_before_callback_finishes():
    adapter = _adapter()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(payload):
        started.set()
        await release.wait()

    adapter.on_message(slow)
    async with TestClient(TestServer(adapter.build_app())) as client:
        response = await client.post("/hook", json={"from": "u1", "text": "hi"}, headers=AUTH)
        assert response.status == 200
        await asyncio.wait_for(started.wait(), timeout=1)
        assert adapter.pending_tasks == 1
        release.set()
        await _drain(adapter)
        assert adapter.pending_tasks == 0


@pytest.mark.asyncio
async def test_callback_failure_does_not_change_response():
    adapter = _adapter()

    async def boom(payload):
        raise RuntimeError("pipeline exploded")

    adapter.on_message(boom)
    async with TestClient(TestServer(adapter.build_app())) as client:
        response = await client.post("/hook", json={"from": "u1", "text": "hi"}, headers=AUTH)
        assert response.status == 200
        await _drain(adapter)
    assert adapter.status.last_error == "pipeline exploded"


@pytest.mark.asyncio
async def test_body_over_limit_is_413():
    adapter = _adapter(max_body_bytes=64)
    async with TestClient(TestServer(adapter.build_app())) as client:
        response = await client.post("/hook", data=b"x" * 65, headers=AUTH)
        assert response.status == 413
        assert await response.text() == "payload too large"


@pytest.mark.asyncio
async def test_body_at_limit_is_accepted():
    adapter = _adapter(max_body_bytes=64)
    adapter.on_message(lambda payload: asyncio.sleep(0))
    body = json.dumps({"from": "u1", "text": "hi"}).encode()
    body += b" " * (64 - len(body))
    async with TestClient(TestServer(adapter.build_app())) as client:
        response = await client.post("/hook", data=body, headers=AUTH)
        assert response.status == 200


class _FakeContent:
    def __init__(self, data: bytes):
        self._data = data

    async def iter_chunked(self, size):
        for start in range(0, len(self._data), size):
            yield self._data[start:start + size]


class _FakeRequest:
    def __init__(self, data: bytes, content_length=None):
        self.content = _FakeContent(data)
        self.content_length = content_length


@pytest.mark.asyncio
async def test_read_body_accepts_exactly_one_mebibyte():
    data = b" " * MAX_BODY_BYTES
    assert await read_body(_FakeRequest(data)) == data


@pytest.mark.asyncio
async def test_read_body_rejects_one_byte_over():
    with pytest.raises(PayloadTooLarge):
        await read_body(_FakeRequest(b" " * (MAX_BODY_BYTES + 1)))


@pytest.mark.asyncio
async def test_read_body_trusts_declared_length():
    with pytest.raises(PayloadTooLarge):
        await read_body(_FakeRequest(b"", content_length=MAX_BODY_BYTES + 1))


@pytest.mark.asyncio
async def test_start_without_token_does_not_bind():
    account = make_account(inbound={"port": 5000, "path": "/", "token": None})
    adapter = WebhookAdapter(account)
    await adapter.start()
    assert adapter.status.running is False
    assert adapter.status.last_error == "inbound.token not configured"
    await adapter.stop()


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    port = unused_port()
    account = make_account(
        inbound={"host": "127.0.0.1", "port": port, "path": "/hook", "token": INBOUND_TOKEN}
    )
    adapter = WebhookAdapter(account)
    await adapter.start()
    await adapter.start()
    assert adapter.status.running is True

    await adapter.stop()
    await adapter.stop()
    assert adapter.status.running is False
    assert adapter.status.last_stop_at is not None
