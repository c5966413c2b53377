from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from webhook_bridge.backend.anthropic import MAX_SESSIONS, AnthropicDispatcher
from webhook_bridge.backend.echo import EchoDispatcher
from webhook_bridge.config import AnthropicConfig, BackendConfig
from webhook_bridge.core.context import InboundContext
from webhook_bridge.services.usage_events import UsageEventBus


def _ctx(text="hi", sender="u1", **kwargs) -> InboundContext:
    return InboundContext(
        body=f"[HTTP Webhook {sender}] {text}",
        raw_body=text,
        command_body=text,
        from_=f"http-webhook:{sender}",
        to="http-webhook:default",
        session_key=f"agent:main:http-webhook:dm:{sender}",
        account_id="default",
        sender_id=sender,
        provider="http-webhook",
        surface="http-webhook",
        originating_channel="http-webhook",
        originating_to=f"http-webhook:{sender}",
        **kwargs,
    )


def _response(text="hello", cache_read=None):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        model="claude-test",
        stop_reason="end_turn",
        usage=SimpleNamespace(
            input_tokens=10,
            output_tokens=5,
            cache_read_input_tokens=cache_read,
            cache_creation_input_tokens=None,
        ),
    )


def _dispatcher(client, bus=None, **backend):
    return AnthropicDispatcher(
        AnthropicConfig(api_key="test-key"), BackendConfig(**backend), usage_bus=bus, client=client
    )


@pytest.fixture
def client():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_response())
    client.close = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_echo_delivers_raw_body():
    deliver = AsyncMock()
    await EchoDispatcher().dispatch(_ctx("ping"), deliver, MagicMock())
    assert deliver.await_args.args[0].text == "ping"


@pytest.mark.asyncio
async def test_echo_reports_delivery_failure():
    on_error = MagicMock()
    deliver = AsyncMock(side_effect=RuntimeError("down"))
    await EchoDispatcher().dispatch(_ctx(), deliver, on_error)
    exc, kind = on_error.call_args.args
    assert str(exc) == "down"
    assert kind == "final"


@pytest.mark.asyncio
async def test_anthropic_reply_and_usage_event(client):
    bus = UsageEventBus()
    events = []
    bus.subscribe(events.append)
    deliver = AsyncMock()

    await _dispatcher(client, bus, system_prompt="be nice").dispatch(_ctx(), deliver, MagicMock())

    assert deliver.await_args.args[0].text == "hello"
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["system"] == "be nice"
    assert kwargs["messages"][-1] == {"role": "user", "content": "[HTTP Webhook u1] hi"}
    assert len(events) == 1
    assert (events[0].provider, events[0].model) == ("anthropic", "claude-test")
    assert (events[0].input, events[0].output, events[0].cache_read) == (10, 5, 0)


@pytest.mark.asyncio
async def test_anthropic_keeps_bounded_history(client):
    dispatcher = _dispatcher(client, history_turns=2)
    for i in range(4):
        await dispatcher.dispatch(_ctx(f"m{i}"), AsyncMock(), MagicMock())

    history = dispatcher.history("agent:main:http-webhook:dm:u1")
    assert len(history) == 4
    assert history[0]["content"] == "[HTTP Webhook u1] m2"
    assert dispatcher.history("agent:main:http-webhook:dm:other") == []


@pytest.mark.asyncio
async def test_anthropic_sends_images(client, tmp_path):
    image = tmp_path / "a.png"
    image.write_bytes(b"\x89PNG\r\n\x1a\n")
    ctx = _ctx(media_paths=[str(image), str(tmp_path / "doc.pdf")],
               media_types=["image/png", "application/pdf"])

    await _dispatcher(client).dispatch(ctx, AsyncMock(), MagicMock())

    content = client.messages.create.await_args.kwargs["messages"][-1]["content"]
    assert content[0]["type"] == "text"
    assert len(content) == 2
    assert content[1]["source"]["media_type"] == "image/png"


@pytest.mark.asyncio
async def test_anthropic_failure_goes_to_on_error(client):
    client.messages.create = AsyncMock(side_effect=RuntimeError("overloaded"))
    deliver = AsyncMock()
    on_error = MagicMock()

    await _dispatcher(client).dispatch(_ctx(), deliver, on_error)

    deliver.assert_not_awaited()
    assert on_error.call_args.args[1] == "final"


@pytest.mark.asyncio
async def test_anthropic_evicts_oldest_session(client):
    dispatcher = _dispatcher(client)
    for i in range(MAX_SESSIONS + 1):
        await dispatcher._complete(_ctx(sender=f"s{i}"))
    assert dispatcher.history("agent:main:http-webhook:dm:s0") == []
    assert dispatcher.history(f"agent:main:http-webhook:dm:s{MAX_SESSIONS}") != []


@pytest.mark.asyncio
async def test_anthropic_close(client):
    await _dispatcher(client).close()
    client.close.assert_awaited_once()
