"""Shared fixtures: account configs, in-memory collaborators, temp storage."""

from __future__ import annotations

from typing import Any, Optional

import pytest
import pytest_asyncio

from webhook_bridge.backend.base import ReplyDispatcher
from webhook_bridge.config import AccountConfig
from webhook_bridge.core.accounts import ResolvedAccount, resolve_account
from webhook_bridge.core.runtime import BridgeRuntime
from webhook_bridge.media.store import MediaStore
from webhook_bridge.messenger.models import SendResult
from webhook_bridge.storage.database import Database

INBOUND_TOKEN = "inbound-secret"
OUTBOUND_TOKEN = "outbound-secret"


def make_account(
    policy: str = "allowlist",
    allow_from: Optional[list[str]] = None,
    outbound_url: Optional[str] = "http://127.0.0.1:9/hook",
    **overrides: Any,
) -> ResolvedAccount:
    data: dict[str, Any] = {
        "inbound": {"port": 5000, "path": "/", "token": INBOUND_TOKEN},
        "outbound": {"url": outbound_url, "token": OUTBOUND_TOKEN, "timeoutSeconds": 5},
        "dm": {"policy": policy, "allowFrom": allow_from if allow_from is not None else []},
    }
    data.update(overrides)
    return resolve_account(AccountConfig.model_validate(data))


class FakePairingStore:
    """In-memory pairing store with the repository's upsert semantics."""

    def __init__(self, allow_from: Optional[list[str]] = None, fail_reads: bool = False):
        self.allow_from = list(allow_from or [])
        self.pending: dict[str, str] = {}
        self.fail_reads = fail_reads
        self.read_calls = 0

    async def read_allow_from(self, channel: str) -> list[str]:
        self.read_calls += 1
        if self.fail_reads:
            raise OSError("store unavailable")
        return list(self.allow_from)

    async def upsert_pairing_request(
        self, channel: str, sender_id: str, meta: Optional[dict] = None
    ) -> tuple[str, bool]:
        if sender_id in self.pending:
            return self.pending[sender_id], False
        code = f"CODE{len(self.pending):04d}"
        self.pending[sender_id] = code
        return code, True


class FakeSessionStore:
    def __init__(self, updated_at: Optional[int] = None, fail_writes: bool = False):
        self.updated_at = updated_at
        self.fail_writes = fail_writes
        self.recorded: list[tuple[str, Any]] = []

    @property
    def store_path(self) -> str:
        return ":memory:"

    async def read_updated_at(self, session_key: str) -> Optional[int]:
        return self.updated_at

    async def record_inbound(self, session_key: str, ctx: Any) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        self.recorded.append((session_key, ctx))


class RecordingDispatcher(ReplyDispatcher):
    """Records contexts; optionally replies through ``deliver``."""

    def __init__(self, replies: Optional[list[Any]] = None):
        self.contexts: list[Any] = []
        self.replies = replies or []

    @property
    def name(self) -> str:
        return "recording"

    async def dispatch(self, ctx, deliver, on_error) -> None:
        self.contexts.append(ctx)
        for reply in self.replies:
            await deliver(reply)


class FakeOutboundClient:
    """Records outgoing messages; pops queued results, else succeeds."""

    def __init__(self, results: Optional[list[SendResult]] = None):
        self.sent: list[Any] = []
        self._results = list(results or [])

    async def send(self, message) -> SendResult:
        self.sent.append(message)
        if self._results:
            return self._results.pop(0)
        return SendResult(ok=True, message_id=str(len(self.sent)))


def make_runtime(
    dispatcher: Optional[ReplyDispatcher] = None,
    pairing_store: Any = None,
    session_store: Any = None,
    media_store: Any = None,
    **kwargs: Any,
) -> BridgeRuntime:
    return BridgeRuntime(
        pairing_store=pairing_store or FakePairingStore(),
        session_store=session_store or FakeSessionStore(),
        media_store=media_store or MediaStore("media"),
        dispatcher=dispatcher or RecordingDispatcher(),
        **kwargs,
    )


@pytest.fixture
def fake_pairing_store() -> FakePairingStore:
    return FakePairingStore()


@pytest.fixture
def fake_session_store() -> FakeSessionStore:
    return FakeSessionStore()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "bridge.db"))
    await database.initialize()
    yield database
    await database.close()
