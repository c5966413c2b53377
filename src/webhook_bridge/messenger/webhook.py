"""HTTP webhook listener built on aiohttp.web.

Requests are validated in order: path, method, auth, body size, JSON shape.
Accepted requests get ``200 OK`` written and flushed before the registered
message callback is started as a separate task.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from aiohttp import web

from webhook_bridge.core.accounts import ResolvedAccount
from webhook_bridge.core.status import ChannelStatus
from webhook_bridge.core.types import CHANNEL_ID
from webhook_bridge.log import get_logger
from webhook_bridge.messenger.auth import pick_auth_header, validate_bearer_token
from webhook_bridge.messenger.base import MessengerAdapter
from webhook_bridge.messenger.models import SendResult
from webhook_bridge.messenger.outbound import OutboundClient
from webhook_bridge.messenger.payloads import (
    InboundPayload,
    InboundPayloadError,
    OutgoingMessage,
    decode_inbound,
)
from webhook_bridge.services.token_tracker import TokenUsageTracker

logger = get_logger(__name__)

HEALTH_PATH = "/health"
MAX_BODY_BYTES = 1024 * 1024
_READ_CHUNK = 64 * 1024


class PayloadTooLarge(Exception):
    pass


def normalize_webhook_path(path: Optional[str]) -> str:
    trimmed = (path or "").strip()
    if not trimmed:
        return "/"
    with_slash = trimmed if trimmed.startswith("/") else f"/{trimmed}"
    if len(with_slash) > 1 and with_slash.endswith("/"):
        return with_slash[:-1]
    return with_slash


async def read_body(request: web.BaseRequest, limit: int = MAX_BODY_BYTES) -> bytes:
    """Stream the request body, raising ``PayloadTooLarge`` past ``limit`` bytes."""
    if request.content_length is not None and request.content_length > limit:
        raise PayloadTooLarge()
    buffer = bytearray()
    async for chunk in request.content.iter_chunked(_READ_CHUNK):
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise PayloadTooLarge()
    return bytes(buffer)


class WebhookAdapter(MessengerAdapter):
    """Inbound HTTP endpoint plus outbound client for the single webhook account."""

    def __init__(
        self,
        account: ResolvedAccount,
        client: Optional[OutboundClient] = None,
        tracker: Optional[TokenUsageTracker] = None,
        status: Optional[ChannelStatus] = None,
        max_body_bytes: int = MAX_BODY_BYTES,
    ):
        super().__init__(account.account_id)
        self._account = account
        self._inbound = account.config.inbound
        self._path = normalize_webhook_path(self._inbound.path)
        self._client = client or OutboundClient(account.config.outbound)
        self._tracker = tracker
        self._max_body_bytes = max_body_bytes
        self.status = status or ChannelStatus()
        self._runner: Optional[web.AppRunner] = None
        self._tasks: set[asyncio.Task] = set()
        self._started = False

    @property
    def platform_name(self) -> str:
        return CHANNEL_ID

    @property
    def path(self) -> str:
        return self._path

    @property
    def client(self) -> OutboundClient:
        return self._client

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        return app

    async def start(self) -> None:
        if self._started:
            return
        if not self._inbound.token:
            self.status.last_error = "inbound.token not configured"
            logger.error("inbound_token_missing", account_id=self.account_id)
            return

        self._started = True
        if self._tracker is not None:
            await self._tracker.load()
            await self._tracker.start()

        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._inbound.host, self._inbound.port)
        try:
            await site.start()
        except OSError as e:
            self.status.last_error = str(e)
            await self.stop()
            raise
        self.status.mark_started()
        logger.info(
            "webhook_listening",
            account_id=self.account_id,
            host=self._inbound.host,
            port=self._inbound.port,
            path=self._path,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._tracker is not None:
            await self._tracker.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self.status.mark_stopped()
        logger.info("webhook_stopped", account_id=self.account_id)

    async def send_message(self, message: OutgoingMessage) -> SendResult:
        result = await self._client.send(message)
        if result.ok:
            self.status.mark_outbound()
        return result

    # ── request handling ────────────────────────────────────────

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        if request.path == HEALTH_PATH:
            return web.Response(text="ok")
        if request.path != self._path:
            return web.Response(status=404, text="Not Found")
        if request.method != "POST":
            return web.Response(status=405, text="Method Not Allowed", headers={"Allow": "POST"})

        header = pick_auth_header(request.headers)
        if not validate_bearer_token(header, self._inbound.token or ""):
            return web.Response(status=401, text="Unauthorized")

        try:
            raw = await read_body(request, self._max_body_bytes)
        except PayloadTooLarge:
            response = web.Response(status=413, text="payload too large")
            response.force_close()
            return response

        if not raw.strip():
            return web.Response(status=400, text="empty payload")
        try:
            body = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return web.Response(status=400, text="invalid json")

        try:
            payload = decode_inbound(body)
        except InboundPayloadError as e:
            return web.Response(status=400, text=str(e))

        self.status.mark_inbound()
        response = web.Response(text="OK")
        await response.prepare(request)
        await response.write_eof()
        self._spawn(payload)
        return response

    def _spawn(self, payload: InboundPayload) -> None:
        task = asyncio.create_task(self._process(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, payload: InboundPayload) -> None:
        if self._message_callback is None:
            logger.warning("no_message_callback", account_id=self.account_id)
            return
        try:
            await self._message_callback(payload)
        except Exception as e:
            self.status.last_error = str(e)
            logger.error(
                "webhook_processing_failed",
                account_id=self.account_id,
                error=str(e),
                exc_info=True,
            )
