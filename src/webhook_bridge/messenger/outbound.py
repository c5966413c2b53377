"""Outbound delivery client: POST normalized replies to the remote webhook."""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp
from yarl import URL

from webhook_bridge.config import OutboundConfig
from webhook_bridge.log import get_logger
from webhook_bridge.messenger.models import ProbeResult, SendResult
from webhook_bridge.messenger.payloads import OutgoingMessage

logger = get_logger(__name__)

TIMEOUT_ERROR = "request timeout"


def _missing_config(config: OutboundConfig) -> Optional[str]:
    if not config.url:
        return "outbound.url not configured"
    if not config.token:
        return "outbound.token not configured"
    return None


class OutboundClient:
    """Sends ``OutgoingMessage`` payloads with bearer auth and a hard timeout."""

    def __init__(self, config: OutboundConfig):
        self._config = config

    @property
    def config(self) -> OutboundConfig:
        return self._config

    async def send(self, message: OutgoingMessage) -> SendResult:
        missing = _missing_config(self._config)
        if missing:
            return SendResult(ok=False, error=missing)

        url = self._config.url
        token = self._config.token
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        logger.debug(
            "outbound_request",
            url=url,
            to=message.to,
            has_token=bool(token),
            token_length=len(token or ""),
            files=len(message.files or []),
        )

        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=message.to_wire(), headers=headers) as response:
                    if not 200 <= response.status < 300:
                        return SendResult(
                            ok=False, error=f"HTTP {response.status}: {response.reason}"
                        )
                    if "application/json" not in response.headers.get("Content-Type", ""):
                        return SendResult(ok=True)
                    try:
                        body = await response.json()
                    except (aiohttp.ContentTypeError, ValueError):
                        return SendResult(ok=True)
        except asyncio.TimeoutError:
            return SendResult(ok=False, error=TIMEOUT_ERROR)
        except aiohttp.ClientError as e:
            return SendResult(ok=False, error=str(e) or e.__class__.__name__)

        message_id = body.get("messageId") if isinstance(body, dict) else None
        return SendResult(ok=True, message_id=str(message_id) if message_id is not None else None)


def probe_outbound(config: OutboundConfig) -> ProbeResult:
    """Validate outbound configuration without sending anything."""
    missing = _missing_config(config)
    if missing:
        return ProbeResult(ok=False, error=missing)
    try:
        url = URL(config.url)
    except (TypeError, ValueError) as e:
        return ProbeResult(ok=False, error=f"invalid outbound.url: {e}")
    if url.scheme not in ("http", "https"):
        return ProbeResult(ok=False, error="outbound.url must use http or https")
    if not url.host:
        return ProbeResult(ok=False, error="invalid outbound.url: missing host")
    return ProbeResult(ok=True)
