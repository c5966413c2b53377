"""Anthropic Messages API backend."""

from __future__ import annotations

import asyncio
import base64
from collections import OrderedDict
from pathlib import Path
from typing import Any

from webhook_bridge.backend.base import DeliverCallback, ErrorCallback, ReplyDispatcher, ReplyPayload
from webhook_bridge.config import AnthropicConfig, BackendConfig
from webhook_bridge.core.context import InboundContext
from webhook_bridge.log import get_logger
from webhook_bridge.services.usage_events import UsageEvent, UsageEventBus

logger = get_logger(__name__)

PROVIDER = "anthropic"
MAX_SESSIONS = 500
_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


def _image_blocks(paths: list[str], types: list[str]) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for path, media_type in zip(paths, types):
        if media_type not in _IMAGE_TYPES:
            continue
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            logger.warning("image_read_failed", path=path, error=str(e))
            continue
        blocks.append(
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.b64encode(data).decode("ascii"),
                },
            }
        )
    return blocks


def _response_text(response: Any) -> str:
    return "\n".join(
        block.text for block in response.content if getattr(block, "type", None) == "text"
    ).strip()


class AnthropicDispatcher(ReplyDispatcher):
    """Keeps a short rolling history per session key and replies with one message."""

    def __init__(
        self,
        config: AnthropicConfig,
        backend: BackendConfig,
        usage_bus: UsageEventBus | None = None,
        client: Any = None,
    ):
        if client is None:
            import anthropic

            client = anthropic.AsyncAnthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                max_retries=config.max_retries,
                timeout=config.timeout,
            )
        self._client = client
        self._backend = backend
        self._usage_bus = usage_bus
        self._histories: OrderedDict[str, list[dict[str, Any]]] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def name(self) -> str:
        return PROVIDER

    def history(self, session_key: str) -> list[dict[str, Any]]:
        return list(self._histories.get(session_key, []))

    async def dispatch(
        self,
        ctx: InboundContext,
        deliver: DeliverCallback,
        on_error: ErrorCallback,
    ) -> None:
        lock = self._locks.setdefault(ctx.session_key, asyncio.Lock())
        async with lock:
            try:
                text = await self._complete(ctx)
            except Exception as e:
                logger.error("anthropic_request_failed", session_key=ctx.session_key, error=str(e))
                on_error(e, "final")
                return

        if not text:
            logger.debug("anthropic_empty_reply", session_key=ctx.session_key)
            return
        try:
            await deliver(ReplyPayload(text=text))
        except Exception as e:
            on_error(e, "final")

    async def _complete(self, ctx: InboundContext) -> str:
        history = self._histories.setdefault(ctx.session_key, [])
        self._histories.move_to_end(ctx.session_key)
        while len(self._histories) > MAX_SESSIONS:
            evicted, _ = self._histories.popitem(last=False)
            self._locks.pop(evicted, None)

        images = await asyncio.to_thread(
            _image_blocks, ctx.media_paths or [], ctx.media_types or []
        )
        content: str | list[dict[str, Any]] = ctx.body
        if images:
            content = [{"type": "text", "text": ctx.body}, *images]

        messages = [*history, {"role": "user", "content": content}]
        kwargs: dict[str, Any] = {
            "model": self._backend.model,
            "max_tokens": self._backend.max_tokens,
            "messages": messages,
            "temperature": self._backend.temperature,
        }
        if self._backend.system_prompt:
            kwargs["system"] = self._backend.system_prompt

        logger.debug("api_request", model=self._backend.model, message_count=len(messages))
        response = await self._client.messages.create(**kwargs)
        usage = response.usage
        logger.debug(
            "api_response",
            model=self._backend.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        self._emit_usage(getattr(response, "model", None) or self._backend.model, usage)

        text = _response_text(response)
        # Images are not replayed; later turns keep only the text.
        history.append({"role": "user", "content": ctx.body})
        history.append({"role": "assistant", "content": text or "(no reply)"})
        limit = self._backend.history_turns * 2
        if len(history) > limit:
            del history[: len(history) - limit]
        return text

    def _emit_usage(self, model: str, usage: Any) -> None:
        if self._usage_bus is None:
            return
        self._usage_bus.emit(
            UsageEvent(
                provider=PROVIDER,
                model=model,
                input=usage.input_tokens or 0,
                output=usage.output_tokens or 0,
                cache_read=getattr(usage, "cache_read_input_tokens", None) or 0,
                cache_write=getattr(usage, "cache_creation_input_tokens", None) or 0,
            )
        )

    async def close(self) -> None:
        await self._client.close()
