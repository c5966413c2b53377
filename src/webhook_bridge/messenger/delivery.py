"""Fan a backend reply out into outbound webhook calls.

Media replies become one call per item, each carrying the reply text and a
single base64 file. Text-only replies are chunked and sent chunk by chunk.
Items are sent sequentially; a failure on one never stops the next.
"""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path
from typing import Any, Callable, Optional

from webhook_bridge.backend.base import ReplyPayload
from webhook_bridge.core.runtime import BridgeRuntime, UsageSummaryLoader
from webhook_bridge.core.types import now_ms
from webhook_bridge.log import get_logger
from webhook_bridge.media.store import (
    MediaFetchError,
    MediaTooLargeError,
    mime_type_for_path,
)
from webhook_bridge.messenger.models import SendResult
from webhook_bridge.messenger.outbound import OutboundClient
from webhook_bridge.messenger.payloads import FileAttachment, OutgoingMessage

logger = get_logger(__name__)

DEFAULT_MEDIA_MAX_BYTES = 20 * 1024 * 1024


def is_remote_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def reply_media_list(payload: ReplyPayload) -> list[str]:
    if payload.media_urls:
        return list(payload.media_urls)
    return [payload.media_url] if payload.media_url else []


async def _load_usage(loader: Optional[UsageSummaryLoader]) -> Optional[dict[str, Any]]:
    if loader is None:
        return None
    try:
        return await loader()
    except Exception as e:
        logger.error("usage_summary_failed", error=str(e))
        return None


async def _attachment_for(media_url: str, runtime: BridgeRuntime, max_bytes: int) -> FileAttachment:
    if is_remote_url(media_url):
        fetched = await runtime.media_store.fetch_remote(media_url, max_bytes=max_bytes)
        logger.info("reply_media_downloaded", url=media_url, size=len(fetched.data))
        return FileAttachment(
            data=base64.b64encode(fetched.data).decode("ascii"),
            media_type=fetched.content_type or mime_type_for_path(media_url),
            filename=fetched.filename or "file",
        )

    path = Path(media_url)
    data = await asyncio.to_thread(path.read_bytes)
    media_type = mime_type_for_path(media_url)
    logger.info("reply_local_file", path=media_url, size=len(data), media_type=media_type)
    return FileAttachment(
        data=base64.b64encode(data).decode("ascii"),
        media_type=media_type,
        filename=path.name or "file",
    )


async def deliver_reply(
    payload: ReplyPayload,
    to: str,
    client: OutboundClient,
    runtime: BridgeRuntime,
    text_chunk_limit: int = 4000,
    media_max_bytes: int = DEFAULT_MEDIA_MAX_BYTES,
    tokens: Optional[dict[str, Any]] = None,
    on_sent: Optional[Callable[[], None]] = None,
) -> list[SendResult]:
    """Deliver one reply block to ``to``. Returns the result of every call made."""
    usage = await _load_usage(runtime.usage_loader)
    results: list[SendResult] = []

    async def _send(text: str, files: Optional[list[FileAttachment]] = None) -> None:
        message = OutgoingMessage(
            text=text,
            to=to,
            files=files,
            timestamp=now_ms(),
            usage=usage,
            tokens=tokens,
        )
        result = await client.send(message)
        results.append(result)
        if result.ok:
            if on_sent is not None:
                on_sent()
        else:
            logger.error("outbound_send_failed", to=to, error=result.error)

    media_list = reply_media_list(payload)
    if media_list:
        for media_url in media_list:
            if not media_url:
                logger.error("reply_media_empty_skipped", to=to)
                continue
            try:
                attachment = await _attachment_for(media_url, runtime, media_max_bytes)
            except (OSError, MediaFetchError, MediaTooLargeError) as e:
                logger.error("reply_media_failed", media_url=media_url, error=str(e))
                if payload.text:
                    await _send(payload.text)
                continue
            await _send(payload.text or "", [attachment])
        return results

    text = payload.text or ""
    if not text.strip():
        logger.debug("reply_empty_skipped", to=to)
        return results
    for chunk in runtime.chunker(text, text_chunk_limit):
        await _send(chunk)
    return results
