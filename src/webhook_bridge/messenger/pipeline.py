"""Inbound pipeline: normalize, authorize, resolve media, build context, dispatch."""

from __future__ import annotations

import base64
from typing import Any, Callable, Optional

from webhook_bridge.backend.base import ReplyPayload
from webhook_bridge.core.accounts import ResolvedAccount
from webhook_bridge.core.context import InboundContext
from webhook_bridge.core.envelope import format_agent_envelope
from webhook_bridge.core.routing import resolve_agent_route
from webhook_bridge.core.runtime import BridgeRuntime
from webhook_bridge.core.status import ChannelStatus
from webhook_bridge.core.types import CHANNEL_ID, CHANNEL_LABEL, now_ms
from webhook_bridge.log import get_logger
from webhook_bridge.media.store import (
    DEFAULT_CONTENT_TYPE,
    MediaFetchError,
    MediaTooLargeError,
    SavedMedia,
)
from webhook_bridge.messenger.delivery import deliver_reply
from webhook_bridge.messenger.models import ExtractedMedia
from webhook_bridge.messenger.normalizer import normalize_inbound
from webhook_bridge.messenger.outbound import OutboundClient
from webhook_bridge.messenger.payloads import InboundPayload, OutgoingMessage
from webhook_bridge.policy.access import AccessPolicyEngine, should_compute_command_authorized

logger = get_logger(__name__)

MEDIA_SUBDIR = "inbound"
_MEDIA_ERRORS = (MediaFetchError, MediaTooLargeError, OSError, ValueError)

TokensProvider = Callable[[], Optional[dict[str, Any]]]


class InboundPipeline:
    """Processes one decoded inbound payload end to end.

    Runs after the HTTP request has been acknowledged, so every failure here
    is logged rather than returned to the client.
    """

    def __init__(
        self,
        account: ResolvedAccount,
        runtime: BridgeRuntime,
        client: OutboundClient,
        status: Optional[ChannelStatus] = None,
        tokens_provider: Optional[TokensProvider] = None,
    ):
        self._account = account
        self._runtime = runtime
        self._client = client
        self._status = status or ChannelStatus()
        self._tokens_provider = tokens_provider
        self._policy = AccessPolicyEngine(
            account.config.dm,
            runtime.pairing_store,
            notifier=self._send_pairing_reply,
            channel=CHANNEL_ID,
            use_access_groups=runtime.use_access_groups,
        )

    @property
    def policy(self) -> AccessPolicyEngine:
        return self._policy

    async def handle(self, payload: InboundPayload) -> None:
        content = normalize_inbound(payload)
        sender_id = payload.sender_id
        sender_name = payload.sender_name
        text = content.text
        if not sender_id or not text:
            logger.debug("inbound_skipped", reason="missing from or text")
            return

        access = await self._policy.evaluate(
            sender_id, sender_name, should_compute_command_authorized(text)
        )
        if not access.allowed:
            return

        account_id = self._account.account_id
        route = resolve_agent_route(
            CHANNEL_ID, account_id, "dm", sender_id, agent_id=self._runtime.agent_id
        )

        saved = await self._resolve_media(payload.media_url, content.media)
        primary = saved[0] if saved else None

        previous = await self._read_previous(route.session_key)
        timestamp = int(payload.timestamp) if payload.timestamp is not None else now_ms()
        body = format_agent_envelope(
            CHANNEL_LABEL, sender_name, timestamp, previous, text, self._runtime.envelope
        )

        ctx = InboundContext(
            body=body,
            raw_body=text,
            command_body=text,
            from_=f"{CHANNEL_ID}:{sender_id}",
            to=f"{CHANNEL_ID}:{account_id}",
            session_key=route.session_key,
            account_id=route.account_id,
            chat_type="direct",
            conversation_label=sender_name,
            sender_name=sender_name,
            sender_id=sender_id,
            command_authorized=access.command_authorized,
            provider=CHANNEL_ID,
            surface=CHANNEL_ID,
            message_sid=payload.message_id,
            media_path=primary.path if primary else None,
            media_type=primary.content_type if primary else None,
            media_url=primary.path if primary else None,
            media_paths=[m.path for m in saved] or None,
            media_types=[m.content_type for m in saved] or None,
            originating_channel=CHANNEL_ID,
            originating_to=f"{CHANNEL_ID}:{sender_id}",
        )

        await self._record_session(route.session_key, ctx)

        async def deliver(reply: ReplyPayload) -> None:
            await deliver_reply(
                reply,
                to=sender_id,
                client=self._client,
                runtime=self._runtime,
                text_chunk_limit=self._account.config.text_chunk_limit,
                media_max_bytes=self._account.config.media_max_bytes,
                tokens=self._tokens_provider() if self._tokens_provider else None,
                on_sent=self._status.mark_outbound,
            )

        def on_error(exc: Exception, kind: str) -> None:
            logger.error("reply_failed", account_id=account_id, kind=kind, error=str(exc))

        await self._runtime.dispatcher.dispatch(ctx, deliver, on_error)

    # ── media ───────────────────────────────────────────────────

    async def _resolve_media(
        self, media_url: Optional[str], extracted: list[ExtractedMedia]
    ) -> list[SavedMedia]:
        """Persist every media item; one failure never drops the others."""
        saved: list[SavedMedia] = []

        if media_url:
            try:
                saved.append(await self._save_remote(media_url))
            except _MEDIA_ERRORS as e:
                logger.error("inbound_media_download_failed", url=media_url, error=str(e))

        for item in extracted:
            try:
                if item.url:
                    saved.append(await self._save_remote(item.url))
                elif item.data:
                    saved.append(
                        await self._runtime.media_store.save_buffer(
                            base64.b64decode(item.data),
                            item.media_type or DEFAULT_CONTENT_TYPE,
                            MEDIA_SUBDIR,
                            self._account.config.media_max_bytes,
                        )
                    )
            except _MEDIA_ERRORS as e:
                logger.error("inbound_media_failed", error=str(e))

        return saved

    async def _save_remote(self, url: str) -> SavedMedia:
        max_bytes = self._account.config.media_max_bytes
        store = self._runtime.media_store
        fetched = await store.fetch_remote(url, max_bytes=max_bytes)
        return await store.save_buffer(
            fetched.data, fetched.content_type, MEDIA_SUBDIR, max_bytes, fetched.filename
        )

    # ── session metadata ────────────────────────────────────────

    async def _read_previous(self, session_key: str) -> Optional[int]:
        try:
            return await self._runtime.session_store.read_updated_at(session_key)
        except Exception as e:
            logger.warning("session_read_failed", session_key=session_key, error=str(e))
            return None

    async def _record_session(self, session_key: str, ctx: InboundContext) -> None:
        try:
            await self._runtime.session_store.record_inbound(session_key, ctx)
        except Exception as e:
            logger.error("session_meta_update_failed", session_key=session_key, error=str(e))

    # ── pairing ─────────────────────────────────────────────────

    async def _send_pairing_reply(self, sender_id: str, text: str) -> None:
        result = await self._client.send(
            OutgoingMessage(text=text, to=sender_id, timestamp=now_ms())
        )
        if result.ok:
            self._status.mark_outbound()
        else:
            logger.debug("pairing_reply_failed", sender_id=sender_id, error=result.error)
