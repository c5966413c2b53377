"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from webhook_bridge.backend.base import ReplyDispatcher
from webhook_bridge.backend.echo import EchoDispatcher
from webhook_bridge.config import AppConfig
from webhook_bridge.core.accounts import resolve_account
from webhook_bridge.core.runtime import BridgeRuntime
from webhook_bridge.core.status import (
    ChannelStatus,
    build_account_snapshot,
    collect_status_issues,
    collect_warnings,
)
from webhook_bridge.core.types import CHANNEL_ID, now_ms
from webhook_bridge.log import get_logger
from webhook_bridge.media.store import MediaStore
from webhook_bridge.messenger.outbound import OutboundClient, probe_outbound
from webhook_bridge.messenger.payloads import OutgoingMessage
from webhook_bridge.messenger.pipeline import InboundPipeline
from webhook_bridge.messenger.webhook import WebhookAdapter
from webhook_bridge.policy.access import PAIRING_APPROVED_MESSAGE
from webhook_bridge.services.token_tracker import TokenUsageTracker
from webhook_bridge.services.usage_events import UsageEventBus
from webhook_bridge.storage.database import Database
from webhook_bridge.storage.models import PairingRequest
from webhook_bridge.storage.pairing_repo import PairingRepository
from webhook_bridge.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class WebhookBridgeApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, dispatcher: Optional[ReplyDispatcher] = None):
        self.config = config
        self.account = resolve_account(config)
        self.db = Database(config.storage.db_path)
        self.pairing_repo = PairingRepository(self.db, ttl_minutes=config.pairing.ttl_minutes)
        self.session_repo = SessionRepository(self.db)
        self.usage_bus = UsageEventBus()
        self.tracker = TokenUsageTracker(
            config.storage.token_usage_path,
            bus=self.usage_bus,
            autosave_interval_seconds=config.storage.autosave_interval_seconds,
        )
        self.media_store = MediaStore(
            Path(config.storage.media_dir) / CHANNEL_ID / self.account.account_id
        )
        self.client = OutboundClient(self.account.config.outbound)
        self.status = ChannelStatus()
        self.dispatcher = dispatcher or self._create_dispatcher()
        self.runtime = BridgeRuntime(
            pairing_store=self.pairing_repo,
            session_store=self.session_repo,
            media_store=self.media_store,
            dispatcher=self.dispatcher,
            agent_id=config.backend.agent_id,
            use_access_groups=config.commands.use_access_groups,
        )
        self.adapter = WebhookAdapter(
            self.account, client=self.client, tracker=self.tracker, status=self.status
        )
        self.pipeline = InboundPipeline(
            self.account,
            self.runtime,
            self.client,
            status=self.status,
            tokens_provider=self.tracker.wire_snapshot,
        )
        self._started = False
        self._closed = False

    async def start(self) -> None:
        """Initialize storage and start the webhook listener."""
        await self.db.initialize()
        self._started = True
        purged = await self.pairing_repo.purge_expired(CHANNEL_ID)
        if purged:
            logger.info("expired_pairing_requests_purged", count=purged)

        for warning in collect_warnings(self.account):
            logger.warning("config_warning", message=warning)

        if not self.account.enabled:
            logger.warning("account_disabled", account_id=self.account.account_id)
            return

        self.adapter.on_message(self.pipeline.handle)
        await self.adapter.start()
        logger.info(
            "webhook_bridge_started",
            account_id=self.account.account_id,
            backend=self.dispatcher.name,
            dm_policy=str(self.account.config.dm.policy),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._started:
            try:
                await self.adapter.stop()
            except Exception as e:
                logger.error("adapter_stop_error", error=str(e))
        try:
            await self.dispatcher.close()
        except Exception as e:
            logger.error("dispatcher_close_error", error=str(e))
        await self.db.close()
        logger.info("webhook_bridge_stopped")

    async def approve_pairing(self, code: str) -> Optional[PairingRequest]:
        """Approve a pending pairing code and notify the sender."""
        request = await self.pairing_repo.approve(CHANNEL_ID, code)
        if request is None or not self.account.configured:
            return request
        result = await self.adapter.send_message(
            OutgoingMessage(
                text=PAIRING_APPROVED_MESSAGE, to=request.sender_id, timestamp=now_ms()
            )
        )
        if not result.ok:
            logger.warning(
                "pairing_approval_notify_failed",
                sender_id=request.sender_id,
                error=result.error,
            )
        return request

    def snapshot(self) -> dict[str, Any]:
        snapshot = build_account_snapshot(
            self.account, self.status, probe_outbound(self.account.config.outbound)
        )
        snapshot["issues"] = [
            {"kind": i.kind, "message": i.message, "fix": i.fix}
            for i in collect_status_issues(self.account)
        ]
        snapshot["warnings"] = collect_warnings(self.account)
        return snapshot

    def _create_dispatcher(self) -> ReplyDispatcher:
        match self.config.backend.kind:
            case "echo":
                return EchoDispatcher()
            case "anthropic":
                from webhook_bridge.backend.anthropic import AnthropicDispatcher

                if not self.config.anthropic:
                    raise ValueError("backend 'anthropic' requires an 'anthropic' section in config")
                return AnthropicDispatcher(
                    self.config.anthropic, self.config.backend, usage_bus=self.usage_bus
                )
            case _:
                raise ValueError(f"Unknown backend: {self.config.backend.kind}")
