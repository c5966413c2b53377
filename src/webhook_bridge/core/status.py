"""Channel status tracking and configuration diagnostics."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

from webhook_bridge.core.accounts import ResolvedAccount
from webhook_bridge.core.types import CHANNEL_ID, DmPolicy, now_ms
from webhook_bridge.messenger.models import ProbeResult

MASK = "***"


@dataclass
class ChannelStatus:
    """Mutable runtime state of the webhook channel. Timestamps are epoch ms."""

    running: bool = False
    last_start_at: Optional[int] = None
    last_stop_at: Optional[int] = None
    last_inbound_at: Optional[int] = None
    last_outbound_at: Optional[int] = None
    last_error: Optional[str] = None

    def mark_started(self) -> None:
        self.running = True
        self.last_start_at = now_ms()
        self.last_error = None

    def mark_stopped(self) -> None:
        self.running = False
        self.last_stop_at = now_ms()

    def mark_inbound(self) -> None:
        self.last_inbound_at = now_ms()

    def mark_outbound(self) -> None:
        self.last_outbound_at = now_ms()


@dataclass(frozen=True, slots=True)
class StatusIssue:
    channel: str
    account_id: str
    kind: str
    message: str
    fix: str


def collect_status_issues(account: ResolvedAccount) -> list[StatusIssue]:
    """Missing credentials, each with a fix hint. Disabled accounts report nothing."""
    if not account.enabled:
        return []
    cfg = account.config
    missing = [
        (cfg.inbound.token, "inbound.token"),
        (cfg.outbound.url, "outbound.url"),
        (cfg.outbound.token, "outbound.token"),
    ]
    return [
        StatusIssue(
            channel=CHANNEL_ID,
            account_id=account.account_id,
            kind="config",
            message=f"HTTP webhook {key} is missing.",
            fix=f"Set webhook.{key}.",
        )
        for value, key in missing
        if not value
    ]


def collect_warnings(account: ResolvedAccount) -> list[str]:
    cfg = account.config
    warnings: list[str] = []
    if cfg.dm.policy == DmPolicy.OPEN:
        warnings.append(
            'HTTP webhook DMs are open to anyone. Set webhook.dm.policy="pairing" or "allowlist".'
        )
    if not cfg.inbound.token:
        warnings.append(
            "HTTP webhook inbound.token is not configured. Webhook endpoint will reject all requests."
        )
    if not cfg.outbound.token or not cfg.outbound.url:
        warnings.append(
            "HTTP webhook outbound credentials incomplete. "
            "Set webhook.outbound.url and webhook.outbound.token."
        )
    return warnings


def build_account_snapshot(
    account: ResolvedAccount,
    status: Optional[ChannelStatus] = None,
    probe: Optional[ProbeResult] = None,
) -> dict[str, Any]:
    """Status view of the account with secrets masked."""
    cfg = account.config
    status = status or ChannelStatus()
    return {
        "accountId": account.account_id,
        "name": account.name,
        "enabled": account.enabled,
        "configured": account.configured,
        "credentialSource": account.credential_source,
        "inboundPort": cfg.inbound.port,
        "inboundPath": cfg.inbound.path,
        "inboundToken": MASK if cfg.inbound.token else None,
        "outboundUrl": cfg.outbound.url,
        "outboundToken": MASK if cfg.outbound.token else None,
        "running": status.running,
        "lastStartAt": status.last_start_at,
        "lastStopAt": status.last_stop_at,
        "lastError": status.last_error,
        "lastInboundAt": status.last_inbound_at,
        "lastOutboundAt": status.last_outbound_at,
        "dmPolicy": str(cfg.dm.policy),
        "probe": asdict(probe) if probe else None,
    }
