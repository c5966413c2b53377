"""Account resolution. A gateway instance serves exactly one account."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from webhook_bridge.config import AccountConfig, AppConfig
from webhook_bridge.core.types import DEFAULT_ACCOUNT_ID

CredentialSource = Literal["config", "none"]


@dataclass(frozen=True, slots=True)
class ResolvedAccount:
    account_id: str
    name: Optional[str]
    enabled: bool
    config: AccountConfig
    credential_source: CredentialSource

    @property
    def configured(self) -> bool:
        return self.credential_source != "none"


def _credential_source(config: AccountConfig) -> CredentialSource:
    if config.inbound.token and config.outbound.token and config.outbound.url:
        return "config"
    return "none"


def resolve_account(config: AppConfig | AccountConfig) -> ResolvedAccount:
    """Resolve the single webhook account from app or account config."""
    account_cfg = config.webhook if isinstance(config, AppConfig) else config
    name = (account_cfg.name or "").strip() or None
    return ResolvedAccount(
        account_id=DEFAULT_ACCOUNT_ID,
        name=name,
        enabled=account_cfg.enabled,
        config=account_cfg,
        credential_source=_credential_source(account_cfg),
    )
