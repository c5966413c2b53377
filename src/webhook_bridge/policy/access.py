"""DM access policy: open / pairing / allowlist / disabled."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Awaitable, Callable, Optional, Protocol

from webhook_bridge.config import WILDCARD, DmConfig
from webhook_bridge.core.types import CHANNEL_ID, DmPolicy
from webhook_bridge.log import get_logger

logger = get_logger(__name__)

PAIRING_APPROVED_MESSAGE = "Your pairing request has been approved. You can now send messages."


class PairingStore(Protocol):
    async def upsert_pairing_request(
        self, channel: str, sender_id: str, meta: Optional[dict] = None
    ) -> tuple[str, bool]: ...

    async def read_allow_from(self, channel: str) -> list[str]: ...


# (sender_id, text) -> None; failures are the notifier's to report.
PairingNotifier = Callable[[str, str], Awaitable[None]]


class AccessDecision(StrEnum):
    ALLOW = "allow"
    PAIRING = "pairing"
    DROP = "drop"


@dataclass(frozen=True)
class AccessResult:
    decision: AccessDecision
    sender_allowed: bool
    effective_allow_from: list[str] = field(default_factory=list)
    command_authorized: Optional[bool] = None
    pairing_code: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision == AccessDecision.ALLOW


def should_compute_command_authorized(text: str) -> bool:
    """Only control commands (leading slash) need command authority."""
    return text.lstrip().startswith("/")


def resolve_command_authorized(
    use_access_groups: bool, authorizers: list[tuple[bool, bool]]
) -> bool:
    """``authorizers`` holds (configured, allowed) pairs."""
    if not use_access_groups:
        return True
    return any(configured and allowed for configured, allowed in authorizers)


def build_pairing_reply(channel: str, id_line: str, code: str) -> str:
    return (
        f"Pairing required before this {channel} sender can chat.\n"
        f"{id_line}\n"
        f"Pairing code: {code}\n"
        f"Ask the operator to run: webhook-bridge pairing approve {code}"
    )


def is_sender_allowed(sender_id: str, allow_from: list[str]) -> bool:
    return WILDCARD in allow_from or sender_id in allow_from


class AccessPolicyEngine:
    def __init__(
        self,
        dm: DmConfig,
        pairing_store: PairingStore,
        notifier: Optional[PairingNotifier] = None,
        channel: str = CHANNEL_ID,
        use_access_groups: bool = True,
    ):
        self._dm = dm
        self._store = pairing_store
        self._notifier = notifier
        self._channel = channel
        self._use_access_groups = use_access_groups

    @property
    def policy(self) -> DmPolicy:
        return self._dm.policy

    async def _read_store(self) -> list[str]:
        try:
            return await self._store.read_allow_from(self._channel)
        except Exception as e:
            logger.warning("allow_from_store_read_failed", channel=self._channel, error=str(e))
            return []

    async def evaluate(
        self,
        sender_id: str,
        sender_name: Optional[str] = None,
        compute_command_auth: bool = False,
    ) -> AccessResult:
        policy = self._dm.policy
        store_allow_from = (
            await self._read_store()
            if policy != DmPolicy.OPEN or compute_command_auth
            else []
        )
        effective = [*self._dm.allow_from, *store_allow_from]
        sender_allowed = is_sender_allowed(sender_id, effective)
        command_authorized = (
            resolve_command_authorized(
                self._use_access_groups, [(len(effective) > 0, sender_allowed)]
            )
            if compute_command_auth
            else None
        )

        def _result(decision: AccessDecision, code: Optional[str] = None) -> AccessResult:
            return AccessResult(
                decision=decision,
                sender_allowed=sender_allowed,
                effective_allow_from=effective,
                command_authorized=command_authorized,
                pairing_code=code,
            )

        if policy == DmPolicy.DISABLED or self._dm.enabled is False:
            logger.debug("dm_blocked", channel=self._channel, sender_id=sender_id, policy="disabled")
            return _result(AccessDecision.DROP)

        if policy == DmPolicy.OPEN or sender_allowed:
            return _result(AccessDecision.ALLOW)

        if policy != DmPolicy.PAIRING:
            logger.debug(
                "dm_unauthorized_sender",
                channel=self._channel,
                sender_id=sender_id,
                policy=str(policy),
            )
            return _result(AccessDecision.DROP)

        code, created = await self._store.upsert_pairing_request(
            self._channel, sender_id, {"name": sender_name}
        )
        if created:
            logger.debug("pairing_request", channel=self._channel, sender_id=sender_id)
            if self._notifier is not None:
                reply = build_pairing_reply(
                    self._channel, f"Your user id: {sender_id}", code
                )
                try:
                    await self._notifier(sender_id, reply)
                except Exception as e:
                    logger.debug("pairing_reply_failed", sender_id=sender_id, error=str(e))
        return _result(AccessDecision.PAIRING, code)
