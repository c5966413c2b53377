"""Capabilities the inbound pipeline depends on, passed in explicitly."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol

from webhook_bridge.core.envelope import EnvelopeOptions
from webhook_bridge.messenger.chunking import Chunker, chunk_markdown_text

if TYPE_CHECKING:
    from webhook_bridge.backend.base import ReplyDispatcher
    from webhook_bridge.core.context import InboundContext
    from webhook_bridge.media.store import MediaStore
    from webhook_bridge.policy.access import PairingStore

UsageSummaryLoader = Callable[[], Awaitable[Optional[dict[str, Any]]]]


class SessionStore(Protocol):
    @property
    def store_path(self) -> str: ...

    async def read_updated_at(self, session_key: str) -> Optional[int]: ...

    async def record_inbound(self, session_key: str, ctx: InboundContext) -> None: ...


@dataclass
class BridgeRuntime:
    pairing_store: PairingStore
    session_store: SessionStore
    media_store: MediaStore
    dispatcher: ReplyDispatcher
    chunker: Chunker = chunk_markdown_text
    usage_loader: Optional[UsageSummaryLoader] = None
    envelope: EnvelopeOptions = field(default_factory=EnvelopeOptions)
    agent_id: str = "main"
    use_access_groups: bool = True
