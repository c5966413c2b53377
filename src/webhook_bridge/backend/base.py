"""Reply dispatcher interface between the inbound pipeline and a conversational backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from webhook_bridge.core.context import InboundContext


@dataclass
class ReplyPayload:
    """One unit of backend output: text and/or media references (paths or URLs)."""

    text: Optional[str] = None
    media_urls: list[str] = field(default_factory=list)
    media_url: Optional[str] = None


DeliverCallback = Callable[[ReplyPayload], Awaitable[None]]
ErrorCallback = Callable[[Exception, str], None]


class ReplyDispatcher(ABC):
    """Produces replies for an inbound context.

    Implementations call ``deliver`` once per reply block and report failures
    through ``on_error(exc, kind)`` instead of raising.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def dispatch(
        self,
        ctx: InboundContext,
        deliver: DeliverCallback,
        on_error: ErrorCallback,
    ) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources."""
