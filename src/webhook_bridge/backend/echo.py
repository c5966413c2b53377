"""Echo backend: replies with the inbound text. Useful for wiring checks."""

from __future__ import annotations

from webhook_bridge.backend.base import DeliverCallback, ErrorCallback, ReplyDispatcher, ReplyPayload
from webhook_bridge.core.context import InboundContext


class EchoDispatcher(ReplyDispatcher):
    @property
    def name(self) -> str:
        return "echo"

    async def dispatch(
        self,
        ctx: InboundContext,
        deliver: DeliverCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            await deliver(ReplyPayload(text=ctx.raw_body))
        except Exception as e:
            on_error(e, "final")
