"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from webhook_bridge.messenger.models import SendResult
from webhook_bridge.messenger.payloads import InboundPayload, OutgoingMessage

MessageCallback = Callable[[InboundPayload], Awaitable[None]]


class MessengerAdapter(ABC):
    """Base class for channel adapters.

    An adapter receives inbound traffic, decodes it into ``InboundPayload``
    and hands it to the callback registered with ``on_message``.
    """

    def __init__(self, account_id: str):
        self.account_id = account_id
        self._message_callback: MessageCallback | None = None

    @abstractmethod
    async def start(self) -> None:
        """Begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving messages. Safe to call more than once."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> SendResult:
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register the callback invoked for every accepted message."""
        self._message_callback = callback

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...
