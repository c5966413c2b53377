"""In-process stream of model usage events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from webhook_bridge.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class UsageEvent:
    provider: Optional[str]
    model: Optional[str]
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: Optional[int] = None


UsageListener = Callable[[UsageEvent], None]


class UsageEventBus:
    """Fan-out of usage events to synchronous listeners."""

    def __init__(self) -> None:
        self._listeners: list[UsageListener] = []

    def subscribe(self, listener: UsageListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: UsageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("usage_listener_error", error=str(e), exc_info=True)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
