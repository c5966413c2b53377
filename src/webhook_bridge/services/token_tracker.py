"""Token usage accounting over rolling windows, persisted to a JSON snapshot.

Usage events arriving on the ``UsageEventBus`` are folded into four periods
(all-time, monthly, weekly, daily), each keyed provider -> model. A period
whose age exceeds its window is reset before the next increment, and again
when a snapshot is loaded, so a long-idle restart never revives a stale
window. An APScheduler interval job writes the snapshot only when dirty.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from webhook_bridge.core.types import UsagePeriod, now_ms
from webhook_bridge.log import get_logger
from webhook_bridge.services.usage_events import UsageEvent, UsageEventBus

logger = get_logger(__name__)

DAY_MS = 86_400_000
PERIOD_WINDOWS_MS: dict[UsagePeriod, int] = {
    UsagePeriod.DAILY: DAY_MS,
    UsagePeriod.WEEKLY: 7 * DAY_MS,
    UsagePeriod.MONTHLY: 30 * DAY_MS,
}
_FIELDS: dict[UsagePeriod, str] = {
    UsagePeriod.ALL_TIME: "all_time",
    UsagePeriod.MONTHLY: "monthly",
    UsagePeriod.WEEKLY: "weekly",
    UsagePeriod.DAILY: "daily",
}


class _Snapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenUsageByModel(_Snapshot):
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: int = 0
    request_count: int = 0


class TokenUsagePeriod(_Snapshot):
    providers: dict[str, dict[str, TokenUsageByModel]] = Field(default_factory=dict)
    started_at: int
    last_updated_at: int

    @classmethod
    def empty(cls, started_at: int) -> TokenUsagePeriod:
        return cls(started_at=started_at, last_updated_at=started_at)


class TokenUsageData(_Snapshot):
    all_time: TokenUsagePeriod
    monthly: TokenUsagePeriod
    weekly: TokenUsagePeriod
    daily: TokenUsagePeriod

    @classmethod
    def empty(cls, started_at: int) -> TokenUsageData:
        return cls(
            all_time=TokenUsagePeriod.empty(started_at),
            monthly=TokenUsagePeriod.empty(started_at),
            weekly=TokenUsagePeriod.empty(started_at),
            daily=TokenUsagePeriod.empty(started_at),
        )

    def period(self, period: UsagePeriod) -> TokenUsagePeriod:
        return getattr(self, _FIELDS[period])


def _apply_resets(data: TokenUsageData, now: int) -> None:
    for period, window in PERIOD_WINDOWS_MS.items():
        if now - data.period(period).started_at >= window:
            setattr(data, _FIELDS[period], TokenUsagePeriod.empty(now))


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


class TokenUsageTracker:
    """Aggregates usage events and persists them to ``data_path``."""

    def __init__(
        self,
        data_path: str | Path,
        bus: Optional[UsageEventBus] = None,
        autosave_interval_seconds: int = 30,
        clock: Callable[[], int] = now_ms,
    ):
        self._data_path = Path(data_path)
        self._bus = bus
        self._autosave_interval = autosave_interval_seconds
        self._clock = clock
        self._data = TokenUsageData.empty(clock())
        self._version = 0
        self._saved_version = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def data_path(self) -> Path:
        return self._data_path

    @property
    def dirty(self) -> bool:
        return self._version != self._saved_version

    # ── persistence ─────────────────────────────────────────────

    async def load(self) -> None:
        """Load a prior snapshot. Missing or malformed files start fresh."""
        try:
            content = await asyncio.to_thread(self._data_path.read_bytes)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("token_usage_load_failed", path=str(self._data_path), error=str(e))
            return

        try:
            loaded = TokenUsageData.model_validate_json(content)
        except ValidationError as e:
            logger.error(
                "token_usage_load_failed",
                path=str(self._data_path),
                error=f"invalid snapshot: {e.error_count()} errors",
            )
            return

        _apply_resets(loaded, self._clock())
        self._data = loaded
        logger.info("token_usage_loaded", path=str(self._data_path))

    async def save(self) -> None:
        """Write the snapshot. Errors are logged and re-raised."""
        version = self._version
        content = self._data.model_dump_json(by_alias=True, indent=2)
        try:
            await asyncio.to_thread(_write_atomic, self._data_path, content)
        except OSError as e:
            logger.error("token_usage_save_failed", path=str(self._data_path), error=str(e))
            raise
        self._saved_version = version

    async def _autosave(self) -> None:
        if not self.dirty:
            return
        try:
            await self.save()
        except OSError:
            pass  # logged by save(); retried on the next tick

    # ── lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        if self._bus is not None:
            self._unsubscribe = self._bus.subscribe(self.handle_usage_event)
        if self._autosave_interval > 0:
            self._scheduler = AsyncIOScheduler()
            self._scheduler.add_job(
                self._autosave,
                IntervalTrigger(seconds=self._autosave_interval),
                id="token_usage_autosave",
                max_instances=1,
                coalesce=True,
            )
            self._scheduler.start()
        logger.info(
            "token_tracker_started",
            path=str(self._data_path),
            autosave_seconds=self._autosave_interval,
        )

    async def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.dirty:
            try:
                await self.save()
            except OSError:
                pass  # logged by save(); nothing left to retry
        logger.info("token_tracker_stopped")

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None or self._scheduler is not None

    # ── aggregation ─────────────────────────────────────────────

    def handle_usage_event(self, event: UsageEvent) -> None:
        provider = event.provider or "unknown"
        model = event.model or "unknown"
        input_tokens = event.input or 0
        output_tokens = event.output or 0
        cache_read = event.cache_read or 0
        cache_write = event.cache_write or 0
        total = (
            event.total
            if event.total is not None
            else input_tokens + output_tokens + cache_read + cache_write
        )

        now = self._clock()
        _apply_resets(self._data, now)

        for field in _FIELDS.values():
            period: TokenUsagePeriod = getattr(self._data, field)
            usage = period.providers.setdefault(provider, {}).setdefault(
                model, TokenUsageByModel()
            )
            usage.input += input_tokens
            usage.output += output_tokens
            usage.cache_read += cache_read
            usage.cache_write += cache_write
            usage.total += total
            usage.request_count += 1
            period.last_updated_at = now

        self._version += 1

    def get_data(self) -> TokenUsageData:
        """Return an independent deep copy of the aggregated data."""
        return self._data.model_copy(deep=True)

    def wire_snapshot(self) -> dict:
        return self._data.model_dump(by_alias=True)

    async def reset(self, period: UsagePeriod | str | None = None) -> None:
        """Clear one period (or all of them) and persist immediately."""
        now = self._clock()
        if period is None:
            self._data = TokenUsageData.empty(now)
        else:
            setattr(self._data, _FIELDS[UsagePeriod(period)], TokenUsagePeriod.empty(now))
        self._version += 1
        await self.save()
