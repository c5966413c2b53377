"""Display envelope prepended to inbound text before it reaches the backend.

Example: ``[HTTP Webhook Alice +5m 2026-01-01 10:00 UTC] hi``
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True, slots=True)
class EnvelopeOptions:
    timezone: str = "UTC"
    include_timestamp: bool = True
    include_elapsed: bool = True


def format_elapsed(elapsed_ms: int) -> str:
    seconds = elapsed_ms // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def format_timestamp(timestamp_ms: int, tz_name: str) -> str:
    tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=tz)
    return moment.strftime("%Y-%m-%d %H:%M %Z")


def format_agent_envelope(
    channel: str,
    sender: Optional[str],
    timestamp: Optional[int],
    previous_timestamp: Optional[int],
    body: str,
    options: EnvelopeOptions = EnvelopeOptions(),
) -> str:
    header = [channel]
    if sender:
        header.append(sender)
    if options.include_elapsed and timestamp is not None and previous_timestamp is not None:
        elapsed = timestamp - previous_timestamp
        if elapsed >= 0:
            header.append(f"+{format_elapsed(elapsed)}")
    if options.include_timestamp and timestamp is not None:
        header.append(format_timestamp(timestamp, options.timezone))
    return f"[{' '.join(header)}] {body}"
