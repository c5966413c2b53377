"""Shared types and enumerations."""

from __future__ import annotations

import time
from enum import StrEnum

CHANNEL_ID = "http-webhook"
CHANNEL_LABEL = "HTTP Webhook"
DEFAULT_ACCOUNT_ID = "default"


class DmPolicy(StrEnum):
    OPEN = "open"
    PAIRING = "pairing"
    ALLOWLIST = "allowlist"
    DISABLED = "disabled"


class UsagePeriod(StrEnum):
    ALL_TIME = "allTime"
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
