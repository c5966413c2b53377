"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class PairingRequest:
    channel: str
    sender_id: str
    code: str
    created_at: int  # epoch ms
    expires_at: int
    sender_name: Optional[str] = None
