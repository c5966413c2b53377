"""Canonical inbound context handed to the reply dispatcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class InboundContext:
    body: str  # envelope-formatted text
    raw_body: str
    command_body: str
    from_: str  # "<channel>:<sender>"
    to: str  # "<channel>:<account>"
    session_key: str
    account_id: str
    sender_id: str
    provider: str
    surface: str
    originating_channel: str
    originating_to: str
    chat_type: str = "direct"
    conversation_label: Optional[str] = None
    sender_name: Optional[str] = None
    command_authorized: Optional[bool] = None
    message_sid: Optional[str] = None
    media_path: Optional[str] = None
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    media_paths: Optional[list[str]] = None
    media_types: Optional[list[str]] = None
