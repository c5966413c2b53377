"""Internal message models shared by the webhook pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True, slots=True)
class ExtractedMedia:
    """One media reference pulled out of an inbound message.

    Exactly one of ``url`` (remote reference) or ``data`` (base64 payload) is set.
    """

    url: Optional[str] = None
    data: Optional[str] = None
    media_type: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CanonicalContent:
    text: str
    media: list[ExtractedMedia] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ProbeResult:
    ok: bool
    error: Optional[str] = None
