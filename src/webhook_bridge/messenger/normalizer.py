"""Convert inbound payloads into canonical text plus an ordered media list."""

from __future__ import annotations

import base64
import re
from typing import Any, Optional

from yarl import URL

from webhook_bridge.messenger.models import CanonicalContent, ExtractedMedia
from webhook_bridge.messenger.payloads import (
    AssistantMessage,
    FilePart,
    ImagePart,
    InboundPayload,
    MessagesInbound,
    ModelMessage,
    SystemMessage,
    TextPart,
    UserMessage,
)

_DATA_URL_PATTERN = re.compile(r"^data:([^;,]+)?(?:;base64)?,(.*)$", re.DOTALL)


def extract_media_from_part(data: Any, media_type: Optional[str] = None) -> ExtractedMedia | None:
    """Classify a part's data as a remote URL, inline data URL, or raw base64.

    Returns None for shapes that carry no usable media.
    """
    if isinstance(data, URL):
        return ExtractedMedia(url=str(data), media_type=media_type)

    if isinstance(data, str):
        if data.startswith(("http://", "https://")):
            return ExtractedMedia(url=data, media_type=media_type)
        if data.startswith("data:"):
            match = _DATA_URL_PATTERN.match(data)
            if match:
                return ExtractedMedia(
                    data=match.group(2), media_type=match.group(1) or media_type
                )
        return ExtractedMedia(data=data, media_type=media_type)

    if isinstance(data, (bytes, bytearray, memoryview)):
        encoded = base64.b64encode(bytes(data)).decode("ascii")
        return ExtractedMedia(data=encoded, media_type=media_type)

    return None


def _assistant_text(message: AssistantMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    texts = [
        part.get("text", "")
        for part in message.content
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return "\n".join(texts)


def convert_messages(messages: list[ModelMessage]) -> CanonicalContent:
    """Flatten a role-tagged message list.

    System messages are prepended (so the last one processed comes first),
    user text is appended in order, assistant text is appended in brackets and
    tool messages are dropped. Image and file parts become media entries.
    """
    text_parts: list[str] = []
    media: list[ExtractedMedia] = []

    for message in messages:
        if isinstance(message, SystemMessage):
            text_parts.insert(0, f"[System: {message.content}]")
        elif isinstance(message, UserMessage):
            if isinstance(message.content, str):
                text_parts.append(message.content)
                continue
            for part in message.content:
                if isinstance(part, TextPart):
                    text_parts.append(part.text)
                elif isinstance(part, ImagePart):
                    extracted = extract_media_from_part(part.image, part.media_type)
                    if extracted:
                        media.append(extracted)
                elif isinstance(part, FilePart):
                    extracted = extract_media_from_part(part.data, part.media_type)
                    if extracted:
                        media.append(extracted)
        elif isinstance(message, AssistantMessage):
            text_parts.append(f"[Assistant: {_assistant_text(message)}]")
        # tool messages are internal to the caller's agent loop

    return CanonicalContent(text="\n".join(text_parts).strip(), media=media)


def normalize_inbound(payload: InboundPayload) -> CanonicalContent:
    if isinstance(payload, MessagesInbound):
        return convert_messages(payload.messages)
    return CanonicalContent(text=payload.text.strip())
