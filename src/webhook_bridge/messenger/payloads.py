"""Wire payloads for the webhook channel.

Inbound requests are decoded into exactly one of two shapes, ``TextInbound``
or ``MessagesInbound``, before any processing happens. Outbound payloads
serialize with the camelCase keys the remote endpoint expects.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel


# Epoch ms; 9999-12-31 00:00 UTC keeps every timezone inside datetime's range.
MAX_TIMESTAMP_MS = 253_402_214_400_000


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------- inbound parts


class TextPart(_WireModel):
    type: Literal["text"]
    text: str


class ImagePart(_WireModel):
    type: Literal["image"]
    image: Any = None
    media_type: Optional[str] = None


class FilePart(_WireModel):
    type: Literal["file"]
    data: Any = None
    media_type: Optional[str] = None


class OtherPart(_WireModel):
    """Any part type the normalizer does not understand; ignored."""

    model_config = ConfigDict(extra="allow")

    type: str


ContentPart = Annotated[
    Union[TextPart, ImagePart, FilePart, OtherPart],
    Field(union_mode="left_to_right"),
]


class SystemMessage(_WireModel):
    role: Literal["system"]
    content: str


class UserMessage(_WireModel):
    role: Literal["user"]
    content: Union[str, list[ContentPart]]


class AssistantMessage(_WireModel):
    role: Literal["assistant"]
    content: Union[str, list[Any]]


class ToolMessage(_WireModel):
    role: Literal["tool"]
    content: Any = None


ModelMessage = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]


# ---------------------------------------------------------------- inbound envelope


class _InboundBase(_WireModel):
    from_: str = Field(alias="from")
    from_name: Optional[str] = None
    media_url: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[float] = Field(
        default=None, ge=0, le=MAX_TIMESTAMP_MS, allow_inf_nan=False
    )

    @property
    def sender_id(self) -> str:
        return self.from_.strip()

    @property
    def sender_name(self) -> str:
        return (self.from_name or "").strip() or self.sender_id


class TextInbound(_InboundBase):
    kind: Literal["text"] = "text"
    text: str


class MessagesInbound(_InboundBase):
    kind: Literal["messages"] = "messages"
    messages: list[ModelMessage]


InboundPayload = Union[TextInbound, MessagesInbound]


class InboundPayloadError(ValueError):
    """Raised when a request body cannot be decoded into an inbound payload."""


_COMMON_FIELDS = ("from", "fromName", "mediaUrl", "messageId", "timestamp")


def decode_inbound(raw: Any) -> InboundPayload:
    """Validate a parsed JSON body and convert it to a canonical inbound shape.

    ``messages`` takes precedence over ``text`` when both are present and
    non-empty.
    """
    if not isinstance(raw, dict):
        raise InboundPayloadError("Invalid message format: body must be a JSON object")

    sender = raw.get("from")
    if not isinstance(sender, str) or not sender.strip():
        raise InboundPayloadError("Invalid message format: missing 'from' field")

    text = raw.get("text")
    messages = raw.get("messages")
    has_text = isinstance(text, str) and bool(text.strip())
    has_messages = isinstance(messages, list) and len(messages) > 0
    if not has_text and not has_messages:
        raise InboundPayloadError(
            "Invalid message format: must provide either 'text' or 'messages' array"
        )

    common = {key: raw[key] for key in _COMMON_FIELDS if key in raw}
    try:
        if has_messages:
            return MessagesInbound.model_validate({**common, "messages": messages})
        return TextInbound.model_validate({**common, "text": text})
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise InboundPayloadError(
            f"Invalid message format: {location}: {first.get('msg', 'invalid value')}"
        ) from e


# ---------------------------------------------------------------- outbound


class FileAttachment(_WireModel):
    data: str  # base64
    media_type: str
    filename: Optional[str] = None


class OutgoingMessage(_WireModel):
    """Payload POSTed to the configured outbound URL."""

    text: str = ""
    to: str
    files: Optional[list[FileAttachment]] = None
    timestamp: int
    usage: Optional[dict[str, Any]] = None
    tokens: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _has_content(self) -> OutgoingMessage:
        if not self.text and not self.files:
            raise ValueError("outgoing message needs text or at least one file")
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
