"""Inbound webhook events: typed union and decoder.

The provider adds event and message types over time, so both unions are
closed sets of known variants plus a catch-all (``UnknownEvent`` and
``OtherContent``) that keeps the raw JSON fragment. Unknown input is
carried through, never dropped and never rejected.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_serializer,
)
from pydantic.alias_generators import to_camel


class DecodeError(Exception):
    """Base class for payload decoding failures. Maps to HTTP 400."""

    status_code = 400
    reason = "decode_error"


class InvalidPayload(DecodeError):
    """Body is not parseable JSON, or not a JSON object."""

    reason = "invalid_payload"


class SchemaError(DecodeError):
    """Body is JSON but a required field is missing or has the wrong shape."""

    reason = "schema_error"


class _LineModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# --- Sources ---


class UserSource(_LineModel):
    type: Literal["user"] = "user"
    user_id: str


class GroupSource(_LineModel):
    type: Literal["group"] = "group"
    group_id: str
    user_id: str | None = None


class RoomSource(_LineModel):
    type: Literal["room"] = "room"
    room_id: str
    user_id: str | None = None


Source = Annotated[UserSource | GroupSource | RoomSource, Field(discriminator="type")]


# --- Message contents ---


class TextContent(_LineModel):
    type: Literal["text"] = "text"
    id: str | None = None
    text: str


class StickerContent(_LineModel):
    type: Literal["sticker"] = "sticker"
    id: str | None = None
    package_id: str
    sticker_id: str


class ContentProvider(_LineModel):
    type: str  # "line" or "external"
    original_content_url: str | None = None
    preview_image_url: str | None = None


class ImageContent(_LineModel):
    type: Literal["image"] = "image"
    id: str | None = None
    content_provider: ContentProvider


class OtherContent(_LineModel):
    """A message sub-type this relay does not model (video, audio, location...)."""

    raw_type: str
    id: str | None = None
    raw: dict[str, Any]

    @model_serializer(mode="plain")
    def _serialize(self) -> dict[str, Any]:
        return dict(self.raw)


MessageContent = TextContent | StickerContent | ImageContent | OtherContent

_CONTENT_TYPES: dict[str, type[_LineModel]] = {
    "text": TextContent,
    "sticker": StickerContent,
    "image": ImageContent,
}


def decode_content(fragment: dict[str, Any]) -> MessageContent:
    raw_type = fragment.get("type")
    model = _CONTENT_TYPES.get(raw_type) if isinstance(raw_type, str) else None
    if model is None:
        raw_id = fragment.get("id")
        return OtherContent(
            raw_type=raw_type if isinstance(raw_type, str) else "",
            id=raw_id if isinstance(raw_id, str) else None,
            raw=dict(fragment),
        )
    return model.model_validate(fragment)  # type: ignore[return-value]


# --- Events ---


class _EventBase(_LineModel):
    timestamp: int | None = None
    source: Source
    mode: str | None = None
    webhook_event_id: str | None = None


class MessageEvent(_EventBase):
    type: Literal["message"] = "message"
    reply_token: str | None = None
    message: MessageContent

    @field_validator("message", mode="before")
    @classmethod
    def _decode_message(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return decode_content(value)
        return value


class FollowEvent(_EventBase):
    type: Literal["follow"] = "follow"
    reply_token: str | None = None


class UnfollowEvent(_EventBase):
    type: Literal["unfollow"] = "unfollow"


class JoinEvent(_EventBase):
    type: Literal["join"] = "join"
    reply_token: str | None = None


class LeaveEvent(_EventBase):
    type: Literal["leave"] = "leave"


class Postback(_LineModel):
    data: str
    params: dict[str, str] | None = None


class PostbackEvent(_EventBase):
    type: Literal["postback"] = "postback"
    reply_token: str | None = None
    postback: Postback


class UnknownEvent(_LineModel):
    """An event type this relay does not recognise; ``raw`` is the original JSON."""

    type: str
    raw: dict[str, Any]

    @model_serializer(mode="plain")
    def _serialize(self) -> dict[str, Any]:
        return dict(self.raw)


Event = (
    MessageEvent
    | FollowEvent
    | UnfollowEvent
    | JoinEvent
    | LeaveEvent
    | PostbackEvent
    | UnknownEvent
)

_EVENT_TYPES: dict[str, type[_EventBase]] = {
    "message": MessageEvent,
    "follow": FollowEvent,
    "unfollow": UnfollowEvent,
    "join": JoinEvent,
    "leave": LeaveEvent,
    "postback": PostbackEvent,
}


@dataclass(frozen=True)
class WebhookPayload:
    destination: str
    events: tuple[Event, ...]


def reply_token_of(event: Event) -> str | None:
    """Return the event's reply token, or None for variants that cannot be replied to."""
    if isinstance(event, MessageEvent | FollowEvent | JoinEvent | PostbackEvent):
        return event.reply_token or None
    return None


def user_id_of(event: Event) -> str | None:
    if isinstance(event, UnknownEvent):
        return None
    return event.source.user_id


def decode_event(fragment: Any, index: int = 0) -> Event:
    if not isinstance(fragment, dict):
        raise SchemaError(f"events[{index}] is not an object")

    event_type = fragment.get("type")
    model = _EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if model is None:
        return UnknownEvent(
            type=event_type if isinstance(event_type, str) else "",
            raw=dict(fragment),
        )

    try:
        return model.model_validate(fragment)  # type: ignore[return-value]
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise SchemaError(
            f"events[{index}] ({event_type}): {location}: {first['msg']}"
        ) from exc


def decode_payload(raw_body: bytes) -> WebhookPayload:
    """Decode a webhook body into a ``WebhookPayload``.

    The result holds exactly one event per element of ``events``, in the
    same order.
    """
    try:
        data = json.loads(raw_body)
    except ValueError as exc:
        raise InvalidPayload(f"Body is not valid JSON: {exc}") from exc
    except RecursionError as exc:
        raise InvalidPayload("Body is nested too deeply") from exc
    if not isinstance(data, dict):
        raise InvalidPayload("Body must be a JSON object")

    destination = data.get("destination")
    if not isinstance(destination, str):
        raise SchemaError("Missing or invalid 'destination'")
    events = data.get("events")
    if not isinstance(events, list):
        raise SchemaError("Missing or invalid 'events'")

    return WebhookPayload(
        destination=destination,
        events=tuple(decode_event(item, index) for index, item in enumerate(events)),
    )


def encode_event(event: Event) -> dict[str, Any]:
    """Encode an event back into the provider's camelCase JSON shape."""
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)
