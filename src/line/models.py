"""Outbound message and delivery request models for the Messaging API."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Provider limits, mirrored here so requests fail fast client-side.
MAX_MESSAGES_PER_REQUEST = 5
MAX_MULTICAST_RECIPIENTS = 500
MAX_TEXT_LENGTH = 5000


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Template actions ---


class MessageAction(_ApiModel):
    type: Literal["message"] = "message"
    label: str
    text: str


class PostbackAction(_ApiModel):
    type: Literal["postback"] = "postback"
    label: str
    data: str
    display_text: str | None = None


class UriAction(_ApiModel):
    type: Literal["uri"] = "uri"
    label: str
    uri: str


Action = Annotated[
    MessageAction | PostbackAction | UriAction, Field(discriminator="type")
]


class ButtonsTemplate(_ApiModel):
    type: Literal["buttons"] = "buttons"
    text: str
    actions: tuple[Action, ...]
    title: str | None = None
    thumbnail_image_url: str | None = None
    image_aspect_ratio: str | None = None
    image_size: str | None = None
    image_background_color: str | None = None


# --- Outbound messages ---


class TextMessage(_ApiModel):
    type: Literal["text"] = "text"
    text: str


class StickerMessage(_ApiModel):
    type: Literal["sticker"] = "sticker"
    package_id: str
    sticker_id: str


class TemplateMessage(_ApiModel):
    type: Literal["template"] = "template"
    alt_text: str
    template: ButtonsTemplate


OutboundMessage = Annotated[
    TextMessage | StickerMessage | TemplateMessage, Field(discriminator="type")
]


def text(value: str) -> TextMessage:
    return TextMessage(text=value)


def sticker(package_id: str, sticker_id: str) -> StickerMessage:
    return StickerMessage(package_id=package_id, sticker_id=sticker_id)


# --- Delivery requests ---


class ReplyRequest(_ApiModel):
    reply_token: str
    messages: tuple[OutboundMessage, ...]
    notification_disabled: bool | None = None


class PushRequest(_ApiModel):
    to: str
    messages: tuple[OutboundMessage, ...]
    notification_disabled: bool | None = None


class MulticastRequest(_ApiModel):
    to: tuple[str, ...]
    messages: tuple[OutboundMessage, ...]
    notification_disabled: bool | None = None

    @field_validator("to", mode="before")
    @classmethod
    def _unique_recipients(cls, value: Any) -> Any:
        # Recipients are a set; keep first-seen order for a stable body.
        if isinstance(value, list | tuple | set | frozenset):
            return tuple(dict.fromkeys(value))
        return value


DeliveryRequest = ReplyRequest | PushRequest | MulticastRequest


# --- Profile ---


class UserProfile(_ApiModel):
    user_id: str
    display_name: str
    picture_url: str | None = None
    status_message: str | None = None
    language: str | None = None
