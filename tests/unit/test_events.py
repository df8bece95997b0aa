"""Tests for inbound event decoding."""

from __future__ import annotations

import json

import pytest

from src.webhook.events import (
    FollowEvent,
    GroupSource,
    ImageContent,
    InvalidPayload,
    JoinEvent,
    LeaveEvent,
    MessageEvent,
    OtherContent,
    PostbackEvent,
    RoomSource,
    SchemaError,
    StickerContent,
    TextContent,
    UnfollowEvent,
    UnknownEvent,
    UserSource,
    decode_event,
    decode_payload,
    encode_event,
    reply_token_of,
    user_id_of,
)
from tests.conftest import USER_ID, make_body, make_event, make_message_event


class TestDecodePayload:
    def test_decodes_text_message(self) -> None:
        payload = decode_payload(make_body(make_message_event(text="hello")))
        assert payload.destination == "U1"
        assert len(payload.events) == 1
        event = payload.events[0]
        assert isinstance(event, MessageEvent)
        assert event.reply_token == "rt1"
        assert isinstance(event.message, TextContent)
        assert event.message.text == "hello"
        assert event.source == UserSource(user_id=USER_ID)
        assert event.timestamp == 1700000000000
        assert event.mode == "active"

    def test_empty_events(self) -> None:
        payload = decode_payload(b'{"destination":"U1","events":[]}')
        assert payload.events == ()

    def test_preserves_order_and_count(self) -> None:
        body = make_body(
            make_message_event(text="first", reply_token="a"),
            make_event("postback", replyToken="b", postback={"data": "x=1"}),
            make_event("brand_new_type"),
            make_event("unfollow"),
        )
        payload = decode_payload(body)
        assert [type(e) for e in payload.events] == [
            MessageEvent, PostbackEvent, UnknownEvent, UnfollowEvent,
        ]

    @pytest.mark.parametrize("body", [b"", b"not json", b'{"events": [', b"\xff\xfe\x00"])
    def test_unparsable_body_is_invalid_payload(self, body: bytes) -> None:
        with pytest.raises(InvalidPayload) as exc_info:
            decode_payload(body)
        assert exc_info.value.status_code == 400

    def test_deeply_nested_body_is_invalid_payload(self) -> None:
        depth = 100_000
        body = b'{"destination":"U1","events":[' + b"[" * depth + b"]" * depth + b"]}"
        with pytest.raises(InvalidPayload) as exc_info:
            decode_payload(body)
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("body", [b"[]", b'"text"', b"42", b"null"])
    def test_non_object_is_invalid_payload(self, body: bytes) -> None:
        with pytest.raises(InvalidPayload):
            decode_payload(body)

    def test_missing_events_is_schema_error(self) -> None:
        with pytest.raises(SchemaError) as exc_info:
            decode_payload(b'{"destination":"U1"}')
        assert exc_info.value.status_code == 400

    def test_events_not_a_list_is_schema_error(self) -> None:
        with pytest.raises(SchemaError):
            decode_payload(b'{"destination":"U1","events":{}}')

    def test_missing_destination_is_schema_error(self) -> None:
        with pytest.raises(SchemaError):
            decode_payload(b'{"events":[]}')

    def test_known_event_missing_required_field(self) -> None:
        event = make_message_event()
        del event["message"]
        with pytest.raises(SchemaError, match=r"events\[0\]"):
            decode_payload(make_body(event))

    def test_non_object_event_is_schema_error(self) -> None:
        with pytest.raises(SchemaError):
            decode_payload(b'{"destination":"U1","events":["oops"]}')

    def test_missing_mode_is_tolerated(self) -> None:
        event = make_message_event()
        del event["mode"]
        decoded = decode_payload(make_body(event)).events[0]
        assert isinstance(decoded, MessageEvent)
        assert decoded.mode is None

    def test_missing_timestamp_is_tolerated(self) -> None:
        event = make_message_event()
        del event["timestamp"]
        decoded = decode_payload(make_body(event)).events[0]
        assert isinstance(decoded, MessageEvent)
        assert decoded.timestamp is None

    def test_missing_reply_token_is_tolerated(self) -> None:
        decoded = decode_payload(make_body(make_message_event(reply_token=None))).events[0]
        assert isinstance(decoded, MessageEvent)
        assert decoded.reply_token is None


class TestEventVariants:
    def test_follow(self) -> None:
        event = decode_event(make_event("follow", replyToken="rt"))
        assert isinstance(event, FollowEvent)
        assert reply_token_of(event) == "rt"

    def test_unfollow_has_no_reply_token(self) -> None:
        event = decode_event(make_event("unfollow"))
        assert isinstance(event, UnfollowEvent)
        assert reply_token_of(event) is None

    def test_join_from_group(self) -> None:
        event = decode_event(make_event(
            "join", replyToken="rt", source={"type": "group", "groupId": "G1"},
        ))
        assert isinstance(event, JoinEvent)
        assert event.source == GroupSource(group_id="G1")
        assert user_id_of(event) is None

    def test_leave_from_room(self) -> None:
        event = decode_event(make_event("leave", source={"type": "room", "roomId": "R1"}))
        assert isinstance(event, LeaveEvent)
        assert isinstance(event.source, RoomSource)
        assert reply_token_of(event) is None

    def test_postback(self) -> None:
        event = decode_event(make_event(
            "postback", replyToken="rt",
            postback={"data": "action=buy", "params": {"date": "2024-01-01"}},
        ))
        assert isinstance(event, PostbackEvent)
        assert event.postback.data == "action=buy"
        assert event.postback.params == {"date": "2024-01-01"}

    def test_unknown_event_type_preserved(self) -> None:
        fragment = make_event("videoPlayComplete", videoPlayComplete={"trackingId": "t"})
        event = decode_event(fragment)
        assert isinstance(event, UnknownEvent)
        assert event.type == "videoPlayComplete"
        assert event.raw == fragment
        assert reply_token_of(event) is None

    def test_missing_type_is_unknown(self) -> None:
        event = decode_event({"timestamp": 1})
        assert isinstance(event, UnknownEvent)
        assert event.type == ""


class TestMessageContent:
    def test_sticker(self) -> None:
        event = decode_event(make_message_event(
            message={"type": "sticker", "id": "1", "packageId": "11537", "stickerId": "52002734"},
        ))
        assert isinstance(event, MessageEvent)
        assert event.message == StickerContent(
            id="1", package_id="11537", sticker_id="52002734",
        )

    def test_image(self) -> None:
        event = decode_event(make_message_event(
            message={
                "type": "image",
                "id": "2",
                "contentProvider": {
                    "type": "external",
                    "originalContentUrl": "https://example.com/a.jpg",
                },
            },
        ))
        assert isinstance(event, MessageEvent)
        assert isinstance(event.message, ImageContent)
        assert event.message.content_provider.type == "external"
        assert event.message.content_provider.original_content_url == "https://example.com/a.jpg"

    def test_unknown_message_type_is_other(self) -> None:
        raw = {"type": "location", "id": "3", "latitude": 25.0, "longitude": 121.5}
        event = decode_event(make_message_event(message=raw))
        assert isinstance(event, MessageEvent)
        assert isinstance(event.message, OtherContent)
        assert event.message.raw_type == "location"
        assert event.message.id == "3"
        assert event.message.raw == raw

    def test_sticker_missing_ids_is_schema_error(self) -> None:
        with pytest.raises(SchemaError):
            decode_event(make_message_event(message={"type": "sticker"}))


class TestEncodeEvent:
    @pytest.mark.parametrize("fragment", [
        make_message_event(text="hi", webhookEventId="01H"),
        make_message_event(message={"type": "sticker", "packageId": "1", "stickerId": "2"}),
        make_message_event(message={"type": "audio", "id": "9", "duration": 60000}),
        make_event("follow", replyToken="rt"),
        make_event("unfollow"),
        make_event("join", replyToken="rt", source={"type": "group", "groupId": "G", "userId": "U"}),
        make_event("leave", source={"type": "room", "roomId": "R"}),
        make_event("postback", replyToken="rt", postback={"data": "d"}),
        make_event("beacon", beacon={"hwid": "abc"}),
    ])
    def test_round_trip_preserves_fields(self, fragment: dict) -> None:
        event = decode_event(fragment)
        encoded = encode_event(event)
        assert decode_event(encoded) == event

    def test_encodes_camel_case_without_nulls(self) -> None:
        event = decode_event(make_message_event(reply_token="rt9"))
        encoded = encode_event(event)
        assert encoded["replyToken"] == "rt9"
        assert encoded["source"] == {"type": "user", "userId": USER_ID}
        assert "webhookEventId" not in encoded
        json.dumps(encoded)

    def test_unknown_event_encodes_to_raw(self) -> None:
        fragment = make_event("membered", joined={"members": []})
        assert encode_event(decode_event(fragment)) == fragment
