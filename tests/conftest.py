"""Shared test fixtures for line-relay."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from src.audit.logger import AuditLogger
from src.config import ChannelCredentials
from src.line.client import LineApiClient
from src.webhook.signature import compute_signature

CHANNEL_SECRET = "test_channel_secret"
ACCESS_TOKEN = "test_channel_access_token"
USER_ID = "U1234567890abcdef1234567890abcdef"


@pytest.fixture
def credentials() -> ChannelCredentials:
    return ChannelCredentials.from_values(
        access_token=ACCESS_TOKEN, channel_secret=CHANNEL_SECRET,
    )


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def make_client(credentials: ChannelCredentials):
    """Build a LineApiClient whose HTTP calls are answered by ``handler``."""

    def _create(
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> tuple[LineApiClient, RecordingTransport]:
        transport = RecordingTransport(
            handler or (lambda request: httpx.Response(200, json={})),
        )
        client = LineApiClient(
            credentials, base_url="https://api.example.test/v2/bot", transport=transport,
        )
        return client, transport

    return _create


# --- Factory functions for webhook payloads ---


def sign(body: bytes, secret: str = CHANNEL_SECRET) -> str:
    return compute_signature(body, secret)


def make_source(user_id: str = USER_ID) -> dict[str, Any]:
    return {"type": "user", "userId": user_id}


def make_message_event(
    text: str = "hello",
    reply_token: str | None = "rt1",
    **overrides: Any,
) -> dict[str, Any]:
    event: dict[str, Any] = {
        "type": "message",
        "message": {"type": "text", "id": "m1", "text": text},
        "timestamp": 1700000000000,
        "source": make_source(),
        "mode": "active",
    }
    if reply_token is not None:
        event["replyToken"] = reply_token
    event.update(overrides)
    return event


def make_event(event_type: str, **overrides: Any) -> dict[str, Any]:
    event: dict[str, Any] = {
        "type": event_type,
        "timestamp": 1700000000000,
        "source": make_source(),
        "mode": "active",
    }
    event.update(overrides)
    return event


def make_body(*events: dict[str, Any], destination: str = "U1") -> bytes:
    return json.dumps(
        {"destination": destination, "events": list(events)}, ensure_ascii=False,
    ).encode()
