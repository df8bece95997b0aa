"""Messaging API client for reply, push, multicast and profile lookup.

Every call is a single authenticated HTTPS request with a bounded
timeout. The client never retries: reply tokens are single use, and
push/multicast are not idempotent on the provider side. Failures are
raised as typed ``ApiError`` subclasses so the caller can decide.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from src.config import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT_SECONDS, ChannelCredentials
from src.line.errors import (
    AmbiguousFailure,
    ApiRejected,
    InvalidRequest,
    InvalidToken,
    TransportError,
)
from src.line.models import (
    MAX_MESSAGES_PER_REQUEST,
    MAX_MULTICAST_RECIPIENTS,
    MAX_TEXT_LENGTH,
    DeliveryRequest,
    MulticastRequest,
    OutboundMessage,
    PushRequest,
    ReplyRequest,
    TextMessage,
    UserProfile,
)
from src.webhook.validation import mask_token, mask_user_id

logger = logging.getLogger(__name__)

RETRY_KEY_HEADER = "X-Line-Retry-Key"

# Raised after the request may already have been written to the socket.
_AMBIGUOUS_ERRORS = (
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


class LineApiClient:
    """Async client for the Messaging API endpoints this relay uses."""

    def __init__(
        self,
        credentials: ChannelCredentials,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def reply(
        self,
        reply_token: str,
        messages: Sequence[OutboundMessage],
        notification_disabled: bool | None = None,
    ) -> None:
        """Redeem ``reply_token`` once.

        A token the provider reports as unknown or already used raises
        ``InvalidToken``.
        """
        if not reply_token:
            raise InvalidRequest("reply token must not be empty")
        _check_messages(messages)
        request = ReplyRequest(
            reply_token=reply_token,
            messages=tuple(messages),
            notification_disabled=notification_disabled,
        )
        logger.info(
            "Sending reply: token=%s messages=%d",
            mask_token(reply_token), len(request.messages),
        )
        await self._post("/message/reply", request.to_api(), reply=True)

    async def push(
        self,
        to: str,
        messages: Sequence[OutboundMessage],
        notification_disabled: bool | None = None,
        retry_key: str | None = None,
    ) -> None:
        if not to:
            raise InvalidRequest("push recipient must not be empty")
        _check_messages(messages)
        request = PushRequest(
            to=to, messages=tuple(messages), notification_disabled=notification_disabled,
        )
        logger.info("Sending push: to=%s messages=%d", mask_user_id(to), len(request.messages))
        await self._post("/message/push", request.to_api(), retry_key=retry_key)

    async def multicast(
        self,
        to: Iterable[str],
        messages: Sequence[OutboundMessage],
        notification_disabled: bool | None = None,
        retry_key: str | None = None,
    ) -> None:
        recipients = tuple(dict.fromkeys(to))
        if not recipients:
            raise InvalidRequest("multicast needs at least one recipient")
        if len(recipients) > MAX_MULTICAST_RECIPIENTS:
            raise InvalidRequest(
                f"multicast supports at most {MAX_MULTICAST_RECIPIENTS} recipients, "
                f"got {len(recipients)}"
            )
        if any(not recipient for recipient in recipients):
            raise InvalidRequest("multicast recipient ids must not be empty")
        _check_messages(messages)
        request = MulticastRequest(
            to=recipients, messages=tuple(messages),
            notification_disabled=notification_disabled,
        )
        logger.info(
            "Sending multicast: recipients=%d messages=%d",
            len(request.to), len(request.messages),
        )
        await self._post("/message/multicast", request.to_api(), retry_key=retry_key)

    async def get_profile(self, user_id: str) -> UserProfile:
        if not user_id:
            raise InvalidRequest("user id must not be empty")
        response = await self._send("GET", f"/profile/{user_id}", idempotent=True)
        if not response.is_success:
            raise _rejection(response)
        try:
            return UserProfile.model_validate(response.json())
        except ValueError as exc:
            raise ApiRejected(
                response.status_code, response.text, f"Unreadable profile response: {exc}",
            ) from exc

    async def deliver(self, request: DeliveryRequest) -> None:
        """Execute a ``DeliveryRequest`` built by the responder or an operator."""
        if isinstance(request, ReplyRequest):
            await self.reply(request.reply_token, request.messages, request.notification_disabled)
        elif isinstance(request, PushRequest):
            await self.push(request.to, request.messages, request.notification_disabled)
        elif isinstance(request, MulticastRequest):
            await self.multicast(request.to, request.messages, request.notification_disabled)
        else:
            raise InvalidRequest(f"Unsupported delivery request: {type(request).__name__}")

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        reply: bool = False,
        retry_key: str | None = None,
    ) -> None:
        headers = {RETRY_KEY_HEADER: retry_key} if retry_key else None
        response = await self._send("POST", path, json=body, headers=headers)
        if response.is_success:
            return
        error = _rejection(response)
        if reply and _is_token_rejection(error):
            raise InvalidToken(
                error.status_code, error.body, error.message, error.retry_after,
            )
        raise error

    async def _send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        idempotent: bool = False,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        request_headers = {
            "Authorization": f"Bearer {self._credentials.access_token.get_secret_value()}",
            **(headers or {}),
        }
        try:
            async with httpx.AsyncClient(
                verify=True, timeout=self._timeout, transport=self._transport,
            ) as client:
                return await client.request(method, url, json=json, headers=request_headers)
        except _AMBIGUOUS_ERRORS as exc:
            if idempotent:
                raise TransportError(f"{method} {path} failed: {type(exc).__name__}") from exc
            raise AmbiguousFailure(
                f"{method} {path} outcome unknown: {type(exc).__name__}"
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {path} failed: {type(exc).__name__}") from exc


def _check_messages(messages: Sequence[OutboundMessage]) -> None:
    if not messages:
        raise InvalidRequest("at least one message is required")
    if len(messages) > MAX_MESSAGES_PER_REQUEST:
        raise InvalidRequest(
            f"at most {MAX_MESSAGES_PER_REQUEST} messages per request, got {len(messages)}"
        )
    for message in messages:
        if isinstance(message, TextMessage) and not 0 < len(message.text) <= MAX_TEXT_LENGTH:
            raise InvalidRequest(f"text messages must be 1..{MAX_TEXT_LENGTH} characters")


def _rejection(response: httpx.Response) -> ApiRejected:
    """Build an ``ApiRejected`` from the provider's ``{message, details}`` error body."""
    body = response.text
    message: str | None = None
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = str(data["message"]) if data.get("message") else None
        details = data.get("details")
        if not message and isinstance(details, list):
            message = ", ".join(
                str(item.get("message", "")) for item in details if isinstance(item, dict)
            ) or None

    retry_after: float | None = None
    header = response.headers.get("retry-after")
    if header:
        try:
            retry_after = float(header)
        except ValueError:
            retry_after = None

    return ApiRejected(response.status_code, body, message, retry_after)


def _is_token_rejection(error: ApiRejected) -> bool:
    """True for a 400 that names the reply token in its message or raw body."""
    if error.status_code != 400:
        return False
    # ``body`` holds the raw text, so this also covers details[].property == "replyToken".
    text = f"{error.message} {error.body}".lower()
    return "reply token" in text or "replytoken" in text
