"""Typed failures for outbound Messaging API calls."""

from __future__ import annotations


class ApiError(Exception):
    """Base class for every outbound call failure."""

    kind = "api_error"


class InvalidRequest(ApiError):
    """Request failed client-side validation; nothing was sent."""

    kind = "invalid_request"


class TransportError(ApiError):
    """The request never reached the provider (connect failure, TLS, pool timeout)."""

    kind = "transport_error"


class AmbiguousFailure(ApiError):
    """The request may have been delivered, but no response was read.

    Push and multicast are not idempotent on the provider side, so a
    caller should only retry with a dedup key.
    """

    kind = "ambiguous_failure"


class ApiRejected(ApiError):
    """The provider answered with a non-2xx status."""

    kind = "api_rejected"

    def __init__(
        self,
        status_code: int,
        body: str,
        message: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.message = message or "Unknown error"
        self.retry_after = retry_after
        super().__init__(f"API rejected request ({status_code}): {self.message}")

    @property
    def is_credential_fault(self) -> bool:
        """401/403 mean the channel access token is wrong or revoked."""
        return self.status_code in (401, 403)

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_terminal(self) -> bool:
        return 400 <= self.status_code < 500 and not self.is_rate_limited


class InvalidToken(ApiRejected):
    """The reply token is unknown, expired, or already used. Never retry."""

    kind = "invalid_token"
