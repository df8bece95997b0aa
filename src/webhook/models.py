"""Data models for the webhook dispatch pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class RawRequest:
    """Inbound webhook exactly as received: body bytes before any parsing."""

    body: bytes
    signature: str | None


class DispatchStatus(str, Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"  # nothing to reply to
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of handling one event from a webhook batch."""

    index: int
    event_type: str
    status: DispatchStatus
    error_kind: str | None = None
    error: str | None = None
