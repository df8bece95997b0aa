"""Shared Pydantic data models for line-relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# --- Enums ---


class AuditEventType(str, Enum):
    SIGNATURE_FAILURE = "signature_failure"
    PAYLOAD_REJECTED = "payload_rejected"
    EVENT_DISPATCH = "event_dispatch"
    DELIVERY_FAILURE = "delivery_failure"
    OPERATOR_SEND = "operator_send"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    user_id: str | None = None  # always masked before it gets here
    action: str
    result: str  # "success" | "failure" | "skipped" | "rejected"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
