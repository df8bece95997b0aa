"""Webhook dispatch loop.

Runs each decoded event through the responder and hands the resulting
request to the API client, strictly in payload order. A failed delivery
is logged and audited. It never stops the rest of the batch and never
changes the acknowledgement sent to the provider.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.line.errors import ApiError, ApiRejected
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.events import Event, WebhookPayload, user_id_of
from src.webhook.models import DispatchOutcome, DispatchStatus
from src.webhook.validation import mask_user_id

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.line.client import LineApiClient
    from src.webhook.responder import Responder

logger = logging.getLogger(__name__)

RESPONDER_ERROR = "responder_error"


class WebhookDispatcher:
    """Sequential responder → client loop over one webhook batch."""

    def __init__(
        self,
        client: LineApiClient,
        responder: Responder,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._client = client
        self._responder = responder
        self._audit = audit_logger

    async def dispatch(self, payload: WebhookPayload) -> list[DispatchOutcome]:
        logger.info(
            "Received webhook with %d events for %s",
            len(payload.events), mask_user_id(payload.destination),
        )
        outcomes = [
            await self._dispatch_one(index, event)
            for index, event in enumerate(payload.events)
        ]
        failed = sum(1 for o in outcomes if o.status is DispatchStatus.FAILED)
        if failed:
            logger.warning("%d of %d events failed delivery", failed, len(outcomes))
        return outcomes

    async def _dispatch_one(self, index: int, event: Event) -> DispatchOutcome:
        user = mask_user_id(user_id_of(event))
        try:
            request = self._responder.respond(event)
        except Exception as exc:
            logger.exception("Event %d (%s): responder failed", index, event.type)
            self._audit_log(AuditEvent(
                event_type=AuditEventType.DELIVERY_FAILURE,
                user_id=user,
                action="respond",
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                details={"event_type": event.type, "error_kind": RESPONDER_ERROR},
            ))
            return DispatchOutcome(
                index, event.type, DispatchStatus.FAILED,
                error_kind=RESPONDER_ERROR, error=str(exc),
            )

        if request is None:
            logger.info("Event %d (%s) from %s needs no reply", index, event.type, user)
            self._record(event, user, "skipped")
            return DispatchOutcome(index, event.type, DispatchStatus.SKIPPED)

        try:
            await self._client.deliver(request)
        except ApiError as exc:
            self._log_failure(index, event, user, exc)
            return DispatchOutcome(
                index, event.type, DispatchStatus.FAILED,
                error_kind=exc.kind, error=str(exc),
            )

        self._record(event, user, "success")
        return DispatchOutcome(index, event.type, DispatchStatus.DELIVERED)

    def _log_failure(self, index: int, event: Event, user: str, exc: ApiError) -> None:
        if isinstance(exc, ApiRejected) and exc.is_credential_fault:
            logger.error(
                "Event %d (%s): channel access token rejected (%d); check configuration",
                index, event.type, exc.status_code,
            )
        else:
            logger.error("Event %d (%s) delivery failed: %s", index, event.type, exc)

        details: dict[str, object] = {"event_type": event.type, "error_kind": exc.kind}
        if isinstance(exc, ApiRejected):
            details["status_code"] = exc.status_code
        self._audit_log(AuditEvent(
            event_type=AuditEventType.DELIVERY_FAILURE,
            user_id=user,
            action="reply",
            result="failure",
            risk_level=RiskLevel.MEDIUM,
            details=details,
        ))

    def _record(self, event: Event, user: str, result: str) -> None:
        self._audit_log(AuditEvent(
            event_type=AuditEventType.EVENT_DISPATCH,
            user_id=user,
            action=f"dispatch_{event.type or 'unknown'}",
            result=result,
            risk_level=RiskLevel.INFO,
        ))

    def _audit_log(self, event: AuditEvent) -> None:
        # Best effort: a failed audit write is logged, never raised.
        if not self._audit:
            return
        try:
            self._audit.log(event)
        except OSError:
            logger.exception("Audit write failed for %s", event.action)
