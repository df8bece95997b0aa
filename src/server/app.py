"""FastAPI application exposing the LINE webhook endpoint."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.config import ChannelCredentials, Settings
from src.line.client import LineApiClient
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.dispatcher import WebhookDispatcher
from src.webhook.events import DecodeError, decode_payload
from src.webhook.models import RawRequest
from src.webhook.responder import Responder
from src.webhook.signature import SIGNATURE_HEADER, VerificationError, verify_signature

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook"
MAX_BODY_SIZE = 10 * 1024 * 1024  # 10MB


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    audit_logger = (
        AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
    )
    client = LineApiClient(
        settings.credentials,
        base_url=settings.api_base_url,
        timeout=settings.api_timeout,
    )
    return create_app(settings.credentials, client=client, audit_logger=audit_logger)


def create_app(
    credentials: ChannelCredentials,
    client: LineApiClient | None = None,
    responder: Responder | None = None,
    audit_logger: AuditLogger | None = None,
    max_body_size: int = MAX_BODY_SIZE,
) -> FastAPI:
    """Create the webhook app: signature gate, decoder, then dispatch."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    dispatcher = WebhookDispatcher(
        client or LineApiClient(credentials),
        responder or Responder(),
        audit_logger=audit_logger,
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(WEBHOOK_PATH)
    async def webhook(request: Request) -> Response:
        source_ip = request.client.host if request.client else None
        body = await _read_body(request, max_body_size)
        if body is None:
            logger.warning("Rejected oversized webhook from %s", source_ip)
            _audit_rejection(
                audit_logger, AuditEventType.PAYLOAD_REJECTED, source_ip, "payload_too_large",
            )
            return JSONResponse({"error": "Payload too large"}, status_code=413)

        raw = RawRequest(body=body, signature=request.headers.get(SIGNATURE_HEADER))

        # Verify the untouched bytes before anything parses them.
        try:
            verify_signature(raw.body, raw.signature, credentials.secret_bytes)
        except VerificationError as exc:
            logger.warning("Rejected webhook from %s: %s", source_ip, exc.reason)
            _audit_rejection(
                audit_logger, AuditEventType.SIGNATURE_FAILURE, source_ip, exc.reason,
            )
            return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

        try:
            payload = decode_payload(raw.body)
        except DecodeError as exc:
            logger.warning("Undecodable webhook from %s: %s", source_ip, exc)
            _audit_rejection(
                audit_logger, AuditEventType.PAYLOAD_REJECTED, source_ip, exc.reason,
            )
            return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

        # A dropped inbound connection must not cancel replies already in flight.
        await asyncio.shield(dispatcher.dispatch(payload))
        return JSONResponse({"status": "ok"})

    return app


def _audit_rejection(
    audit_logger: AuditLogger | None,
    event_type: AuditEventType,
    source_ip: str | None,
    reason: str,
) -> None:
    if not audit_logger:
        return
    try:
        audit_logger.log(AuditEvent(
            event_type=event_type,
            source_ip=source_ip,
            action=f"POST {WEBHOOK_PATH}",
            result="rejected",
            risk_level=RiskLevel.HIGH,
            details={"reason": reason},
        ))
    except OSError:
        logger.exception("Audit write failed for rejected webhook")


async def _read_body(request: Request, limit: int) -> bytes | None:
    """Read the raw body, or return None once it exceeds ``limit`` bytes."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        return None
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)
