"""Click CLI for operator-side sends, signing, and audit checks."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from dataclasses import asdict
from pathlib import Path
from typing import IO, Any, TypeVar

import click

from src.audit.logger import AuditLogger, validate_audit_chain
from src.config import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT_SECONDS, ChannelCredentials
from src.line.client import LineApiClient
from src.line.errors import ApiError
from src.line.models import text
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.signature import compute_signature

T = TypeVar("T")


@click.group()
@click.option("--token", envvar="CHANNEL_ACCESS_TOKEN", default=None,
              help="Channel access token (default: $CHANNEL_ACCESS_TOKEN).")
@click.option("--base-url", envvar="LINE_API_BASE_URL", default=DEFAULT_API_BASE_URL,
              show_default=True, help="Messaging API base URL.")
@click.option("--timeout", envvar="LINE_API_TIMEOUT", type=float,
              default=DEFAULT_TIMEOUT_SECONDS, show_default=True,
              help="Per-request timeout in seconds.")
@click.option("--audit-log", envvar="AUDIT_LOG_PATH", default=None,
              help="Audit log file path.")
@click.pass_context
def cli(
    ctx: click.Context,
    token: str | None,
    base_url: str,
    timeout: float,
    audit_log: str | None,
) -> None:
    """LINE webhook relay operator CLI."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("token", token)
    ctx.obj.setdefault("base_url", base_url)
    ctx.obj.setdefault("timeout", timeout)
    ctx.obj.setdefault("audit_logger", AuditLogger(audit_log) if audit_log else None)


def _client(ctx: click.Context) -> LineApiClient:
    token = ctx.obj.get("token")
    if not token:
        raise click.UsageError("A channel access token is required (--token).")
    return LineApiClient(
        ChannelCredentials.from_values(access_token=token, channel_secret=""),
        base_url=ctx.obj["base_url"],
        timeout=ctx.obj["timeout"],
        transport=ctx.obj.get("transport"),
    )


def _run(ctx: click.Context, action: str, call: Coroutine[Any, Any, T], **details: Any) -> T:
    audit_logger: AuditLogger | None = ctx.obj.get("audit_logger")
    try:
        result = asyncio.run(call)
    except ApiError as exc:
        if audit_logger:
            audit_logger.log(AuditEvent(
                event_type=AuditEventType.OPERATOR_SEND,
                action=action,
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                details={**details, "error_kind": exc.kind},
            ))
        raise click.ClickException(f"{exc.kind}: {exc}") from exc
    if audit_logger:
        audit_logger.log(AuditEvent(
            event_type=AuditEventType.OPERATOR_SEND,
            action=action,
            result="success",
            risk_level=RiskLevel.INFO,
            details=details,
        ))
    return result


@cli.command()
@click.argument("user_id")
@click.argument("messages", nargs=-1, required=True)
@click.option("--retry-key", default=None,
              help="Dedup key (UUID) so a retried push is delivered once.")
@click.option("--silent", is_flag=True, help="Disable the push notification.")
@click.pass_context
def push(
    ctx: click.Context,
    user_id: str,
    messages: tuple[str, ...],
    retry_key: str | None,
    silent: bool,
) -> None:
    """Push text MESSAGES to USER_ID."""
    client = _client(ctx)
    _run(
        ctx, "push",
        client.push(
            user_id, [text(m) for m in messages],
            notification_disabled=silent or None, retry_key=retry_key,
        ),
        messages=len(messages),
    )
    click.echo(f"Pushed {len(messages)} message(s)")


@cli.command()
@click.option("--to", "recipients", multiple=True, required=True,
              help="Recipient user id (repeatable).")
@click.argument("messages", nargs=-1, required=True)
@click.option("--retry-key", default=None,
              help="Dedup key (UUID) so a retried multicast is delivered once.")
@click.option("--silent", is_flag=True, help="Disable the push notification.")
@click.pass_context
def multicast(
    ctx: click.Context,
    recipients: tuple[str, ...],
    messages: tuple[str, ...],
    retry_key: str | None,
    silent: bool,
) -> None:
    """Send text MESSAGES to every --to recipient in one call."""
    client = _client(ctx)
    unique = tuple(dict.fromkeys(recipients))
    _run(
        ctx, "multicast",
        client.multicast(
            unique, [text(m) for m in messages],
            notification_disabled=silent or None, retry_key=retry_key,
        ),
        recipients=len(unique), messages=len(messages),
    )
    click.echo(f"Multicast {len(messages)} message(s) to {len(unique)} recipient(s)")


@cli.command()
@click.argument("user_id")
@click.pass_context
def profile(ctx: click.Context, user_id: str) -> None:
    """Look up the profile of USER_ID."""
    client = _client(ctx)
    try:
        result = asyncio.run(client.get_profile(user_id))
    except ApiError as exc:
        raise click.ClickException(f"{exc.kind}: {exc}") from exc
    click.echo(result.model_dump_json(by_alias=True, exclude_none=True, indent=2))


@cli.command()
@click.argument("body", type=click.File("rb"))
@click.option("--secret", envvar="CHANNEL_SECRET", required=True,
              help="Channel secret (default: $CHANNEL_SECRET).")
@click.option("--no-prefix", is_flag=True, help="Print the bare base64 digest.")
def sign(body: IO[bytes], secret: str, no_prefix: bool) -> None:
    """Print the signature header value for the raw bytes of BODY."""
    click.echo(compute_signature(body.read(), secret, prefix=not no_prefix))


@cli.command("audit-verify")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def audit_verify(ctx: click.Context, log_path: str) -> None:
    """Check the hash chain of an audit log."""
    result = validate_audit_chain(Path(log_path))
    click.echo(json.dumps(asdict(result), indent=2))
    if not result.valid:
        ctx.exit(1)


@cli.command()
@click.option("--host", envvar="HOST", default="0.0.0.0", show_default=True)
@click.option("--port", envvar="PORT", type=int, default=3000, show_default=True)
def serve(host: str, port: int) -> None:
    """Run the webhook server (configuration comes from the environment)."""
    import uvicorn

    uvicorn.run("src.server.app:create_app_from_env", factory=True, host=host, port=port)
