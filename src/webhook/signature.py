"""Webhook signature gate: HMAC-SHA256 over the raw request body.

The provider signs the exact bytes it sends. Verification must therefore
run on the untouched body, before any JSON parsing; re-serialized JSON
can differ in whitespace or key order and would never match.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

SIGNATURE_HEADER = "x-line-signature"
SIGNATURE_PREFIX = "sha256="

_DIGEST_SIZE = hashlib.sha256().digest_size


class VerificationError(Exception):
    """Base class for signature failures. ``status_code`` is the HTTP mapping."""

    status_code = 401
    reason = "verification_failed"


class MissingSignature(VerificationError):
    status_code = 400
    reason = "missing_signature"

    def __init__(self) -> None:
        super().__init__("Missing signature header")


class MalformedSignature(VerificationError):
    reason = "malformed_signature"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Malformed signature header: {detail}")


class SignatureMismatch(VerificationError):
    reason = "signature_mismatch"

    def __init__(self) -> None:
        super().__init__("Invalid signature")


def _secret_bytes(secret: bytes | str) -> bytes:
    return secret.encode() if isinstance(secret, str) else secret


def _digest(raw_body: bytes, secret: bytes | str) -> bytes:
    return hmac.new(_secret_bytes(secret), raw_body, hashlib.sha256).digest()


def compute_signature(raw_body: bytes, secret: bytes | str, prefix: bool = True) -> str:
    """Return the header value the provider would send for ``raw_body``."""
    encoded = base64.b64encode(_digest(raw_body, secret)).decode("ascii")
    return f"{SIGNATURE_PREFIX}{encoded}" if prefix else encoded


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: bytes | str,
) -> None:
    """Raise a ``VerificationError`` unless the header signs ``raw_body``.

    The header may carry the ``sha256=`` prefix or be the bare base64
    digest. The final comparison is constant time.
    """
    if not signature_header or not signature_header.strip():
        raise MissingSignature()

    value = signature_header.strip()
    if value.startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]

    try:
        provided = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedSignature("not valid base64") from exc
    if len(provided) != _DIGEST_SIZE:
        raise MalformedSignature(f"expected {_DIGEST_SIZE}-byte digest")

    if not hmac.compare_digest(provided, _digest(raw_body, secret)):
        raise SignatureMismatch()


def is_valid_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: bytes | str,
) -> bool:
    try:
        verify_signature(raw_body, signature_header, secret)
    except VerificationError:
        return False
    return True
