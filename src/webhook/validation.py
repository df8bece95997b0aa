"""Inbound text validation and masking helpers for log output."""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_FORBIDDEN_WORDS = frozenset({"spam", "垃圾", "廣告"})

_ALLOWED_CONTROL = {"\n", "\r", "\t"}


class TextValidationError(ValueError):
    """Raised when inbound text fails validation. ``reason`` is machine-readable."""

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class TextValidator:
    """Length, forbidden-word and control-character checks for user text."""

    def __init__(
        self,
        max_length: int = 1000,
        min_length: int = 0,
        forbidden_words: Iterable[str] = DEFAULT_FORBIDDEN_WORDS,
        allow_empty: bool = True,
    ) -> None:
        self.max_length = max_length
        self.min_length = min_length
        self.forbidden_words = frozenset(word.lower() for word in forbidden_words)
        self.allow_empty = allow_empty

    def validate(self, text: str) -> None:
        if not text:
            if self.allow_empty:
                return
            raise TextValidationError("empty", "Input is empty")

        length = len(text)
        if length > self.max_length:
            raise TextValidationError(
                "too_long", f"Input too long: {length} > {self.max_length}",
            )
        if length < self.min_length:
            raise TextValidationError(
                "too_short", f"Input too short: {length} < {self.min_length}",
            )

        lowered = text.lower()
        if any(word in lowered for word in self.forbidden_words):
            raise TextValidationError("forbidden", "Contains forbidden content")

        if any(_is_control(char) and char not in _ALLOWED_CONTROL for char in text):
            raise TextValidationError("invalid_characters", "Contains invalid characters")

    def is_valid(self, text: str) -> bool:
        try:
            self.validate(text)
        except TextValidationError:
            return False
        return True


def _is_control(char: str) -> bool:
    code = ord(char)
    return code < 0x20 or 0x7F <= code < 0xA0


def mask_user_id(user_id: str | None) -> str:
    """``U1234567890abcdef...`` -> ``U12...def``."""
    if not user_id:
        return "unknown"
    if len(user_id) <= 6:
        return "*" * len(user_id)
    return f"{user_id[:3]}...{user_id[-3:]}"


def mask_token(token: str | None) -> str:
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...****"
