"""Webhook audit trail: JSON Lines with a SHA-256 hash chain and rotation."""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

from src.models import AuditEvent


@dataclass
class ChainValidationResult:
    valid: bool
    entries: int = 0
    broken_at_line: int | None = None


def _chain_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check that every entry's ``prev_hash`` matches the line before it."""
    text = log_path.read_text(encoding="utf-8").strip() if log_path.exists() else ""
    if not text:
        return ChainValidationResult(valid=True)

    lines = text.split("\n")
    previous: str | None = None
    for number, line in enumerate(lines, start=1):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return ChainValidationResult(valid=False, entries=len(lines), broken_at_line=number)
        expected = _chain_hash(previous) if previous is not None else None
        if entry.get("prev_hash") != expected:
            return ChainValidationResult(valid=False, entries=len(lines), broken_at_line=number)
        previous = line

    return ChainValidationResult(valid=True, entries=len(lines))


class AuditLogger:
    """Append-only audit log for webhook verification and delivery outcomes.

    Each line embeds the hash of the previous line so that edits or
    deletions inside the file are detectable with ``validate_audit_chain``.
    A rotated file starts a new chain.
    """

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._last_line = self._read_last_line()

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        max_bytes = int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760"))
        backup_count = int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5"))
        return cls(log_path=log_path, max_bytes=max_bytes, backup_count=backup_count)

    def _read_last_line(self) -> str | None:
        if not self.log_path.exists():
            return None
        text = self.log_path.read_text(encoding="utf-8").strip()
        return text.split("\n")[-1] if text else None

    def _rotate_if_needed(self) -> bool:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return False

        name = self.log_path.name
        directory = self.log_path.parent
        (directory / f"{name}.{self._backup_count}").unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            older = directory / f"{name}.{index}"
            if older.exists():
                older.rename(directory / f"{name}.{index + 1}")
        self.log_path.rename(directory / f"{name}.1")
        return True

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.log_path.parent / f".{self.log_path.name}.lock"

        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                if self._rotate_if_needed():
                    self._last_line = None
                data = event.model_dump(mode="json")
                data["prev_hash"] = (
                    _chain_hash(self._last_line) if self._last_line is not None else None
                )
                line = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
                with open(self.log_path, "a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

        self._last_line = line
