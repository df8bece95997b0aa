"""Process-wide configuration: channel credentials and runtime settings."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

DEFAULT_API_BASE_URL = "https://api.line.me/v2/bot"
DEFAULT_TIMEOUT_SECONDS = 10.0


class ConfigError(Exception):
    """Raised when a required setting is missing or invalid."""


class ChannelCredentials(BaseModel):
    """Bearer token for outbound calls and the secret for inbound signatures.

    Built once at startup and shared read-only by every request. Both
    values are ``SecretStr`` so they never show up in reprs or logs.
    """

    model_config = ConfigDict(frozen=True)

    access_token: SecretStr
    channel_secret: SecretStr

    @classmethod
    def from_values(cls, access_token: str, channel_secret: str) -> ChannelCredentials:
        return cls(
            access_token=SecretStr(access_token),
            channel_secret=SecretStr(channel_secret),
        )

    @property
    def secret_bytes(self) -> bytes:
        return self.channel_secret.get_secret_value().encode()


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    credentials: ChannelCredentials
    api_base_url: str = DEFAULT_API_BASE_URL
    api_timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    audit_log_path: str | None = None
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Load settings from environment variables.

        ``CHANNEL_ACCESS_TOKEN`` and ``CHANNEL_SECRET`` are required; the
        rest fall back to defaults.
        """
        env = os.environ if environ is None else environ
        credentials = ChannelCredentials.from_values(
            access_token=_required(env, "CHANNEL_ACCESS_TOKEN"),
            channel_secret=_required(env, "CHANNEL_SECRET"),
        )
        try:
            api_timeout = float(env.get("LINE_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
            port = int(env.get("PORT", "3000"))
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc

        try:
            return cls(
                credentials=credentials,
                api_base_url=env.get("LINE_API_BASE_URL", DEFAULT_API_BASE_URL),
                api_timeout=api_timeout,
                audit_log_path=env.get("AUDIT_LOG_PATH") or None,
                host=env.get("HOST", "0.0.0.0"),
                port=port,
                log_level=env.get("LOG_LEVEL", "INFO").upper(),
            )
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "")
    if not value:
        raise ConfigError(f"{name} environment variable is required")
    return value
