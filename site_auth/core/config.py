"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the connect script and the
popup controller share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional
from urllib.parse import urlsplit

import os

from pydantic import AnyHttpUrl, Field, TypeAdapter, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class GoogleSettings(BaseSettings):
    """Configuration required for the Google consent and token endpoints."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: str = Field(..., validation_alias="GOOGLE_REDIRECT_URI")

    @field_validator("redirect_uri")
    @classmethod
    def _absolute_redirect(cls, value: str) -> str:
        # Keep the configured spelling; Google compares it byte for byte.
        value = value.strip()
        try:
            _HTTP_URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"GOOGLE_REDIRECT_URI must be an absolute http(s) URL: {value!r}") from exc
        return value


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_token_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Comma-separated retired secrets still accepted for decryption.",
    )

    @field_validator("previous_token_encryption_secrets", mode="before")
    @classmethod
    def _split_previous(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        return _split_csv(value)


class OAuthSettings(BaseSettings):
    """Consent flow configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    flow_timeout_seconds: float = Field(300.0, validation_alias="OAUTH_FLOW_TIMEOUT")
    poll_interval_seconds: float = Field(0.5, validation_alias="OAUTH_POLL_INTERVAL")
    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    offline_access: bool = Field(True, validation_alias="OAUTH_OFFLINE_ACCESS")
    ga4_scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "https://www.googleapis.com/auth/analytics.readonly",
            "openid",
            "email",
        ),
        validation_alias="OAUTH_GA4_SCOPES",
    )
    gsc_scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "https://www.googleapis.com/auth/webmasters.readonly",
            "openid",
            "email",
        ),
        validation_alias="OAUTH_GSC_SCOPES",
    )

    @field_validator("ga4_scopes", "gsc_scopes", mode="before")
    @classmethod
    def _coerce_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)

    def scopes_for(self, provider: str) -> tuple[str, ...]:
        """Return the configured scopes for a provider tag (``ga4``/``gsc``)."""
        if provider == "ga4":
            return self.ga4_scopes
        if provider == "gsc":
            return self.gsc_scopes
        raise ValueError(f"Unknown provider: {provider}")


class AppSettings(BaseSettings):
    """Root settings object for the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    app_origin: Optional[str] = Field(
        None,
        validation_alias="APP_ORIGIN",
        description=(
            "Origin of the initiating application. Defaults to the origin of the "
            "Google redirect URI."
        ),
    )
    token_db_path: str = Field("data/site_auth.db", validation_alias="TOKEN_DB_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)

    @property
    def origin(self) -> str:
        """Effective origin that callback messages must declare."""
        if self.app_origin:
            return self.app_origin.rstrip("/")
        parts = urlsplit(str(self.google.redirect_uri))
        return f"{parts.scheme}://{parts.netloc}"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "OAuthSettings",
    "SecuritySettings",
    "get_settings",
]
