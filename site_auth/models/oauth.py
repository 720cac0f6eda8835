"""
Domain models for OAuth token persistence.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Provider(str, Enum):
    """Data providers a site can be connected to."""

    GA4 = "ga4"
    GSC = "gsc"

    @property
    def stored_name(self) -> str:
        """Name persisted alongside token records."""
        return {
            Provider.GA4: "google_analytics",
            Provider.GSC: "google_search_console",
        }[self]

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        if isinstance(value, Provider):
            return value
        for member in cls:
            if value in (member.value, member.stored_name):
                return member
        raise ValueError(f"Unknown provider: {value!r}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRecord(BaseModel):
    """Represents a decrypted token record held by the token store."""

    id: str = Field(..., description="Opaque identifier owned by the token store.")
    provider: Provider
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime
    account_label: str = Field("unknown", description="Authorizing account, display only.")
    scopes: tuple[str, ...] = ()
    owner_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("expires_at", "created_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)


class ExchangeResult(BaseModel):
    """Handle returned once an authorization code has been exchanged."""

    token_id: str
    account_label: str
    expires_at: datetime


__all__ = ["ExchangeResult", "Provider", "TokenRecord"]
