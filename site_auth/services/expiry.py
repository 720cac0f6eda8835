"""Freshness checks run before any access token is used."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from site_auth.core.errors import ReauthorizationRequiredError
from site_auth.models.oauth import TokenRecord


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_valid(record: TokenRecord, now: Optional[datetime] = None) -> bool:
    """Return True while ``now`` is strictly before the record's expiry."""
    current = _aware(now) if now is not None else datetime.now(timezone.utc)
    return current < _aware(record.expires_at)


def ensure_valid(record: TokenRecord, now: Optional[datetime] = None) -> TokenRecord:
    """Raise :class:`ReauthorizationRequiredError` for an expired record."""
    if not is_valid(record, now):
        raise ReauthorizationRequiredError(
            f"Access token {record.id} expired at {record.expires_at.isoformat()}; "
            "reauthorization required.",
            code="token_expired",
        )
    return record


__all__ = ["ensure_valid", "is_valid"]
