"""Schemas related to OAuth flows and stored tokens."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from site_auth.models.oauth import TokenRecord
from site_auth.models.resources import Resource


class AuthorizationStartResponse(BaseModel):
    """Authorization URL returned to callers that do not follow redirects."""

    authorization_url: str
    state: str


class ExchangeRequest(BaseModel):
    """Payload sent by the initiating side once consent produced a code."""

    code: str = Field(..., description="One-time authorization code returned by Google.")
    provider: str = Field(..., description="Provider tag, `ga4` or `gsc`.")
    redirect_target: str = Field(
        ..., description="Redirect URI used when the code was requested."
    )
    owner_id: Optional[str] = Field(
        default=None, description="Local user the token belongs to."
    )
    account_label: Optional[str] = Field(
        default=None, description="Display label overriding the userinfo lookup."
    )


class ExchangeResponse(BaseModel):
    token_id: str
    account_label: str
    expires_at: datetime


class TokenView(BaseModel):
    """Public view of a stored token; never includes secrets."""

    token_id: str
    provider: str
    account_label: str
    expires_at: datetime
    valid: bool
    has_refresh_token: bool
    owner_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: TokenRecord, *, valid: bool) -> "TokenView":
        return cls(
            token_id=record.id,
            provider=record.provider.value,
            account_label=record.account_label,
            expires_at=record.expires_at,
            valid=valid,
            has_refresh_token=record.has_refresh_token,
            owner_id=record.owner_id,
        )


class ResourceListResponse(BaseModel):
    token_id: str
    provider: str
    resources: List[Resource]


__all__ = [
    "AuthorizationStartResponse",
    "ExchangeRequest",
    "ExchangeResponse",
    "ResourceListResponse",
    "TokenView",
]
