"""
Helpers for retrieving and refreshing stored Google OAuth tokens.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from google.oauth2.credentials import Credentials

from site_auth.clients.google_auth import GoogleOAuthClient
from site_auth.core.config import GoogleSettings
from site_auth.core.errors import ReauthorizationRequiredError
from site_auth.models.oauth import TokenRecord
from site_auth.services.expiry import ensure_valid, is_valid
from site_auth.services.token_store import TokenStore

logger = logging.getLogger(__name__)


class GoogleTokenService:
    """Manages access to persisted Google OAuth tokens."""

    _REFRESH_WINDOW = timedelta(minutes=5)

    def __init__(
        self,
        token_store: TokenStore,
        oauth_client: GoogleOAuthClient,
        google_settings: GoogleSettings,
    ) -> None:
        self._store = token_store
        self._oauth = oauth_client
        self._google = google_settings
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_valid_record(
        self,
        token_id: str,
        *,
        refresh_if_expired: bool = True,
        now: Optional[datetime] = None,
    ) -> TokenRecord:
        """Load a record and pass it through the expiry guard.

        Expired records with a refresh token are refreshed first when
        ``refresh_if_expired`` is set; otherwise the guard's
        :class:`ReauthorizationRequiredError` propagates.
        """
        record = self._store.require(token_id)
        if is_valid(record, now):
            return record
        if refresh_if_expired and record.has_refresh_token:
            record = await self.refresh(token_id)
        return ensure_valid(record, now)

    async def refresh(self, token_id: str) -> TokenRecord:
        """Mint a new access token and replace the stored record."""
        async with self._locks[token_id]:
            record = self._store.require(token_id)
            if not record.refresh_token:
                raise ReauthorizationRequiredError(
                    f"Token {token_id} has no refresh token; reauthorization required.",
                    code="refresh_missing",
                )
            grant = await self._oauth.refresh_token(record.refresh_token)
            refreshed = record.model_copy(
                update={
                    "access_token": grant.access_token,
                    "refresh_token": grant.refresh_token or record.refresh_token,
                    "expires_at": grant.expires_at,
                    "scopes": grant.scopes or record.scopes,
                }
            )
            self._store.put(refreshed)
            logger.info("Refreshed %s token %s", record.provider.value, token_id)
            return refreshed

    async def get_credentials(self, token_id: str) -> Credentials:
        """Return google-auth credentials, refreshing close to expiry."""
        record = self._store.require(token_id)
        now = datetime.now(timezone.utc)
        if record.expires_at <= now + self._REFRESH_WINDOW and record.has_refresh_token:
            record = await self.refresh(token_id)
        ensure_valid(record, now)

        return Credentials(
            token=record.access_token,
            refresh_token=record.refresh_token,
            token_uri=GoogleOAuthClient.TOKEN_URL,
            client_id=self._google.client_id,
            client_secret=self._google.client_secret,
            scopes=list(record.scopes) or None,
            expiry=record.expires_at.astimezone(timezone.utc).replace(tzinfo=None),
        )


__all__ = ["GoogleTokenService"]
