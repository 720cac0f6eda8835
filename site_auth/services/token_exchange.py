"""
Trusted exchange of authorization codes for durable tokens.

Runs server-side only: the exchange needs the OAuth client secret, which never
leaves the backend.
"""

from __future__ import annotations

import logging
from typing import Optional

from site_auth.clients.google_auth import GoogleOAuthClient, normalize_url
from site_auth.core.errors import (
    AuthorizationRequestError,
    BrokerError,
    ErrorCategory,
    RedirectMismatchError,
    TokenExchangeError,
)
from site_auth.models.oauth import ExchangeResult, Provider, TokenRecord
from site_auth.services.token_store import TokenStore

logger = logging.getLogger(__name__)

UNKNOWN_ACCOUNT = "unknown"


class TokenExchangeBroker:
    """Exchange a one-time code, persist the tokens and return a handle."""

    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        token_store: TokenStore,
        *,
        require_refresh_token: bool = True,
    ) -> None:
        self._oauth = oauth_client
        self._store = token_store
        self._require_refresh_token = require_refresh_token

    async def exchange(
        self,
        *,
        code: str,
        provider: "Provider | str",
        redirect_target: str,
        owner_id: Optional[str] = None,
        account_label: Optional[str] = None,
    ) -> ExchangeResult:
        if not code:
            raise AuthorizationRequestError("An authorization code is required.")
        try:
            provider = Provider.parse(provider)
        except ValueError as exc:
            raise AuthorizationRequestError(str(exc)) from exc

        if normalize_url(redirect_target) != normalize_url(self._oauth.redirect_uri):
            logger.error(
                "Redirect mismatch for %s exchange: %s", provider.value, redirect_target
            )
            raise RedirectMismatchError(
                "Redirect target does not match the one used to obtain the code."
            )

        logger.info("Exchanging authorization code for %s", provider.value)
        try:
            grant = await self._oauth.exchange_authorization_code(
                code, self._oauth.redirect_uri
            )
        except BrokerError as exc:
            log = logger.error if exc.category is ErrorCategory.FLOW_DEFECT else logger.warning
            log("%s code exchange failed: %s (%s)", provider.value, exc.code, exc)
            raise

        if self._require_refresh_token and not grant.refresh_token:
            raise TokenExchangeError(
                "Provider returned no refresh token; authorize again with offline access.",
                code="missing_refresh_token",
            )

        label = account_label or await self._oauth.fetch_account_label(grant.access_token)
        if not label:
            label = UNKNOWN_ACCOUNT

        record = TokenRecord(
            id=self._store.new_id(),
            provider=provider,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            account_label=label,
            scopes=grant.scopes,
            owner_id=owner_id,
            created_at=grant.issued_at,
        )
        self._store.put(record)
        logger.info("%s token %s created for %s", provider.value, record.id, label)
        return ExchangeResult(
            token_id=record.id, account_label=label, expires_at=record.expires_at
        )


__all__ = ["TokenExchangeBroker", "UNKNOWN_ACCOUNT"]
