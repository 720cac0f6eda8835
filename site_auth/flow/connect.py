"""
End-to-end connect flow run by the initiating side.

Builds the consent URL with a signed state token, waits on the popup
controller for the code and hands the code to a trusted exchanger (the
backend broker, usually reached through :class:`BackendExchangeClient`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol

from site_auth.clients.google_auth import (
    AUTH_BASE_URL,
    OAuthStateEncoder,
    build_authorization_url,
)
from site_auth.core.config import OAuthSettings
from site_auth.flow.controller import PopupLifecycleController
from site_auth.models.oauth import ExchangeResult, Provider

logger = logging.getLogger(__name__)


class TokenExchanger(Protocol):
    async def exchange(
        self,
        *,
        code: str,
        provider: "Provider | str",
        redirect_target: str,
        owner_id: Optional[str] = None,
        account_label: Optional[str] = None,
    ) -> ExchangeResult:
        ...


@dataclass(frozen=True)
class ConnectResult:
    provider: Provider
    token_id: str
    account_label: str
    expires_at: datetime


class SiteConnector:
    """Drive consent for one provider and return the persisted token handle."""

    def __init__(
        self,
        *,
        controller: PopupLifecycleController,
        exchanger: TokenExchanger,
        state_encoder: OAuthStateEncoder,
        oauth_settings: OAuthSettings,
        client_id: str,
        redirect_target: str,
        caller_origin: Optional[str] = None,
        auth_base_url: str = AUTH_BASE_URL,
    ) -> None:
        self._controller = controller
        self._exchanger = exchanger
        self._encoder = state_encoder
        self._oauth = oauth_settings
        self._client_id = client_id
        self._redirect_target = redirect_target
        self._caller_origin = caller_origin
        self._auth_base_url = auth_base_url

    async def connect(
        self,
        provider: "Provider | str",
        *,
        owner_id: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> ConnectResult:
        provider = Provider.parse(provider)
        requested = tuple(scopes) if scopes is not None else self._oauth.scopes_for(provider.value)
        state = self._encoder.issue(provider)
        url = build_authorization_url(
            provider,
            client_id=self._client_id,
            redirect_target=self._redirect_target,
            scopes=requested,
            offline=self._oauth.offline_access,
            state=state,
            caller_origin=self._caller_origin,
            auth_base_url=self._auth_base_url,
        )

        outcome = await self._controller.authorize(
            provider=provider,
            authorization_url=url,
            state_token=state,
            redirect_target=self._redirect_target,
            scopes=requested,
        )
        exchanged = await self._exchanger.exchange(
            code=outcome.code,
            provider=provider,
            redirect_target=self._redirect_target,
            owner_id=owner_id,
        )
        logger.info("%s connected as %s", provider.value, exchanged.account_label)
        return ConnectResult(
            provider=provider,
            token_id=exchanged.token_id,
            account_label=exchanged.account_label,
            expires_at=exchanged.expires_at,
        )


__all__ = ["ConnectResult", "SiteConnector", "TokenExchanger"]
