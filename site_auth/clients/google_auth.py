"""
Google OAuth utilities.

These helpers build consent URLs, sign the ``state`` discriminator and talk to
the token and userinfo endpoints. The token endpoint calls need the client
secret and therefore only ever run server-side.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import quote, urlencode, urlsplit

import httpx

from site_auth.core.config import GoogleSettings
from site_auth.core.errors import (
    AuthorizationRequestError,
    ErrorCategory,
    ReauthorizationRequiredError,
    RedirectMismatchError,
    StateMismatchError,
    TokenExchangeError,
    TransientNetworkError,
)
from site_auth.models.oauth import Provider
from site_auth.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for an absolute URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def normalize_url(url: str) -> str:
    """Canonical form used to compare redirect targets."""
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        return url.strip()
    if port is not None and (scheme, port) not in (("http", 80), ("https", 443)):
        host = f"{host}:{port}"
    path = parts.path or "/"
    query = f"?{parts.query}" if parts.query else ""
    return f"{scheme}://{host}{path}{query}"


def _ordered_scopes(scopes: Iterable[str]) -> list[str]:
    ordered: list[str] = []
    for scope in scopes:
        if not isinstance(scope, str) or not scope.strip():
            raise AuthorizationRequestError("Scopes must be non-empty strings.")
        if scope not in ordered:
            ordered.append(scope)
    if not ordered:
        raise AuthorizationRequestError("At least one scope must be requested.")
    return ordered


def build_authorization_url(
    provider: "Provider | str",
    *,
    client_id: str,
    redirect_target: str,
    scopes: Iterable[str],
    offline: bool = True,
    state: Optional[str] = None,
    caller_origin: Optional[str] = None,
    auth_base_url: str = AUTH_BASE_URL,
) -> str:
    """Construct the provider consent URL.

    ``state`` defaults to the provider tag so the callback surface can tell
    which provider started the flow. When ``caller_origin`` is given the
    redirect target must share it.
    """
    try:
        provider = Provider.parse(provider)
    except ValueError as exc:
        raise AuthorizationRequestError(str(exc)) from exc
    if not client_id or not client_id.strip():
        raise AuthorizationRequestError("A client identifier is required.")

    parts = urlsplit(redirect_target or "")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise AuthorizationRequestError(
            f"Redirect target must be an absolute http(s) URL: {redirect_target!r}"
        )
    if caller_origin is not None and origin_of(redirect_target) != caller_origin.rstrip("/").lower():
        raise AuthorizationRequestError(
            "Redirect target must be same-origin as the caller "
            f"({origin_of(redirect_target)} != {caller_origin})."
        )

    params = {
        "client_id": client_id,
        "redirect_uri": redirect_target,
        "response_type": "code",
        "scope": " ".join(_ordered_scopes(scopes)),
    }
    if offline:
        params["access_type"] = "offline"
    params["prompt"] = "consent"
    params["state"] = state or provider.value
    return f"{auth_base_url}?{urlencode(params, quote_via=quote)}"


class OAuthStateEncoder:
    """Encode and decode signed ``state`` values.

    The payload names the provider that started the flow plus a random nonce,
    so two concurrent flows never share a state token.
    """

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise StateMismatchError("Malformed OAuth state token.") from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise StateMismatchError("Invalid OAuth state signature.")
        return json.loads(serialized)

    def issue(self, provider: Provider) -> str:
        """Create a fresh state token for ``provider``."""
        return self.encode(
            {
                "provider": provider.value,
                "nonce": secrets.token_urlsafe(16),
                "issued_at": datetime.now(timezone.utc).isoformat(),
            }
        )

    def provider_of(self, token: str) -> Optional[Provider]:
        """Best-effort provider lookup used to tag callback payloads."""
        try:
            return Provider.parse(self.decode(token).get("provider", ""))
        except (StateMismatchError, ValueError):
            return None


@dataclass
class TokenGrant:
    """Tokens returned by the token endpoint."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scopes: Tuple[str, ...] = ()
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)


def _token_payload(response: httpx.Response) -> Tuple[Dict[str, Any], int]:
    """Parse a 200 token endpoint body into the payload and ``expires_in``."""
    try:
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("token payload is not an object")
        expires_in = int(payload.get("expires_in") or 3600)
    except (TypeError, ValueError) as exc:
        raise TransientNetworkError(
            f"Token endpoint returned an unreadable response: {exc}",
            code="malformed_response",
        ) from exc
    return payload, expires_in


def _error_fields(response: httpx.Response) -> Tuple[str, str]:
    try:
        payload = response.json()
    except ValueError:
        return "", response.text
    if not isinstance(payload, dict):
        return "", response.text
    error = payload.get("error") or ""
    if isinstance(error, dict):
        return str(error.get("status", "")), str(error.get("message", ""))
    return str(error), str(payload.get("error_description", ""))


class GoogleOAuthClient:
    """Exchange authorization codes, refresh tokens and read account labels."""

    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

    def __init__(
        self,
        google_settings: GoogleSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self._google = google_settings
        self._transport = transport
        self._timeout = timeout

    @property
    def client_id(self) -> str:
        return self._google.client_id

    @property
    def redirect_uri(self) -> str:
        return self._google.redirect_uri

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def exchange_authorization_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange a one-time authorization code for tokens.

        The request is sent exactly once; a retry could spend the code twice.
        """
        payload = {
            "code": code,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }

        try:
            async with self._client() as client:
                response = await client.post(self.TOKEN_URL, data=payload)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise TransientNetworkError(
                f"Token endpoint returned {response.status_code}."
            )
        if response.status_code != 200:
            raise self._classify_exchange_error(response)

        token_payload, expires_in = _token_payload(response)
        access_token = token_payload.get("access_token")
        if not access_token:
            raise TokenExchangeError("Token endpoint returned no access token.")

        return TokenGrant(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token"),
            expires_in=expires_in,
            scopes=tuple((token_payload.get("scope") or "").split()),
        )

    @staticmethod
    def _classify_exchange_error(response: httpx.Response) -> Exception:
        error, description = _error_fields(response)
        logger.warning("Authorization code exchange rejected: %s %s", error, description)
        if error == "redirect_uri_mismatch":
            return RedirectMismatchError(
                "Redirect URI does not match the one registered for the client."
            )
        if error == "invalid_grant":
            if "expired" in description.lower():
                return TokenExchangeError(
                    "Authorization code expired; start the consent flow again.",
                    code="expired_code",
                )
            return TokenExchangeError(
                "Authorization code is invalid or already used.", code="invalid_code"
            )
        if error in ("invalid_client", "unauthorized_client"):
            return TokenExchangeError(
                f"OAuth client rejected by provider: {error}.",
                code=error,
                category=ErrorCategory.FLOW_DEFECT,
            )
        return TokenExchangeError(
            f"Failed to exchange authorization code: {error or response.status_code}.",
            code="invalid_code",
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Mint a new access token from a stored refresh token."""
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client.post, self.TOKEN_URL, data=payload
                )
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise TransientNetworkError(
                f"Token endpoint returned {response.status_code}."
            )
        if response.status_code != 200:
            error, _ = _error_fields(response)
            raise ReauthorizationRequiredError(
                f"Refresh token rejected: {error or response.status_code}.",
                code="refresh_invalid",
            )

        token_payload, expires_in = _token_payload(response)
        access_token = token_payload.get("access_token")
        if not access_token:
            raise ReauthorizationRequiredError(
                "Incomplete refresh payload returned from Google.",
                code="refresh_invalid",
            )
        return TokenGrant(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token") or refresh_token,
            expires_in=expires_in,
            scopes=tuple((token_payload.get("scope") or "").split()),
        )

    async def fetch_account_label(self, access_token: str) -> Optional[str]:
        """Return the authorizing account's email, or None if unavailable."""
        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client.get,
                    self.USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                    retry_config=RetryConfig(attempts=2, backoff_seconds=0.5),
                )
        except httpx.HTTPError as exc:
            logger.warning("Userinfo lookup failed: %s", exc)
            return None
        if response.status_code != 200:
            logger.warning("Userinfo lookup returned %s", response.status_code)
            return None
        try:
            return response.json().get("email")
        except (AttributeError, ValueError):
            logger.warning("Userinfo lookup returned an unreadable body")
            return None


__all__ = [
    "AUTH_BASE_URL",
    "GoogleOAuthClient",
    "OAuthStateEncoder",
    "TokenGrant",
    "build_authorization_url",
    "normalize_url",
    "origin_of",
]
