try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from site_auth.clients.google_auth import GoogleOAuthClient
from site_auth.core.config import GoogleSettings
from site_auth.core.errors import (
    AuthorizationRequestError,
    ErrorCategory,
    RedirectMismatchError,
    TokenExchangeError,
    TransientNetworkError,
)
from site_auth.models.oauth import Provider
from site_auth.services.token_cipher import TokenCipherService
from site_auth.services.token_exchange import UNKNOWN_ACCOUNT, TokenExchangeBroker
from site_auth.services.token_store import TokenStore

REDIRECT = "https://app.example/oauth/callback"


class ProviderStub:
    """Scripted token and userinfo endpoints."""

    def __init__(self, token_response: httpx.Response, userinfo_response=None) -> None:
        self.token_response = token_response
        self.userinfo_response = userinfo_response or httpx.Response(
            200, json={"email": "owner@example.com"}
        )
        self.token_requests: list[dict] = []
        self.userinfo_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            self.token_requests.append(
                {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
            )
            if isinstance(self.token_response, Exception):
                raise self.token_response
            return self.token_response
        self.userinfo_requests += 1
        return self.userinfo_response


def _settings() -> GoogleSettings:
    return GoogleSettings(
        GOOGLE_CLIENT_ID="client",
        GOOGLE_CLIENT_SECRET="secret",
        GOOGLE_REDIRECT_URI=REDIRECT,
    )


def _broker(stub: ProviderStub, sqlite_store, **kwargs) -> tuple[TokenExchangeBroker, TokenStore]:
    oauth_client = GoogleOAuthClient(_settings(), transport=httpx.MockTransport(stub))
    store = TokenStore(sqlite_store, TokenCipherService(secret="store-secret"))
    return TokenExchangeBroker(oauth_client, store, **kwargs), store


def _grant(**overrides) -> httpx.Response:
    body = {
        "access_token": "ya29.access",
        "refresh_token": "1//refresh",
        "expires_in": 3599,
        "scope": "https://www.googleapis.com/auth/analytics.readonly openid email",
        "token_type": "Bearer",
    }
    body.update(overrides)
    return httpx.Response(200, json={k: v for k, v in body.items() if v is not None})


@pytest.mark.asyncio
async def test_exchange_persists_record_and_returns_handle(sqlite_store) -> None:
    stub = ProviderStub(_grant())
    broker, store = _broker(stub, sqlite_store)
    before = datetime.now(timezone.utc)

    result = await broker.exchange(
        code="abc123", provider="ga4", redirect_target=REDIRECT, owner_id="user-1"
    )

    assert result.account_label == "owner@example.com"
    assert len(stub.token_requests) == 1
    sent = stub.token_requests[0]
    assert sent["code"] == "abc123"
    assert sent["grant_type"] == "authorization_code"
    assert sent["redirect_uri"] == REDIRECT

    record = store.require(result.token_id)
    assert record.provider is Provider.GA4
    assert record.access_token == "ya29.access"
    assert record.refresh_token == "1//refresh"
    assert record.owner_id == "user-1"
    assert "openid" in record.scopes
    assert record.expires_at == result.expires_at
    assert record.expires_at > before


@pytest.mark.asyncio
async def test_exchange_accepts_stored_provider_name(sqlite_store) -> None:
    broker, store = _broker(ProviderStub(_grant()), sqlite_store)

    result = await broker.exchange(
        code="abc123", provider="google_search_console", redirect_target=REDIRECT
    )

    assert store.require(result.token_id).provider is Provider.GSC


@pytest.mark.asyncio
async def test_unreadable_userinfo_falls_back_to_unknown(sqlite_store) -> None:
    stub = ProviderStub(_grant(), userinfo_response=httpx.Response(401))
    broker, _ = _broker(stub, sqlite_store)

    result = await broker.exchange(code="abc123", provider="gsc", redirect_target=REDIRECT)

    assert result.account_label == UNKNOWN_ACCOUNT


@pytest.mark.asyncio
async def test_explicit_account_label_skips_userinfo(sqlite_store) -> None:
    stub = ProviderStub(_grant())
    broker, _ = _broker(stub, sqlite_store)

    result = await broker.exchange(
        code="abc123", provider="gsc", redirect_target=REDIRECT, account_label="Marketing"
    )

    assert result.account_label == "Marketing"
    assert stub.userinfo_requests == 0


@pytest.mark.asyncio
async def test_redirect_mismatch_is_rejected_before_contacting_provider(sqlite_store) -> None:
    stub = ProviderStub(_grant())
    broker, _ = _broker(stub, sqlite_store)

    with pytest.raises(RedirectMismatchError) as excinfo:
        await broker.exchange(
            code="abc123", provider="ga4", redirect_target="https://evil.example/callback"
        )

    assert excinfo.value.category is ErrorCategory.FLOW_DEFECT
    assert stub.token_requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"code": "", "provider": "ga4"},
        {"code": "abc123", "provider": "bing"},
    ],
)
async def test_invalid_requests_are_rejected(sqlite_store, kwargs) -> None:
    broker, _ = _broker(ProviderStub(_grant()), sqlite_store)

    with pytest.raises(AuthorizationRequestError):
        await broker.exchange(redirect_target=REDIRECT, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "error_cls", "code", "category"),
    [
        (
            httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad Request"}),
            TokenExchangeError,
            "invalid_code",
            ErrorCategory.REAUTHORIZE,
        ),
        (
            httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Code was already redeemed or expired."},
            ),
            TokenExchangeError,
            "expired_code",
            ErrorCategory.REAUTHORIZE,
        ),
        (
            httpx.Response(400, json={"error": "redirect_uri_mismatch"}),
            RedirectMismatchError,
            "redirect_mismatch",
            ErrorCategory.FLOW_DEFECT,
        ),
        (
            httpx.Response(401, json={"error": "invalid_client"}),
            TokenExchangeError,
            "invalid_client",
            ErrorCategory.FLOW_DEFECT,
        ),
        (
            httpx.Response(503, text="unavailable"),
            TransientNetworkError,
            "transient_network",
            ErrorCategory.TRANSIENT,
        ),
        (
            httpx.ConnectError("connection refused"),
            TransientNetworkError,
            "transient_network",
            ErrorCategory.TRANSIENT,
        ),
    ],
)
async def test_token_endpoint_failures_are_classified_and_not_retried(
    sqlite_store, response, error_cls, code, category
) -> None:
    stub = ProviderStub(response)
    broker, store = _broker(stub, sqlite_store)

    with pytest.raises(error_cls) as excinfo:
        await broker.exchange(code="abc123", provider="ga4", redirect_target=REDIRECT)

    assert excinfo.value.code == code
    assert excinfo.value.category is category
    assert len(stub.token_requests) == 1
    assert store.list_records() == []


@pytest.mark.asyncio
async def test_missing_access_token_is_invalid_code(sqlite_store) -> None:
    broker, _ = _broker(ProviderStub(_grant(access_token=None)), sqlite_store)

    with pytest.raises(TokenExchangeError) as excinfo:
        await broker.exchange(code="abc123", provider="ga4", redirect_target=REDIRECT)

    assert excinfo.value.code == "invalid_code"


@pytest.mark.asyncio
async def test_missing_refresh_token_requires_reauthorization(sqlite_store) -> None:
    broker, store = _broker(ProviderStub(_grant(refresh_token=None)), sqlite_store)

    with pytest.raises(TokenExchangeError) as excinfo:
        await broker.exchange(code="abc123", provider="ga4", redirect_target=REDIRECT)

    assert excinfo.value.code == "missing_refresh_token"
    assert excinfo.value.category is ErrorCategory.REAUTHORIZE
    assert store.list_records() == []


@pytest.mark.asyncio
async def test_online_only_broker_accepts_grant_without_refresh_token(sqlite_store) -> None:
    broker, store = _broker(
        ProviderStub(_grant(refresh_token=None)), sqlite_store, require_refresh_token=False
    )

    result = await broker.exchange(code="abc123", provider="ga4", redirect_target=REDIRECT)

    assert not store.require(result.token_id).has_refresh_token


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>proxy login</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"access_token": "ya29.access", "expires_in": "soon"}),
    ],
)
async def test_unreadable_token_response_is_transient(sqlite_store, response) -> None:
    stub = ProviderStub(response)
    broker, store = _broker(stub, sqlite_store)

    with pytest.raises(TransientNetworkError) as excinfo:
        await broker.exchange(code="abc123", provider="ga4", redirect_target=REDIRECT)

    assert excinfo.value.code == "malformed_response"
    assert excinfo.value.category is ErrorCategory.TRANSIENT
    assert len(stub.token_requests) == 1
    assert store.list_records() == []


@pytest.mark.asyncio
async def test_unreadable_refresh_response_is_transient() -> None:
    client = GoogleOAuthClient(
        _settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html/>")),
    )

    with pytest.raises(TransientNetworkError) as excinfo:
        await client.refresh_token("1//refresh")

    assert excinfo.value.code == "malformed_response"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "redirect_target",
    [
        "https://APP.example:443/oauth/callback",
        " https://app.example/oauth/callback",
    ],
)
async def test_equivalent_redirect_spelling_is_accepted(sqlite_store, redirect_target) -> None:
    stub = ProviderStub(_grant())
    broker, _ = _broker(stub, sqlite_store)

    await broker.exchange(code="abc123", provider="ga4", redirect_target=redirect_target)

    assert stub.token_requests[0]["redirect_uri"] == REDIRECT


def test_configured_redirect_keeps_its_spelling() -> None:
    settings = GoogleSettings(
        GOOGLE_CLIENT_ID="client",
        GOOGLE_CLIENT_SECRET="secret",
        GOOGLE_REDIRECT_URI="https://app.example",
    )

    assert settings.redirect_uri == "https://app.example"
