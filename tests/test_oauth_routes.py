try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from site_auth.core.errors import (
    ReauthorizationRequiredError,
    RedirectMismatchError,
    TokenExchangeError,
    TransientNetworkError,
)
from site_auth.dependencies import get_oauth_state_encoder
from site_auth.flow.relay import ERROR, SUCCESS, MessageChannel, SharedSlot
from site_auth.main import app
from site_auth.models.oauth import ExchangeResult, Provider, TokenRecord
from site_auth.models.resources import Resource
from site_auth.services.token_cipher import TokenCipherService
from site_auth.services.token_store import TokenStore

ORIGIN = "https://app.example"


class DummyBroker:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.error: Exception | None = None

    async def exchange(self, **kwargs) -> ExchangeResult:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return ExchangeResult(
            token_id="tok-1",
            account_label="owner@example.com",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )


class DummyTokenService:
    def __init__(self, store: TokenStore) -> None:
        self.store = store
        self.error: Exception | None = None

    async def refresh(self, token_id: str) -> TokenRecord:
        if self.error is not None:
            raise self.error
        record = self.store.require(token_id)
        refreshed = record.model_copy(
            update={
                "access_token": "refreshed",
                "expires_at": datetime.now(timezone.utc) + timedelta(hours=1),
            }
        )
        return self.store.put(refreshed)


class DummyEnumerator:
    def __init__(self) -> None:
        self.error: Exception | None = None

    async def list_resources(self, token_id: str) -> list[Resource]:
        if self.error is not None:
            raise self.error
        return [
            Resource(resource_id="123", display_name="acme.com", parent_grouping_id="100"),
            Resource(resource_id="456", display_name="shop.acme.com", parent_grouping_id="100"),
        ]


class RecordingListener:
    def __init__(self) -> None:
        self.received: list[tuple[dict, str]] = []

    def __call__(self, message, origin) -> None:
        self.received.append((dict(message), origin))


@pytest.fixture()
def route_env(sqlite_store):
    from site_auth import dependencies

    store = TokenStore(sqlite_store, TokenCipherService(secret="route-secret"))
    messages = MessageChannel()
    slot = SharedSlot(sqlite_store)
    broker = DummyBroker()
    token_service = DummyTokenService(store)
    enumerator = DummyEnumerator()

    overrides = {
        dependencies.get_token_store: lambda: store,
        dependencies.get_message_channel: lambda: messages,
        dependencies.get_shared_slot: lambda: slot,
        dependencies.get_token_exchange_broker: lambda: broker,
        dependencies.get_google_token_service: lambda: token_service,
        dependencies.get_resource_enumerator: lambda: enumerator,
    }
    app.dependency_overrides.update(overrides)

    yield {
        "store": store,
        "messages": messages,
        "slot": slot,
        "broker": broker,
        "token_service": token_service,
        "enumerator": enumerator,
    }

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


def _store_record(store: TokenStore, **overrides) -> TokenRecord:
    values = {
        "id": store.new_id(),
        "provider": Provider.GA4,
        "access_token": "ya29.secret-access",
        "refresh_token": "1//secret-refresh",
        "expires_at": datetime.now(timezone.utc) + timedelta(hours=1),
        "account_label": "owner@example.com",
        "owner_id": "user-1",
    }
    values.update(overrides)
    return store.put(TokenRecord(**values))


@pytest.mark.anyio
async def test_healthcheck():
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_authorize_returns_json_by_default(route_env):
    async with _client() as client:
        response = await client.get("/api/auth/ga4/authorize")

    assert response.status_code == 200
    data = response.json()
    url = data["authorization_url"]
    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert "client_id=test-client-id" in url
    assert "access_type=offline" in url
    assert "prompt=consent" in url
    assert "analytics.readonly" in url
    assert get_oauth_state_encoder().provider_of(data["state"]) is Provider.GA4


@pytest.mark.anyio
async def test_authorize_redirects_for_html_accept(route_env):
    async with _client() as client:
        response = await client.get(
            "/api/auth/gsc/authorize", headers={"accept": "text/html"}
        )

    assert response.status_code == 307
    assert "webmasters.readonly" in response.headers["location"]


@pytest.mark.anyio
async def test_authorize_rejects_unknown_provider(route_env):
    async with _client() as client:
        response = await client.get("/api/auth/bing/authorize")

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_request"


@pytest.mark.anyio
async def test_callback_publishes_on_both_channels(route_env):
    listener = RecordingListener()
    route_env["messages"].add_listener(listener)
    state = get_oauth_state_encoder().issue(Provider.GSC)

    async with _client() as client:
        response = await client.get(
            "/api/oauth/callback", params={"code": "abc123", "state": state}
        )

    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "Authorization complete" in response.text

    stored = route_env["slot"].read()
    assert stored.type == SUCCESS
    assert stored.code == "abc123"
    assert stored.for_provider is Provider.GSC

    [(message, origin)] = listener.received
    assert origin == ORIGIN
    assert message["code"] == "abc123"
    assert message["state"] == state


@pytest.mark.anyio
async def test_callback_relays_provider_errors(route_env):
    async with _client() as client:
        response = await client.get(
            "/api/oauth/callback", params={"error": "access_denied", "state": "ga4"}
        )

    assert response.status_code == 200
    assert "access_denied" in response.text
    stored = route_env["slot"].read()
    assert stored.type == ERROR
    assert stored.error == "access_denied"
    assert stored.for_provider is None


@pytest.mark.anyio
async def test_callback_flags_expired_state(route_env):
    encoder = get_oauth_state_encoder()
    issued_at = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
    state = encoder.encode({"provider": "ga4", "nonce": "n", "issued_at": issued_at})

    async with _client() as client:
        await client.get("/api/oauth/callback", params={"code": "abc123", "state": state})

    stored = route_env["slot"].read()
    assert stored.type == ERROR
    assert stored.error == "state_expired"
    assert stored.for_provider is Provider.GA4


@pytest.mark.anyio
async def test_exchange_returns_token_handle(route_env):
    async with _client() as client:
        response = await client.post(
            "/api/auth/exchange",
            json={
                "code": "abc123",
                "provider": "ga4",
                "redirect_target": "https://app.example/api/oauth/callback",
                "owner_id": "user-1",
            },
        )

    assert response.status_code == 200
    assert response.json()["token_id"] == "tok-1"
    assert route_env["broker"].calls == [
        {
            "code": "abc123",
            "provider": "ga4",
            "redirect_target": "https://app.example/api/oauth/callback",
            "owner_id": "user-1",
            "account_label": None,
        }
    ]


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("error", "status", "code", "category"),
    [
        (TokenExchangeError("used"), 400, "invalid_code", "reauthorize"),
        (RedirectMismatchError("nope"), 400, "redirect_mismatch", "flow_defect"),
        (TransientNetworkError("down"), 503, "transient_network", "transient"),
    ],
)
async def test_exchange_maps_errors_to_http(route_env, error, status, code, category):
    route_env["broker"].error = error

    async with _client() as client:
        response = await client.post(
            "/api/auth/exchange",
            json={"code": "abc123", "provider": "ga4", "redirect_target": "x"},
        )

    assert response.status_code == status
    detail = response.json()["detail"]
    assert detail["error"] == code
    assert detail["category"] == category


@pytest.mark.anyio
async def test_token_view_hides_secrets(route_env):
    record = _store_record(route_env["store"])

    async with _client() as client:
        response = await client.get(f"/api/tokens/{record.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["token_id"] == record.id
    assert data["provider"] == "ga4"
    assert data["valid"] is True
    assert data["has_refresh_token"] is True
    assert "secret" not in response.text


@pytest.mark.anyio
async def test_expired_token_view_is_invalid(route_env):
    record = _store_record(
        route_env["store"], expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )

    async with _client() as client:
        response = await client.get(f"/api/tokens/{record.id}")

    assert response.json()["valid"] is False


@pytest.mark.anyio
async def test_list_tokens_filters_by_owner(route_env):
    mine = _store_record(route_env["store"], owner_id="user-1")
    _store_record(route_env["store"], owner_id="user-2")

    async with _client() as client:
        response = await client.get("/api/tokens", params={"owner_id": "user-1"})

    assert [item["token_id"] for item in response.json()] == [mine.id]


@pytest.mark.anyio
async def test_list_tokens_skips_undecryptable_records(route_env, sqlite_store):
    foreign = TokenStore(sqlite_store, TokenCipherService(secret="other-secret"))
    _store_record(foreign, owner_id="user-1")
    mine = _store_record(route_env["store"], owner_id="user-1")

    async with _client() as client:
        response = await client.get("/api/tokens")

    assert response.status_code == 200
    assert [item["token_id"] for item in response.json()] == [mine.id]


@pytest.mark.anyio
async def test_missing_token_is_404(route_env):
    async with _client() as client:
        response = await client.get("/api/tokens/does-not-exist")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "token_not_found"


@pytest.mark.anyio
async def test_disconnect_deletes_token(route_env):
    record = _store_record(route_env["store"])

    async with _client() as client:
        first = await client.delete(f"/api/tokens/{record.id}")
        second = await client.delete(f"/api/tokens/{record.id}")

    assert first.status_code == 200
    assert first.json() == {"status": "disconnected", "token_id": record.id}
    assert second.status_code == 404
    assert route_env["store"].get(record.id) is None


@pytest.mark.anyio
async def test_refresh_returns_updated_view(route_env):
    record = _store_record(
        route_env["store"], expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )

    async with _client() as client:
        response = await client.post(f"/api/tokens/{record.id}/refresh")

    assert response.status_code == 200
    assert response.json()["valid"] is True


@pytest.mark.anyio
async def test_refresh_requiring_consent_is_401(route_env):
    record = _store_record(route_env["store"], refresh_token=None)
    route_env["token_service"].error = ReauthorizationRequiredError(
        "no refresh token", code="refresh_missing"
    )

    async with _client() as client:
        response = await client.post(f"/api/tokens/{record.id}/refresh")

    assert response.status_code == 401
    assert response.json()["detail"] == {
        "error": "refresh_missing",
        "category": "reauthorize",
        "message": "no refresh token",
    }


@pytest.mark.anyio
async def test_resources_lists_every_item(route_env):
    record = _store_record(route_env["store"])

    async with _client() as client:
        response = await client.get(f"/api/tokens/{record.id}/resources")

    assert response.status_code == 200
    data = response.json()
    assert data["provider"] == "ga4"
    assert [item["resource_id"] for item in data["resources"]] == ["123", "456"]


@pytest.mark.anyio
async def test_resources_for_revoked_token_is_401(route_env):
    record = _store_record(route_env["store"])
    route_env["enumerator"].error = ReauthorizationRequiredError("revoked", code="revoked")

    async with _client() as client:
        response = await client.get(f"/api/tokens/{record.id}/resources")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "revoked"
