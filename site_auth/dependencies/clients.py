"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from site_auth.clients import (
    AnalyticsAdminClient,
    GoogleOAuthClient,
    OAuthStateEncoder,
    SQLiteStore,
    SearchConsoleClient,
)
from site_auth.core.config import get_settings
from site_auth.flow.relay import MessageChannel, SharedSlot
from site_auth.models.oauth import Provider
from site_auth.services import (
    GoogleTokenService,
    ResourceEnumerator,
    TokenCipherService,
    TokenExchangeBroker,
    TokenStore,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder derived from the Google client secret."""
    settings = _settings()
    return OAuthStateEncoder(secret_key=settings.google.client_secret)


@lru_cache()
def get_google_oauth_client() -> GoogleOAuthClient:
    """Create a singleton Google OAuth client."""
    settings = _settings()
    return GoogleOAuthClient(settings.google)


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite record store."""
    settings = _settings()
    return SQLiteStore(settings.token_db_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.google.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_token_encryption_secrets,
    )


@lru_cache()
def get_token_store() -> TokenStore:
    """Provide the encrypted token record store."""
    return TokenStore(get_sqlite_store(), get_token_cipher_service())


@lru_cache()
def get_google_token_service() -> GoogleTokenService:
    """Provide helper for managing Google OAuth tokens."""
    settings = _settings()
    return GoogleTokenService(
        token_store=get_token_store(),
        oauth_client=get_google_oauth_client(),
        google_settings=settings.google,
    )


@lru_cache()
def get_token_exchange_broker() -> TokenExchangeBroker:
    """Provide the server-side code exchange broker."""
    settings = _settings()
    return TokenExchangeBroker(
        get_google_oauth_client(),
        get_token_store(),
        require_refresh_token=settings.oauth.offline_access,
    )


@lru_cache()
def get_resource_enumerator() -> ResourceEnumerator:
    """Provide the resource enumerator with a page fetcher per provider."""
    return ResourceEnumerator(
        get_google_token_service(),
        {
            Provider.GA4: AnalyticsAdminClient(),
            Provider.GSC: SearchConsoleClient(),
        },
    )


@lru_cache()
def get_message_channel() -> MessageChannel:
    """Provide the process-wide callback message channel."""
    return MessageChannel()


@lru_cache()
def get_shared_slot() -> SharedSlot:
    """Provide the durable callback result slot."""
    return SharedSlot(get_sqlite_store())


__all__ = [
    "get_google_oauth_client",
    "get_google_token_service",
    "get_message_channel",
    "get_oauth_state_encoder",
    "get_resource_enumerator",
    "get_shared_slot",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_token_exchange_broker",
    "get_token_store",
]
