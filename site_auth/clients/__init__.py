"""Expose constructed client wrappers."""

from .backend import BackendExchangeClient
from .google_auth import GoogleOAuthClient, OAuthStateEncoder, build_authorization_url
from .google_resources import AnalyticsAdminClient, SearchConsoleClient
from .sqlite_store import SQLiteStore

__all__ = [
    "AnalyticsAdminClient",
    "BackendExchangeClient",
    "GoogleOAuthClient",
    "OAuthStateEncoder",
    "SQLiteStore",
    "SearchConsoleClient",
    "build_authorization_url",
]
