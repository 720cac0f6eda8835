"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_google_oauth_client,
    get_google_token_service,
    get_message_channel,
    get_oauth_state_encoder,
    get_resource_enumerator,
    get_shared_slot,
    get_sqlite_store,
    get_token_cipher_service,
    get_token_exchange_broker,
    get_token_store,
)
from .config import SettingsDependency, get_app_settings, get_oauth_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
    "get_google_oauth_client",
    "get_google_token_service",
    "get_message_channel",
    "get_oauth_settings",
    "get_oauth_state_encoder",
    "get_resource_enumerator",
    "get_shared_slot",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_token_exchange_broker",
    "get_token_store",
]
