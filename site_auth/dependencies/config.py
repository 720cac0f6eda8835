"""
FastAPI dependency utilities for injecting configuration.
"""

from fastapi import Depends

from site_auth.core.config import AppSettings, OAuthSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def get_oauth_settings(
    settings: AppSettings = Depends(get_app_settings),
) -> OAuthSettings:
    """Consent flow settings: scopes, offline access, timeouts."""
    return settings.oauth


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings", "get_oauth_settings"]
