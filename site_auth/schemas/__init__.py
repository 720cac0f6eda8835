"""Public schema exports."""

from .auth import (
    AuthorizationStartResponse,
    ExchangeRequest,
    ExchangeResponse,
    ResourceListResponse,
    TokenView,
)

__all__ = [
    "AuthorizationStartResponse",
    "ExchangeRequest",
    "ExchangeResponse",
    "ResourceListResponse",
    "TokenView",
]
