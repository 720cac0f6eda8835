"""Service layer exports."""

from .expiry import ensure_valid, is_valid
from .google_tokens import GoogleTokenService
from .resource_enumerator import ResourceEnumerator
from .token_cipher import TokenCipherService
from .token_exchange import TokenExchangeBroker
from .token_store import TokenStore

__all__ = [
    "GoogleTokenService",
    "ResourceEnumerator",
    "TokenCipherService",
    "TokenExchangeBroker",
    "TokenStore",
    "ensure_valid",
    "is_valid",
]
