"""
Error taxonomy shared by the popup controller, the exchange broker and the
resource enumerator.

Every failure surfaced to a caller belongs to exactly one ``ErrorCategory`` so
the caller can decide between offering a retry, re-running consent, or showing
a generic failure.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Buckets describing what a caller should do next."""

    RETRY = "retry"
    REAUTHORIZE = "reauthorize"
    FLOW_DEFECT = "flow_defect"
    TRANSIENT = "transient"


class BrokerError(Exception):
    """Base class for classified authorization and token errors."""

    category: ErrorCategory = ErrorCategory.FLOW_DEFECT
    code: str = "broker_error"

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        if code is not None:
            self.code = code
        if category is not None:
            self.category = category

    @property
    def retryable(self) -> bool:
        return self.category in (ErrorCategory.RETRY, ErrorCategory.TRANSIENT)

    def to_dict(self) -> dict[str, str]:
        return {
            "error": self.code,
            "category": self.category.value,
            "message": str(self),
        }


class AuthorizationRequestError(BrokerError, ValueError):
    """Raised synchronously when an authorization request is malformed."""

    category = ErrorCategory.FLOW_DEFECT
    code = "invalid_request"


class PopupBlockedError(BrokerError):
    """The authorization surface could not be opened."""

    category = ErrorCategory.RETRY
    code = "popup_blocked"


class AuthorizationDeniedError(BrokerError):
    """The provider reported an explicit error, usually the user declining."""

    category = ErrorCategory.RETRY
    code = "access_denied"


class AuthorizationTimeoutError(BrokerError):
    """No outcome arrived before the flow timeout elapsed."""

    category = ErrorCategory.RETRY
    code = "timeout"


class AuthorizationAbortedError(BrokerError):
    """The session was cancelled by the caller or superseded by a new one."""

    category = ErrorCategory.RETRY
    code = "aborted"

    def __init__(self, message: str = "", *, reason: str = "cancelled") -> None:
        super().__init__(message or f"Authorization {reason}.")
        self.reason = reason


class StateMismatchError(BrokerError):
    """A delivered payload carried a state token from another flow."""

    category = ErrorCategory.FLOW_DEFECT
    code = "state_mismatch"


class RedirectMismatchError(BrokerError):
    """The redirect target differs from the one registered for the flow."""

    category = ErrorCategory.FLOW_DEFECT
    code = "redirect_mismatch"


class TokenExchangeError(BrokerError):
    """The authorization code could not be exchanged for tokens."""

    category = ErrorCategory.REAUTHORIZE
    code = "invalid_code"


class TransientNetworkError(BrokerError):
    """A network failure that is safe for the caller to retry."""

    category = ErrorCategory.TRANSIENT
    code = "transient_network"


class ReauthorizationRequiredError(BrokerError):
    """The stored credentials can no longer be used without new consent."""

    category = ErrorCategory.REAUTHORIZE
    code = "token_expired"


class TokenNotFoundError(BrokerError):
    """No token record exists for the requested identifier."""

    category = ErrorCategory.REAUTHORIZE
    code = "token_not_found"


class ResourceEnumerationError(BrokerError):
    """The provider rejected a resource listing request."""

    category = ErrorCategory.FLOW_DEFECT
    code = "provider_error"


__all__ = [
    "AuthorizationAbortedError",
    "AuthorizationDeniedError",
    "AuthorizationRequestError",
    "AuthorizationTimeoutError",
    "BrokerError",
    "ErrorCategory",
    "PopupBlockedError",
    "ReauthorizationRequiredError",
    "RedirectMismatchError",
    "ResourceEnumerationError",
    "StateMismatchError",
    "TokenExchangeError",
    "TokenNotFoundError",
    "TransientNetworkError",
]
