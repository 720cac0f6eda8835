"""
Client for the broker's exchange endpoint.

The initiating side only ever holds the one-time code; the backend holds the
client secret and performs the exchange.
"""

from __future__ import annotations

from typing import Optional

import httpx

from site_auth.core.errors import (
    AuthorizationRequestError,
    BrokerError,
    ErrorCategory,
    RedirectMismatchError,
    TokenExchangeError,
    TransientNetworkError,
)
from site_auth.models.oauth import ExchangeResult, Provider

_ERRORS_BY_CODE: dict[str, type[BrokerError]] = {
    "invalid_request": AuthorizationRequestError,
    "redirect_mismatch": RedirectMismatchError,
    "invalid_code": TokenExchangeError,
    "expired_code": TokenExchangeError,
    "missing_refresh_token": TokenExchangeError,
    "transient_network": TransientNetworkError,
}


class BackendExchangeClient:
    """POST authorization codes to ``/api/auth/exchange``."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def exchange(
        self,
        *,
        code: str,
        provider: "Provider | str",
        redirect_target: str,
        owner_id: Optional[str] = None,
        account_label: Optional[str] = None,
    ) -> ExchangeResult:
        body = {
            "code": code,
            "provider": Provider.parse(provider).value,
            "redirect_target": redirect_target,
            "owner_id": owner_id,
            "account_label": account_label,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post("/api/auth/exchange", json=body)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Exchange endpoint unreachable: {exc}") from exc

        if response.status_code == 200:
            try:
                return ExchangeResult.model_validate(response.json())
            except ValueError as exc:
                raise TransientNetworkError(
                    f"Exchange endpoint returned an unreadable response: {exc}",
                    code="malformed_response",
                ) from exc
        raise self._error_from(response)

    @staticmethod
    def _error_from(response: httpx.Response) -> BrokerError:
        detail: dict = {}
        try:
            payload = response.json()
            if isinstance(payload, dict) and isinstance(payload.get("detail"), dict):
                detail = payload["detail"]
        except ValueError:
            pass

        fallback = "transient_network" if response.status_code >= 500 else "exchange_failed"
        code = detail.get("error") or fallback
        message = detail.get("message") or f"Exchange failed with HTTP {response.status_code}."
        error_cls = _ERRORS_BY_CODE.get(code, BrokerError)
        category = detail.get("category")
        return error_cls(
            message,
            code=code,
            category=ErrorCategory(category) if category else None,
        )


__all__ = ["BackendExchangeClient"]
