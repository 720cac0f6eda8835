"""
Page fetchers for provider-side resources.

Both clients call the REST endpoints directly with a bearer token and return
one :class:`ResourcePage` per call; following cursors is the enumerator's job.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from site_auth.core.errors import (
    ReauthorizationRequiredError,
    ResourceEnumerationError,
    TransientNetworkError,
)
from site_auth.models.oauth import Provider
from site_auth.models.resources import Resource, ResourcePage
from site_auth.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)


class ResourcePageFetcher(Protocol):
    provider: Provider

    async def fetch_page(self, access_token: str, cursor: Optional[str]) -> ResourcePage:
        ...


def _trailing_id(name: str) -> str:
    """``properties/123`` -> ``123``."""
    return name.rsplit("/", 1)[-1]


class _GoogleResourceClient:
    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 20.0,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout
        self._retry = retry_config or RetryConfig(attempts=3, backoff_seconds=0.5)

    async def _get_json(
        self, url: str, access_token: str, params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await request_with_retry(
                    client.get, url, params=params, headers=headers, retry_config=self._retry
                )
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Resource listing failed: {exc}") from exc

        if response.status_code == 200:
            return response.json()
        if response.status_code == 401:
            raise ReauthorizationRequiredError(
                "Provider rejected the access token; authorization may have been revoked.",
                code="revoked",
            )
        if response.status_code == 403:
            raise ReauthorizationRequiredError(
                "Granted scopes do not allow listing these resources.",
                code="insufficient_scope",
            )
        if response.status_code >= 500:
            raise TransientNetworkError(
                f"Provider returned {response.status_code} while listing resources."
            )
        raise ResourceEnumerationError(
            f"Provider returned {response.status_code}: {response.text[:200]}"
        )


class AnalyticsAdminClient(_GoogleResourceClient):
    """Lists GA4 properties through ``accountSummaries``."""

    provider = Provider.GA4
    ACCOUNT_SUMMARIES_URL = "https://analyticsadmin.googleapis.com/v1beta/accountSummaries"
    PAGE_SIZE = 200

    async def fetch_page(self, access_token: str, cursor: Optional[str]) -> ResourcePage:
        params: Dict[str, Any] = {"pageSize": self.PAGE_SIZE}
        if cursor:
            params["pageToken"] = cursor
        data = await self._get_json(self.ACCOUNT_SUMMARIES_URL, access_token, params)

        items: list[Resource] = []
        for account in data.get("accountSummaries") or []:
            account_id = _trailing_id(account.get("account", ""))
            for summary in account.get("propertySummaries") or []:
                items.append(
                    Resource(
                        resource_id=_trailing_id(summary["property"]),
                        display_name=summary.get("displayName") or summary["property"],
                        parent_grouping_id=account_id or None,
                    )
                )
        return ResourcePage(items=items, next_cursor=data.get("nextPageToken") or None)


class SearchConsoleClient(_GoogleResourceClient):
    """Lists Search Console sites. The endpoint is not paginated."""

    provider = Provider.GSC
    SITES_URL = "https://www.googleapis.com/webmasters/v3/sites"

    async def fetch_page(self, access_token: str, cursor: Optional[str]) -> ResourcePage:
        data = await self._get_json(self.SITES_URL, access_token)
        items = [
            Resource(
                resource_id=entry["siteUrl"],
                display_name=entry["siteUrl"],
                parent_grouping_id=entry.get("permissionLevel"),
            )
            for entry in data.get("siteEntry") or []
        ]
        return ResourcePage(items=items, next_cursor=data.get("nextPageToken") or None)


__all__ = [
    "AnalyticsAdminClient",
    "ResourcePageFetcher",
    "SearchConsoleClient",
]
