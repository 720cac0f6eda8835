"""Complete, duplicate-free listing of provider resources for a stored token."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from site_auth.clients.google_resources import ResourcePageFetcher
from site_auth.core.errors import BrokerError, ResourceEnumerationError
from site_auth.models.oauth import Provider
from site_auth.models.resources import Resource
from site_auth.services.google_tokens import GoogleTokenService

logger = logging.getLogger(__name__)


class ResourceEnumerator:
    """Follow continuation cursors until the provider reports no more pages.

    A failing page aborts the whole listing; callers never receive a partial
    result that looks complete.
    """

    def __init__(
        self,
        token_service: GoogleTokenService,
        fetchers: Mapping[Provider, ResourcePageFetcher],
    ) -> None:
        self._tokens = token_service
        self._fetchers = dict(fetchers)

    async def list_resources(self, token_id: str) -> list[Resource]:
        record = await self._tokens.get_valid_record(token_id)
        fetcher = self._fetchers.get(record.provider)
        if fetcher is None:
            raise ResourceEnumerationError(
                f"No resource listing available for {record.provider.value}."
            )

        collected: dict[str, Resource] = {}
        cursor: Optional[str] = None
        seen_cursors: set[str] = set()
        pages = 0
        while True:
            try:
                page = await fetcher.fetch_page(record.access_token, cursor)
            except BrokerError as exc:
                logger.warning(
                    "Listing %s resources for token %s failed on page %s: %s",
                    record.provider.value,
                    token_id,
                    pages + 1,
                    exc,
                )
                raise
            pages += 1
            for resource in page.items:
                collected.setdefault(resource.resource_id, resource)

            cursor = page.next_cursor
            if not cursor:
                break
            if cursor in seen_cursors:
                raise ResourceEnumerationError(
                    f"Provider repeated continuation cursor after page {pages}."
                )
            seen_cursors.add(cursor)

        logger.info(
            "Listed %s %s resources across %s page(s)",
            len(collected),
            record.provider.value,
            pages,
        )
        return list(collected.values())


__all__ = ["ResourceEnumerator"]
