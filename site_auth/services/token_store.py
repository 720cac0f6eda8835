"""
Durable storage of token records.

Records are encrypted with :class:`TokenCipherService` and written as whole
documents; re-authorization and refresh replace the record under its id rather
than updating individual fields.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from site_auth.clients.sqlite_store import SQLiteStore
from site_auth.core.errors import ReauthorizationRequiredError, TokenNotFoundError
from site_auth.models.oauth import Provider, TokenRecord
from site_auth.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

_SORT_KEY = "oauth#token"


def _partition_key(token_id: str) -> str:
    return f"token#{token_id}"


class TokenStore:
    """Create, read, replace and delete token records by identifier."""

    def __init__(self, store: SQLiteStore, cipher: TokenCipherService) -> None:
        self._store = store
        self._cipher = cipher

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def put(self, record: TokenRecord) -> TokenRecord:
        """Create or replace the full record stored under ``record.id``."""
        self._store.put_item(self._serialize(record))
        logger.info(
            "Stored %s token %s for %s", record.provider.value, record.id, record.account_label
        )
        return record

    def get(self, token_id: str) -> Optional[TokenRecord]:
        item = self._store.get_item(
            partition_key=_partition_key(token_id), sort_key=_SORT_KEY
        )
        if item is None:
            return None
        try:
            return self._deserialize(item)
        except ValueError as exc:
            raise ReauthorizationRequiredError(
                f"Stored token {token_id} cannot be decrypted; connect the account again.",
                code="token_unreadable",
            ) from exc

    def require(self, token_id: str) -> TokenRecord:
        """Return the record or raise :class:`TokenNotFoundError`."""
        record = self.get(token_id)
        if record is None:
            raise TokenNotFoundError(f"No token stored with id {token_id}.")
        return record

    def delete(self, token_id: str) -> bool:
        removed = self._store.delete_item(
            partition_key=_partition_key(token_id), sort_key=_SORT_KEY
        )
        if removed:
            logger.info("Deleted token %s", token_id)
        return removed

    def list_records(self, *, owner_id: Optional[str] = None) -> list[TokenRecord]:
        """Return every readable record; undecryptable ones are logged and skipped."""
        records = []
        for item in self._store.list_items(sort_key=_SORT_KEY):
            try:
                records.append(self._deserialize(item))
            except ValueError as exc:
                logger.warning("Skipping unreadable token %s: %s", item.get("token_id"), exc)
        if owner_id is None:
            return records
        return [record for record in records if record.owner_id == owner_id]

    def audit_encryption(self, *, rewrite: bool = False) -> tuple[int, list[str]]:
        """Check that every stored record decrypts with a configured secret.

        Returns the number of readable records and the ids of records no
        configured secret can decrypt. With ``rewrite`` the readable records are
        stored again under the current primary key.
        """
        readable = 0
        unreadable: list[str] = []
        for item in self._store.list_items(sort_key=_SORT_KEY):
            try:
                record = self._deserialize(item)
            except ValueError:
                unreadable.append(item.get("token_id") or item["pk"])
                continue
            if rewrite:
                self._store.put_item(self._serialize(record))
            readable += 1
        if unreadable:
            logger.warning("%d stored tokens cannot be decrypted", len(unreadable))
        return readable, unreadable

    def _serialize(self, record: TokenRecord) -> Dict[str, Any]:
        return {
            "pk": _partition_key(record.id),
            "sk": _SORT_KEY,
            "token_id": record.id,
            "provider": record.provider.stored_name,
            "access_token_encrypted": self._cipher.encrypt(record.access_token),
            "refresh_token_encrypted": self._cipher.encrypt_optional(record.refresh_token),
            "expires_at": record.expires_at.isoformat(),
            "account_label": record.account_label,
            "scopes": list(record.scopes),
            "owner_id": record.owner_id,
            "created_at": record.created_at.isoformat(),
        }

    def _deserialize(self, item: Dict[str, Any]) -> TokenRecord:
        return TokenRecord(
            id=item["token_id"],
            provider=Provider.parse(item["provider"]),
            access_token=self._cipher.decrypt(item["access_token_encrypted"]),
            refresh_token=self._cipher.decrypt_optional(item.get("refresh_token_encrypted")),
            expires_at=datetime.fromisoformat(item["expires_at"]),
            account_label=item.get("account_label") or "unknown",
            scopes=tuple(item.get("scopes") or ()),
            owner_id=item.get("owner_id"),
            created_at=datetime.fromisoformat(item["created_at"]),
        )


__all__ = ["TokenStore"]
