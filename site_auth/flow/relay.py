"""
Two independent channels carrying the consent outcome back to the initiator.

``MessageChannel`` is the direct path: the callback surface posts a message
that listeners receive together with the sender's declared origin.
``SharedSlot`` is the durable fallback: a single well-known record the
callback surface overwrites and the controller polls and clears.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from site_auth.clients.sqlite_store import SQLiteStore
from site_auth.models.oauth import Provider

logger = logging.getLogger(__name__)

SUCCESS = "OAUTH_SUCCESS"
ERROR = "OAUTH_ERROR"
SLOT_KEY = "oauth_callback_result"

MessageListener = Callable[[Mapping[str, Any], str], None]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RelayPayload:
    """Outcome written by the callback surface."""

    type: str
    timestamp: int
    code: Optional[str] = None
    error: Optional[str] = None
    state: Optional[str] = None
    for_provider: Optional[Provider] = None

    @property
    def is_success(self) -> bool:
        return self.type == SUCCESS

    def age_ms(self, current_ms: int) -> int:
        return current_ms - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["for_provider"] = self.for_provider.value if self.for_provider else None
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, default_timestamp: Optional[int] = None) -> "RelayPayload":
        """Validate a raw message. Raises ``ValueError`` when malformed."""
        kind = data.get("type")
        if kind not in (SUCCESS, ERROR):
            raise ValueError(f"Unknown relay payload type: {kind!r}")
        code = data.get("code")
        error = data.get("error")
        if kind == SUCCESS and not code:
            raise ValueError("Success payload without an authorization code.")
        timestamp = data.get("timestamp", default_timestamp)
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            raise ValueError("Relay payload timestamp must be epoch milliseconds.")
        for_provider = data.get("for_provider") or data.get("forProvider")
        return cls(
            type=kind,
            timestamp=int(timestamp),
            code=str(code) if code else None,
            error=str(error) if error else None,
            state=data.get("state") or None,
            for_provider=Provider.parse(for_provider) if for_provider else None,
        )


def build_callback_payload(
    *,
    code: Optional[str],
    error: Optional[str],
    state: Optional[str],
    for_provider: Optional[Provider] = None,
    timestamp: Optional[int] = None,
) -> RelayPayload:
    """Turn callback query parameters into a relay payload."""
    stamp = timestamp if timestamp is not None else now_ms()
    if error or not code:
        return RelayPayload(
            type=ERROR,
            timestamp=stamp,
            error=error or "missing_code",
            state=state,
            for_provider=for_provider,
        )
    return RelayPayload(
        type=SUCCESS, timestamp=stamp, code=code, state=state, for_provider=for_provider
    )


class MessageChannel:
    """In-process fan-out of callback messages to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[MessageListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: MessageListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def post(self, message: Mapping[str, Any], origin: str) -> int:
        """Deliver ``message`` to current listeners; returns how many saw it."""
        listeners = list(self._listeners)
        for listener in listeners:
            listener(message, origin)
        return len(listeners)


class SharedSlot:
    """Single-record mailbox persisted in the shared SQLite store."""

    _SORT_KEY = "slot"

    def __init__(self, store: SQLiteStore, key: str = SLOT_KEY) -> None:
        self._store = store
        self._pk = f"relay#{key}"

    def write(self, payload: RelayPayload) -> None:
        self._store.put_item({"pk": self._pk, "sk": self._SORT_KEY, "payload": payload.to_dict()})

    def read(self) -> Optional[RelayPayload]:
        item = self._store.get_item(partition_key=self._pk, sort_key=self._SORT_KEY)
        if item is None:
            return None
        try:
            return RelayPayload.from_dict(item.get("payload") or {})
        except ValueError as exc:
            logger.warning("Discarding malformed relay slot payload: %s", exc)
            self.clear()
            return None

    def clear(self) -> None:
        self._store.delete_item(partition_key=self._pk, sort_key=self._SORT_KEY)


def publish_callback_result(
    payload: RelayPayload,
    *,
    origin: str,
    messages: MessageChannel,
    slot: SharedSlot,
) -> int:
    """Write ``payload`` through both channels, durable slot first."""
    slot.write(payload)
    delivered = messages.post(payload.to_dict(), origin)
    logger.info(
        "Published %s callback result (listeners=%s)", payload.type, delivered
    )
    return delivered


__all__ = [
    "ERROR",
    "MessageChannel",
    "MessageListener",
    "RelayPayload",
    "SLOT_KEY",
    "SUCCESS",
    "SharedSlot",
    "build_callback_payload",
    "now_ms",
    "publish_callback_result",
]
