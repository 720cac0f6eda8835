"""Ephemeral state of one consent attempt."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from site_auth.models.oauth import Provider


class SessionState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    AWAITING = "awaiting"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


TERMINAL_STATES = frozenset(
    {SessionState.RESOLVED, SessionState.REJECTED, SessionState.TIMED_OUT}
)


@dataclass
class AuthorizationSession:
    """Not persisted. At most one terminal transition is ever recorded."""

    provider: Provider
    redirect_target: str
    requested_scopes: tuple[str, ...]
    state_token: str
    started_at_ms: int
    state: SessionState = SessionState.IDLE
    outcome: Optional[SessionState] = None
    history: list[SessionState] = field(default_factory=lambda: [SessionState.IDLE])

    def transition(self, new_state: SessionState) -> None:
        self.state = new_state
        self.history.append(new_state)
        if new_state in TERMINAL_STATES:
            self.outcome = new_state

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED


@dataclass(frozen=True)
class AuthorizationResult:
    """Successful outcome: the one-time code and where it came from."""

    provider: Provider
    code: str
    state: Optional[str]
    channel: str


__all__ = [
    "AuthorizationResult",
    "AuthorizationSession",
    "SessionState",
    "TERMINAL_STATES",
]
