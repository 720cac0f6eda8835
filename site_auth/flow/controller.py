"""
Popup lifecycle controller.

Opens the consent screen on an :class:`AuthorizationSurface`, then waits for
the first of four triggers: a direct callback message, a fresh payload in the
shared slot, the flow timeout, or a caller abort. Every trigger goes through
``_attempt_resolve``; the first call settles the session and runs cleanup, the
rest are no-ops.

Sessions are keyed by provider. Starting a second authorization for a
provider that is still awaiting supersedes the first one: it is rejected with
``AuthorizationAbortedError(reason="superseded")`` and closed before the new
window opens. Sessions for different providers run side by side and are kept
apart by their state tokens.

All callbacks must run on the event loop that called :meth:`authorize`.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

from site_auth.core.errors import (
    AuthorizationAbortedError,
    AuthorizationDeniedError,
    AuthorizationTimeoutError,
    BrokerError,
    ErrorCategory,
    PopupBlockedError,
    StateMismatchError,
)
from site_auth.flow.relay import (
    MessageChannel,
    MessageListener,
    RelayPayload,
    SharedSlot,
    now_ms,
)
from site_auth.flow.scheduling import AsyncioScheduler, ScheduledTask, Scheduler
from site_auth.flow.session import (
    AuthorizationResult,
    AuthorizationSession,
    SessionState,
)
from site_auth.flow.surface import AuthorizationSurface
from site_auth.models.oauth import Provider

logger = logging.getLogger(__name__)

CHANNEL_MESSAGE = "message"
CHANNEL_STORAGE = "storage"

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.5


@dataclass(eq=False)
class _ActiveSession:
    session: AuthorizationSession
    future: "asyncio.Future[AuthorizationResult]"
    handle: Any = None
    listener: Optional[MessageListener] = None
    poll_task: Optional[ScheduledTask] = None
    timeout_task: Optional[ScheduledTask] = None
    settled: bool = False
    closed: bool = False


class PopupLifecycleController:
    """Arbitrates exactly one outcome per consent window."""

    def __init__(
        self,
        *,
        surface: AuthorizationSurface,
        messages: MessageChannel,
        slot: SharedSlot,
        origin: str,
        scheduler: Optional[Scheduler] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._surface = surface
        self._messages = messages
        self._slot = slot
        self._origin = origin.rstrip("/").lower()
        self._scheduler = scheduler or AsyncioScheduler()
        self._timeout_seconds = timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._clock = clock
        self._active: dict[Provider, _ActiveSession] = {}
        self._last: dict[Provider, AuthorizationSession] = {}

    @property
    def timeout_ms(self) -> int:
        return int(self._timeout_seconds * 1000)

    def active_sessions(self) -> dict[Provider, AuthorizationSession]:
        return {provider: active.session for provider, active in self._active.items()}

    def last_session(self, provider: "Provider | str") -> Optional[AuthorizationSession]:
        return self._last.get(Provider.parse(provider))

    async def authorize(
        self,
        *,
        provider: "Provider | str",
        authorization_url: str,
        state_token: str,
        redirect_target: str,
        scopes: Iterable[str] = (),
    ) -> AuthorizationResult:
        """Open the consent window and wait for its single outcome."""
        provider = Provider.parse(provider)
        previous = self._active.get(provider)
        if previous is not None:
            logger.info("Superseding pending %s authorization", provider.value)
            self._attempt_resolve(
                previous,
                error=AuthorizationAbortedError(
                    "Superseded by a newer authorization attempt.", reason="superseded"
                ),
            )

        session = AuthorizationSession(
            provider=provider,
            redirect_target=redirect_target,
            requested_scopes=tuple(scopes),
            state_token=state_token,
            started_at_ms=self._clock(),
        )
        active = _ActiveSession(
            session=session, future=asyncio.get_running_loop().create_future()
        )
        self._active[provider] = active
        self._last[provider] = session

        session.transition(SessionState.OPENING)
        try:
            active.handle = self._surface.open(authorization_url)
            blocked = self._surface.is_blocked(active.handle)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Opening the %s consent window failed: %s", provider.value, exc)
            blocked = True
        if blocked:
            self._attempt_resolve(
                active,
                error=PopupBlockedError(
                    "The authorization window could not be opened; allow pop-ups and retry."
                ),
            )
            return await active.future

        session.transition(SessionState.AWAITING)
        active.listener = functools.partial(self._on_message, active)
        self._messages.add_listener(active.listener)
        active.poll_task = self._scheduler.call_every(
            self._poll_interval, functools.partial(self._poll_slot, active)
        )
        active.timeout_task = self._scheduler.call_later(
            self._timeout_seconds, functools.partial(self._on_timeout, active)
        )
        logger.info("Awaiting %s consent result", provider.value)

        try:
            return await active.future
        except asyncio.CancelledError:
            self._attempt_resolve(
                active, error=AuthorizationAbortedError(reason="cancelled")
            )
            raise

    def abort(self, provider: "Provider | str") -> bool:
        """Cancel the awaiting session for ``provider``, if any."""
        active = self._active.get(Provider.parse(provider))
        if active is None:
            return False
        return self._attempt_resolve(
            active, error=AuthorizationAbortedError(reason="cancelled")
        )

    def abort_all(self) -> None:
        for provider in list(self._active):
            self.abort(provider)

    def _attempt_resolve(
        self,
        active: _ActiveSession,
        *,
        result: Optional[AuthorizationResult] = None,
        error: Optional[BrokerError] = None,
    ) -> bool:
        if active.settled:
            logger.debug(
                "Ignoring late outcome for settled %s session", active.session.provider.value
            )
            return False
        active.settled = True

        if error is None:
            terminal = SessionState.RESOLVED
        elif isinstance(error, AuthorizationTimeoutError):
            terminal = SessionState.TIMED_OUT
        else:
            terminal = SessionState.REJECTED
        active.session.transition(terminal)

        if not active.future.done():
            if error is not None:
                active.future.set_exception(error)
            else:
                active.future.set_result(result)

        self._close(active)

        provider = active.session.provider.value
        if error is None:
            logger.info("%s authorization resolved via %s", provider, result.channel)
        elif error.category is ErrorCategory.FLOW_DEFECT:
            logger.error("%s authorization rejected: %s", provider, error)
        else:
            logger.info("%s authorization ended: %s (%s)", provider, terminal.value, error.code)
        return True

    def _close(self, active: _ActiveSession) -> None:
        if active.closed:
            return
        active.closed = True
        for task in (active.timeout_task, active.poll_task):
            if task is not None:
                task.cancel()
        if active.listener is not None:
            self._messages.remove_listener(active.listener)
        self._purge_slot(active)
        if active.handle is not None:
            self._surface.close(active.handle)
        active.session.transition(SessionState.CLOSED)
        if self._active.get(active.session.provider) is active:
            del self._active[active.session.provider]

    def _purge_slot(self, active: _ActiveSession) -> None:
        try:
            payload = self._slot.read()
        except sqlite3.Error as exc:
            logger.warning("Could not purge relay slot: %s", exc)
            return
        if payload is not None and self._belongs_to(active, payload):
            self._clear_slot()

    def _clear_slot(self) -> None:
        try:
            self._slot.clear()
        except sqlite3.Error as exc:
            logger.warning("Could not clear relay slot: %s", exc)

    def _belongs_to(self, active: _ActiveSession, payload: RelayPayload) -> bool:
        if payload.state is not None and payload.state == active.session.state_token:
            return True
        if payload.for_provider is not None:
            return payload.for_provider is active.session.provider
        if payload.state is not None:
            return not self._state_owned_by_other(active, payload.state)
        # Untagged and stateless: only this session's if no other is pending.
        return all(other is active for other in self._active.values())

    def _state_owned_by_other(self, active: _ActiveSession, state: str) -> bool:
        return any(
            other.session.state_token == state
            for other in self._active.values()
            if other is not active
        )

    def _addressed_to(self, active: _ActiveSession, payload: RelayPayload) -> bool:
        if payload.for_provider is not None:
            return payload.for_provider is active.session.provider
        if payload.state is not None:
            if payload.state == active.session.state_token:
                return True
            return not self._state_owned_by_other(active, payload.state)
        # Untagged and stateless: only unambiguous with a single pending session.
        return len(self._active) == 1

    def _deliver(self, active: _ActiveSession, payload: RelayPayload, channel: str) -> None:
        session = active.session
        if payload.state is not None and payload.state != session.state_token:
            self._attempt_resolve(
                active,
                error=StateMismatchError(
                    f"Callback state does not match the pending {session.provider.value} flow."
                ),
            )
            return
        if payload.is_success:
            self._attempt_resolve(
                active,
                result=AuthorizationResult(
                    provider=session.provider,
                    code=payload.code or "",
                    state=payload.state,
                    channel=channel,
                ),
            )
            return
        self._attempt_resolve(
            active,
            error=AuthorizationDeniedError(
                f"Provider reported an authorization error: {payload.error}",
                code=payload.error or "access_denied",
            ),
        )

    def _on_message(
        self, active: _ActiveSession, message: Mapping[str, Any], origin: str
    ) -> None:
        if active.settled:
            return
        if (origin or "").rstrip("/").lower() != self._origin:
            logger.warning("Ignoring callback message from untrusted origin %s", origin)
            return
        try:
            payload = RelayPayload.from_dict(message, default_timestamp=self._clock())
        except ValueError as exc:
            logger.warning("Ignoring malformed callback message: %s", exc)
            return
        if not self._addressed_to(active, payload):
            return
        self._deliver(active, payload, CHANNEL_MESSAGE)

    def _poll_slot(self, active: _ActiveSession) -> None:
        if active.settled:
            return
        try:
            payload = self._slot.read()
        except sqlite3.Error as exc:
            logger.warning("Relay slot poll failed: %s", exc)
            return
        if payload is None:
            return

        if payload.age_ms(self._clock()) > self.timeout_ms:
            logger.info("Discarding stale %s relay payload", payload.type)
            self._clear_slot()
            return
        if not self._addressed_to(active, payload):
            return
        if payload.timestamp < active.session.started_at_ms:
            logger.info("Discarding relay payload left by an earlier flow")
            self._clear_slot()
            return

        self._clear_slot()
        self._deliver(active, payload, CHANNEL_STORAGE)

    def _on_timeout(self, active: _ActiveSession) -> None:
        self._attempt_resolve(
            active,
            error=AuthorizationTimeoutError(
                f"No authorization result within {self._timeout_seconds:g} seconds; retry."
            ),
        )


__all__ = [
    "CHANNEL_MESSAGE",
    "CHANNEL_STORAGE",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "PopupLifecycleController",
]
