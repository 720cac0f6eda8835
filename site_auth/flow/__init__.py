"""Initiator-side consent flow: popup controller and result relay."""

from .connect import ConnectResult, SiteConnector, TokenExchanger
from .controller import PopupLifecycleController
from .relay import (
    MessageChannel,
    RelayPayload,
    SharedSlot,
    build_callback_payload,
    publish_callback_result,
)
from .scheduling import AsyncioScheduler, ScheduledTask, Scheduler
from .session import AuthorizationResult, AuthorizationSession, SessionState
from .surface import AuthorizationSurface, BrowserSurface

__all__ = [
    "AsyncioScheduler",
    "AuthorizationResult",
    "AuthorizationSession",
    "AuthorizationSurface",
    "BrowserSurface",
    "ConnectResult",
    "MessageChannel",
    "PopupLifecycleController",
    "RelayPayload",
    "ScheduledTask",
    "Scheduler",
    "SessionState",
    "SharedSlot",
    "SiteConnector",
    "TokenExchanger",
    "build_callback_payload",
    "publish_callback_result",
]
