"""The detached window the consent screen is shown in."""

from __future__ import annotations

import logging
import webbrowser
from dataclasses import dataclass
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class AuthorizationSurface(Protocol):
    """Host-controlled window that displays the provider consent screen."""

    def open(self, url: str) -> Optional[Any]:
        ...

    def is_blocked(self, handle: Optional[Any]) -> bool:
        ...

    def close(self, handle: Any) -> None:
        ...


@dataclass
class BrowserHandle:
    url: str
    opened: bool
    closed: bool = False


class BrowserSurface:
    """Opens the consent URL in the user's web browser.

    A browser tab cannot be closed from here; ``close`` only marks the handle
    so late callbacks are recognisably orphaned.
    """

    def __init__(self, browser: Optional[str] = None) -> None:
        self._browser = browser

    def open(self, url: str) -> Optional[BrowserHandle]:
        try:
            controller = webbrowser.get(self._browser)
        except webbrowser.Error as exc:
            logger.warning("No usable browser found: %s", exc)
            return None
        opened = controller.open(url, new=1, autoraise=True)
        return BrowserHandle(url=url, opened=opened)

    def is_blocked(self, handle: Optional[BrowserHandle]) -> bool:
        return handle is None or not handle.opened

    def close(self, handle: BrowserHandle) -> None:
        handle.closed = True


__all__ = ["AuthorizationSurface", "BrowserHandle", "BrowserSurface"]
