"""Browser host abstraction used by the popup login flow.

The opener window, the popup it spawns, cross-window messages and focus
events are modelled as a small interface so the login state machine can
be driven by a real embedding (webview, automation driver) or by a fake
in tests. Listener registration returns an unsubscribe callable; those
callables are collected in a ``SubscriptionSet`` and torn down together.
"""

from __future__ import annotations

import contextlib
import logging

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .types import LoginOutcome, LoginResult


logger = logging.getLogger("orgwatch.auth")

OAUTH_SUCCESS = "oauth_success"
OAUTH_ERROR = "oauth_error"

Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class WindowMessage:
    """A message delivered to the opener via ``postMessage``.

    Attributes
    ----------
    origin : str
        Origin of the sending window as reported by the browser.
    data : Any
        The structured-clone payload.
    """

    origin: str
    data: Any


@dataclass(frozen=True)
class ScreenGeometry:
    """Position and outer size of the opener window."""

    screen_x: int = 0
    screen_y: int = 0
    outer_width: int = 1280
    outer_height: int = 800


class PopupHandle(ABC):
    """Handle to a secondary browsing context."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether the popup has been closed by the user or by script."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the popup. Closing an already closed popup is a no-op."""
        ...


class BrowserHost(ABC):
    """The opener window hosting the application."""

    @property
    @abstractmethod
    def origin(self) -> str:
        """Origin of the opener (scheme://host[:port])."""
        ...

    @abstractmethod
    def screen_geometry(self) -> ScreenGeometry:
        """Current position and outer size of the opener."""
        ...

    @abstractmethod
    def open_popup(self, url: str, name: str, features: str) -> PopupHandle | None:
        """Open ``url`` in a named popup.

        Returns
        -------
        PopupHandle or None
            None when the browser blocked the popup.
        """
        ...

    @abstractmethod
    def add_message_listener(self, callback: Callable[[WindowMessage], None]) -> Unsubscribe:
        """Register a ``message`` event listener on the opener."""
        ...

    @abstractmethod
    def add_focus_listener(self, callback: Callable[[], None]) -> Unsubscribe:
        """Register a ``focus`` event listener on the opener."""
        ...

    @abstractmethod
    def reload(self) -> None:
        """Reload the application page."""
        ...


def popup_features(geometry: ScreenGeometry, width: int = 600, height: int = 700) -> str:
    """Build the ``window.open`` feature string for a popup centred on the opener.

    Parameters
    ----------
    geometry : ScreenGeometry
        The opener's position and outer size.
    width, height : int
        Popup size in pixels.

    Returns
    -------
    str
        Comma-separated window features.
    """
    left = geometry.screen_x + (geometry.outer_width - width) // 2
    top = geometry.screen_y + (geometry.outer_height - height) // 2
    return (
        f"width={width},height={height},left={left},top={top},"
        "toolbar=no,menubar=no,scrollbars=yes,resizable=yes"
    )


def parse_oauth_message(message: WindowMessage, expected_origin: str) -> LoginResult | None:
    """Interpret a cross-window message from the callback page.

    Only same-origin messages with a recognised payload shape count;
    everything else (other frames, extensions, devtools) is ignored.

    Parameters
    ----------
    message : WindowMessage
        The received message.
    expected_origin : str
        The opener's own origin.

    Returns
    -------
    LoginResult or None
        The result the message asserts, or None if it is not ours.
    """
    if message.origin != expected_origin:
        return None
    data = message.data
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    if kind == OAUTH_SUCCESS:
        return LoginResult.succeeded(via="message")
    if kind == OAUTH_ERROR:
        error = data.get("error")
        if not isinstance(error, str) or not error:
            error = "Authentication failed"
        return LoginResult.failed(LoginOutcome.ERROR, error, via="message")
    return None


class SubscriptionSet:
    """A set of teardown callables released together exactly once.

    Anything added after ``close()`` is released immediately, so a late
    registration can never outlive the attempt that owns the set.
    """

    def __init__(self) -> None:
        self._teardowns: list[Unsubscribe] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._teardowns)

    def add(self, teardown: Unsubscribe) -> None:
        if self._closed:
            self._release(teardown)
            return
        self._teardowns.append(teardown)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        teardowns, self._teardowns = self._teardowns, []
        for teardown in reversed(teardowns):
            self._release(teardown)

    @staticmethod
    def _release(teardown: Unsubscribe) -> None:
        try:
            teardown()
        except Exception as exc:
            logger.debug("Subscription teardown failed: %s", exc)


def close_quietly(popup: PopupHandle | None) -> None:
    """Close ``popup`` if it is still open, ignoring host errors."""
    if popup is None:
        return
    with contextlib.suppress(Exception):
        if not popup.closed:
            popup.close()
