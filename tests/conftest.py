"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from orgwatch.auth.browser import BrowserHost, PopupHandle, ScreenGeometry, WindowMessage
from orgwatch.auth.credentials import CredentialStore
from orgwatch.auth.orchestrator import AuthOrchestrator
from orgwatch.auth.storage import MemoryStorage
from orgwatch.auth.types import AuthStatus, OrgCredentials
from orgwatch.config import AuthSettings, clear_settings


APP_ORIGIN = "http://localhost:3000"
AUTH_URL = "https://test.salesforce.com/services/oauth2/authorize?state=abc"


# ── Fakes ────────────────────────────────────────────────────────────


class FakeClock:
    """Settable time source for expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePopup(PopupHandle):
    """Popup handle whose ``closed`` flag the test controls."""

    def __init__(self, url: str, name: str, features: str) -> None:
        self.url = url
        self.name = name
        self.features = features
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True

    def user_close(self) -> None:
        """Simulate the user closing the window."""
        self._closed = True


class FakeBrowserHost(BrowserHost):
    """In-memory opener window."""

    def __init__(self, origin: str = APP_ORIGIN, block_popups: bool = False) -> None:
        self._origin = origin
        self.block_popups = block_popups
        self.geometry = ScreenGeometry(screen_x=100, screen_y=50, outer_width=1400, outer_height=900)
        self.open_attempts = 0
        self.popups: list[FakePopup] = []
        self.message_listeners: list[Callable[[WindowMessage], None]] = []
        self.focus_listeners: list[Callable[[], None]] = []
        self.reloads = 0

    @property
    def origin(self) -> str:
        return self._origin

    def screen_geometry(self) -> ScreenGeometry:
        return self.geometry

    def open_popup(self, url: str, name: str, features: str) -> FakePopup | None:
        self.open_attempts += 1
        if self.block_popups:
            return None
        popup = FakePopup(url, name, features)
        self.popups.append(popup)
        return popup

    def add_message_listener(self, callback: Callable[[WindowMessage], None]) -> Callable[[], None]:
        self.message_listeners.append(callback)
        return lambda: self.message_listeners.remove(callback)

    def add_focus_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        self.focus_listeners.append(callback)
        return lambda: self.focus_listeners.remove(callback)

    def reload(self) -> None:
        self.reloads += 1

    # Test drivers

    def post_message(self, data: Any, origin: str | None = None) -> None:
        message = WindowMessage(origin=origin or self._origin, data=data)
        for listener in list(self.message_listeners):
            listener(message)

    def focus(self) -> None:
        for listener in list(self.focus_listeners):
            listener()

    @property
    def popup(self) -> FakePopup:
        return self.popups[-1]


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch):
    """Isolate every test from cached settings and scheduler env vars."""
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.delenv("ORGWATCH_CONFIG_FILE", raising=False)
    clear_settings()
    yield
    clear_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_settings() -> AuthSettings:
    """Auth settings with timings short enough for tests."""
    return AuthSettings(
        close_poll_interval=0.01,
        close_grace_period=0.05,
        focus_settle_delay=0.01,
    )


@pytest.fixture
def org_credentials() -> OrgCredentials:
    return OrgCredentials(
        client_id="3MVG9abcdefghijklmnop",
        redirect_uri="https://app.example.com/api/auth/callback",
        environment="sandbox",
        org_name="Acme",
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def credentials(storage: MemoryStorage, org_credentials: OrgCredentials) -> CredentialStore:
    """Credential store with the Acme org already registered."""
    store = CredentialStore(storage)
    store.store(org_credentials)
    return store


@pytest.fixture
def host() -> FakeBrowserHost:
    return FakeBrowserHost()


@pytest.fixture
def auth_client() -> MagicMock:
    """Mock AuthApiClient. The server reports no session by default."""
    client = MagicMock()
    client.request_auth_url = AsyncMock(return_value=AUTH_URL)
    client.get_status = AsyncMock(return_value=AuthStatus(authenticated=False))
    client.refresh = AsyncMock()
    client.logout = AsyncMock()
    return client


@pytest.fixture
def orchestrator(
    host: FakeBrowserHost,
    auth_client: MagicMock,
    credentials: CredentialStore,
    auth_settings: AuthSettings,
) -> AuthOrchestrator:
    return AuthOrchestrator(host, auth_client, credentials, settings=auth_settings)


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Return a coroutine function that yields to the loop until a predicate holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait
