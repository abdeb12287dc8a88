"""Process-wide authentication truth for the dashboard.

``SessionState`` is the single owned record the rest of the application
reads: authenticated flag, user, environment, instance URL, error and a
monotonically increasing refresh key. It is initialised from persisted
storage plus one status round trip, mutated only by login resolution,
logout and explicit refreshes, and torn down on logout.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes

from __future__ import annotations

import logging

from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from ..config import AuthSettings, get_settings
from ..exceptions import ApiError, StorageError
from .cache import DataCache
from .types import ENVIRONMENTS, ConnectionStatus, LoginOutcome, LoginResult, SessionSnapshot, UserInfo


if TYPE_CHECKING:
    from .browser import BrowserHost
    from .client import AuthApiClient
    from .credentials import CredentialStore
    from .orchestrator import AuthOrchestrator


logger = logging.getLogger("orgwatch.auth")

Listener = Callable[[SessionSnapshot], None]

LOGIN_FAILED_MESSAGE = "Login failed. Please try again."


class SessionState:
    """Owned application session state with typed mutation methods.

    Parameters
    ----------
    client : AuthApiClient
        Client for the auth endpoints.
    credentials : CredentialStore
        Persisted org credentials, environment and selected org.
    orchestrator : AuthOrchestrator
        Runs popup logins.
    host : BrowserHost, optional
        Needed only when ``reload_on_login`` is set.
    cache : DataCache, optional
        Cache for dependent data fetchers; one is created if omitted.
    settings : AuthSettings, optional
        Supplies the default environment.
    reload_on_login : bool
        Reload the host page after a successful login instead of
        re-synchronising in place.
    """

    def __init__(
        self,
        client: AuthApiClient,
        credentials: CredentialStore,
        orchestrator: AuthOrchestrator,
        host: BrowserHost | None = None,
        cache: DataCache | None = None,
        settings: AuthSettings | None = None,
        reload_on_login: bool = False,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.orchestrator = orchestrator
        self.host = host
        self.cache = cache or DataCache()
        self.reload_on_login = reload_on_login
        settings = settings or get_settings().auth

        self.authenticated = False
        self.is_loading = True
        self.user: UserInfo | None = None
        self.environment: str = settings.default_environment
        self.instance_url: str | None = None
        self.org_credentials_id: str | None = None
        self.selected_org_id: str | None = None
        self.error: str | None = None
        self.refresh_key = 0
        self._logging_in = False
        self._listeners: list[Listener] = []

    # ── Derived state ────────────────────────────────────────────────

    @property
    def is_logging_in(self) -> bool:
        return self._logging_in or self.orchestrator.is_logging_in

    @property
    def status(self) -> ConnectionStatus:
        """Value of the navigation status indicator."""
        if self.is_logging_in:
            return ConnectionStatus.CONNECTING
        if self.error:
            return ConnectionStatus.ERROR
        if not self.authenticated:
            return ConnectionStatus.DISCONNECTED
        return ConnectionStatus.OPERATIONAL

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            authenticated=self.authenticated,
            is_loading=self.is_loading,
            is_logging_in=self.is_logging_in,
            user=self.user,
            environment=self.environment,
            instance_url=self.instance_url,
            org_credentials_id=self.org_credentials_id,
            selected_org_id=self.selected_org_id,
            error=self.error,
            refresh_key=self.refresh_key,
            status=self.status,
        )

    # ── Change notification ─────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a snapshot after every change.

        Returns
        -------
        callable
            Removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        self.cache.rescope(self.authenticated, self.refresh_key)
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")

    # ── Lifecycle ───────────────────────────────────────────────────

    async def initialize(self, callback_error: str | None = None) -> bool:
        """Load persisted preferences, then ask the server for the session.

        Parameters
        ----------
        callback_error : str, optional
            ``error`` query parameter left by a non-popup callback redirect.

        Returns
        -------
        bool
            Whether the server reports an authenticated session.
        """
        self.environment = self.credentials.get_environment() or self.environment
        self.selected_org_id = self.credentials.get_selected_org_id()
        if callback_error:
            self.error = callback_error
        try:
            return await self.fetch_status()
        finally:
            self.is_loading = False
            self._changed()

    async def fetch_status(self) -> bool:
        """Synchronise with the authoritative status endpoint.

        Failures count as "not logged in" and never surface as an error.

        Returns
        -------
        bool
            The authenticated flag after synchronising.
        """
        try:
            status = await self.client.get_status()
        except (ApiError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to check auth status: %s", exc)
            self.authenticated = False
            self._changed()
            return False

        self.authenticated = status.authenticated
        if status.authenticated and status.user is not None:
            self.user = status.user
            self.instance_url = status.instance_url
            if status.environment:
                self.environment = status.environment
                self._persist(self.credentials.set_environment, status.environment)
            if status.org_credentials_id:
                self.org_credentials_id = status.org_credentials_id
                self.selected_org_id = status.org_credentials_id
                self._persist(self.credentials.set_selected_org_id, status.org_credentials_id)
        self._changed()
        return self.authenticated

    async def login(self, org_id: str | None = None) -> LoginResult | None:
        """Run a popup login and reconcile the outcome with the server.

        Parameters
        ----------
        org_id : str, optional
            Overrides the selected org (auto-login after registration).

        Returns
        -------
        LoginResult or None
            The attempt's result, or None if one was already in flight.
        """
        if self.is_logging_in:
            return None
        self.error = None
        org_to_use = org_id or self.selected_org_id
        self._logging_in = True
        self._changed()
        try:
            result = await self.orchestrator.login(
                self.environment, org_to_use, already_authenticated=self.authenticated
            )
        except Exception:
            logger.exception("Login attempt failed unexpectedly")
            self._logging_in = False
            result = LoginResult.failed(LoginOutcome.ERROR, LOGIN_FAILED_MESSAGE)
            self.error = result.error
            self._changed()
            return result
        finally:
            self._logging_in = False
        if result is None:
            self._changed()
            return None

        if result.success:
            await self._resync()
        elif result.outcome is LoginOutcome.CANCELLED:
            self.error = result.error
        elif await self._authenticated_despite_error():
            logger.info("Server reports a session despite login error %r", result.error)
            await self._resync()
        else:
            self.error = result.error
        self._changed()
        return result

    async def retry_login(self) -> LoginResult | None:
        """Dismiss the current error and start a fresh login."""
        self.dismiss_error()
        return await self.login()

    async def logout(self) -> None:
        """Log out on the server, then clear local session state regardless."""
        try:
            await self.client.logout()
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning("Server logout failed; clearing local session anyway: %s", exc)
        finally:
            self.authenticated = False
            self.user = None
            self.instance_url = None
            self.org_credentials_id = None
            self.cache.invalidate()
            self._changed()

    # ── Mutations ───────────────────────────────────────────────────

    def set_environment(self, environment: str) -> bool:
        """Change the target environment. Ignored while authenticated.

        Returns
        -------
        bool
            Whether the environment was changed.

        Raises
        ------
        ValueError
            If ``environment`` is not a known environment.
        """
        if self.authenticated:
            logger.debug("Environment is pinned by the active session")
            return False
        if environment not in ENVIRONMENTS:
            msg = f"Unknown environment: {environment!r}"
            raise ValueError(msg)
        self._persist(self.credentials.set_environment, environment)
        self.environment = environment
        self._changed()
        return True

    def set_selected_org_id(self, org_id: str | None) -> bool:
        """Change the selected org. Ignored while authenticated."""
        if self.authenticated:
            logger.debug("Selected org is pinned by the active session")
            return False
        self._persist(self.credentials.set_selected_org_id, org_id)
        self.selected_org_id = org_id
        self._changed()
        return True

    def trigger_refresh(self) -> int:
        """Bump the refresh key so dependent fetchers refetch."""
        self.refresh_key += 1
        self._changed()
        return self.refresh_key

    def dismiss_error(self) -> None:
        if self.error is not None:
            self.error = None
            self._changed()

    # ── Internals ───────────────────────────────────────────────────

    async def _resync(self) -> None:
        if self.reload_on_login and self.host is not None:
            self.host.reload()
            return
        await self.fetch_status()
        self.trigger_refresh()

    async def _authenticated_despite_error(self) -> bool:
        try:
            status = await self.client.get_status()
        except (ApiError, httpx.HTTPError, ValueError):
            return False
        return status.authenticated

    @staticmethod
    def _persist(setter: Callable[[str], None], value: str | None) -> None:
        try:
            setter(value)  # type: ignore[arg-type]
        except (StorageError, ValueError) as exc:
            logger.warning("Could not persist session preference: %s", exc)


