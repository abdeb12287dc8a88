"""Popup OAuth2 + PKCE login state machine.

``AuthOrchestrator.login`` drives one attempt through
``IDLE -> INITIATING -> POPUP_OPENING -> ARMED -> RESOLVED``. Once armed,
three independent signals race to resolve the attempt:

- a same-origin ``message`` from the callback page (authoritative),
- the popup reporting ``closed``, honoured only after a grace period so
  a message delivered late can still win,
- the opener regaining focus, after which the status endpoint is
  re-queried and an authenticated answer counts as a deferred success.

The first writer wins; every listener and timer belongs to one
``SubscriptionSet`` that is released as soon as the attempt resolves.
All of this runs on the asyncio event loop, so the guard check and the
resolution happen without interleaving.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from ..config import AuthSettings, get_settings
from ..exceptions import ApiError
from .browser import SubscriptionSet, WindowMessage, close_quietly, parse_oauth_message, popup_features
from .types import LoginOutcome, LoginPhase, LoginResult


if TYPE_CHECKING:
    from .browser import BrowserHost, PopupHandle
    from .client import AuthApiClient
    from .credentials import CredentialStore


logger = logging.getLogger("orgwatch.auth")

NOT_CONFIGURED_MESSAGE = (
    "No org credentials stored. Please configure your Salesforce connected app."
)
POPUP_BLOCKED_MESSAGE = "Popup was blocked. Please allow popups for this site."
WINDOW_CLOSED_MESSAGE = "Login window was closed"
CONNECTION_ERROR_MESSAGE = "Unable to reach the server. Check your connection and try again."


@dataclass
class _PendingLogin:
    """Per-attempt resources. Never shared between attempts."""

    future: asyncio.Future[LoginResult]
    subscriptions: SubscriptionSet = field(default_factory=SubscriptionSet)
    popup: PopupHandle | None = None
    poll_handle: asyncio.TimerHandle | None = None
    grace_handle: asyncio.TimerHandle | None = None
    focus_handle: asyncio.TimerHandle | None = None
    focus_task: asyncio.Task[None] | None = None

    @property
    def resolved(self) -> bool:
        return self.future.done()

    def resolve(self, result: LoginResult) -> bool:
        """Set the outcome unless one is already set. Returns True if this call won."""
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def cancel_timers(self) -> None:
        for handle in (self.poll_handle, self.grace_handle, self.focus_handle):
            if handle is not None:
                handle.cancel()
        if self.focus_task is not None and not self.focus_task.done():
            self.focus_task.cancel()


class AuthOrchestrator:
    """Runs popup logins against the OrgWatch auth endpoints.

    The orchestrator never touches session state itself. A successful
    result means "the server should now have a session"; callers confirm
    that through the status endpoint.

    Parameters
    ----------
    host : BrowserHost
        The opener window.
    client : AuthApiClient
        Client for the auth endpoints.
    credentials : CredentialStore
        Source of the connected-app parameters.
    settings : AuthSettings, optional
        Popup size and timing. Defaults to the global settings.
    """

    def __init__(
        self,
        host: BrowserHost,
        client: AuthApiClient,
        credentials: CredentialStore,
        settings: AuthSettings | None = None,
    ) -> None:
        self.host = host
        self.client = client
        self.credentials = credentials
        self.settings = settings or get_settings().auth
        self._phase = LoginPhase.IDLE
        self._pending: _PendingLogin | None = None

    @property
    def phase(self) -> LoginPhase:
        """Phase of the current (or most recent) attempt."""
        return self._phase

    @property
    def is_logging_in(self) -> bool:
        """Whether an attempt is in flight."""
        return self._pending is not None

    async def login(
        self,
        environment: str | None = None,
        org_id: str | None = None,
        *,
        already_authenticated: bool = False,
    ) -> LoginResult | None:
        """Run one popup login attempt to completion.

        Parameters
        ----------
        environment : str, optional
            Target environment; defaults to the stored credentials'.
        org_id : str, optional
            Org selected in the UI. The PKCE flow is stateless with respect
            to registered orgs, so it is only logged here.
        already_authenticated : bool
            Whether the caller already holds a session. The focus fallback
            is not armed in that case, since the status endpoint would
            report the existing session rather than a new one.

        Returns
        -------
        LoginResult or None
            Exactly one result per attempt. None if another attempt was
            already in flight, in which case nothing was opened or armed.
        """
        if self._pending is not None:
            logger.debug("Login already in progress; ignoring request")
            return None

        pending = _PendingLogin(future=asyncio.get_running_loop().create_future())
        pending.subscriptions.add(pending.cancel_timers)
        self._pending = pending
        try:
            result = await self._attempt(pending, environment, org_id, already_authenticated)
        finally:
            pending.subscriptions.close()
            close_quietly(pending.popup)
            self._pending = None
            self._phase = LoginPhase.RESOLVED

        if result.success:
            logger.info("Login succeeded (via %s)", result.via)
        else:
            logger.info("Login ended: %s (%s)", result.outcome.value, result.error)
        return result

    async def _attempt(
        self,
        pending: _PendingLogin,
        environment: str | None,
        org_id: str | None,
        already_authenticated: bool,
    ) -> LoginResult:
        credentials = self.credentials.get()
        if credentials is None:
            return LoginResult.failed(LoginOutcome.NOT_CONFIGURED, NOT_CONFIGURED_MESSAGE)

        self._phase = LoginPhase.INITIATING
        target_env = environment or credentials.environment
        logger.debug("Requesting authorization URL (environment=%s, org=%s)", target_env, org_id)
        try:
            auth_url = await self.client.request_auth_url(
                credentials,
                environment=target_env,
                return_url=self.settings.default_return_url,
                popup=True,
            )
        except ApiError as exc:
            return LoginResult.failed(LoginOutcome.SERVER_ERROR, exc.message)
        except httpx.HTTPError as exc:
            logger.warning("Login initiation failed: %s", exc)
            return LoginResult.failed(LoginOutcome.SERVER_ERROR, CONNECTION_ERROR_MESSAGE)

        self._phase = LoginPhase.POPUP_OPENING
        features = popup_features(
            self.host.screen_geometry(), self.settings.popup_width, self.settings.popup_height
        )
        popup = self.host.open_popup(auth_url, self.settings.popup_name, features)
        if popup is None:
            return LoginResult.failed(LoginOutcome.POPUP_BLOCKED, POPUP_BLOCKED_MESSAGE)
        pending.popup = popup

        self._phase = LoginPhase.ARMED
        self._arm(pending, focus_fallback=not already_authenticated)
        return await pending.future

    def _arm(self, pending: _PendingLogin, focus_fallback: bool) -> None:
        """Attach the message listener, close poll and focus fallback."""
        loop = asyncio.get_running_loop()
        origin = self.host.origin
        popup = pending.popup
        assert popup is not None

        def on_message(message: WindowMessage) -> None:
            result = parse_oauth_message(message, origin)
            if result is not None and pending.resolve(result):
                logger.debug("Login resolved by callback message")

        def on_grace_expired() -> None:
            if pending.resolve(
                LoginResult.failed(LoginOutcome.CANCELLED, WINDOW_CLOSED_MESSAGE, via="closed")
            ):
                logger.debug("Popup closed with no message within %.2fs", self.settings.close_grace_period)

        def poll_closed() -> None:
            if pending.resolved:
                return
            if popup.closed:
                pending.poll_handle = None
                pending.grace_handle = loop.call_later(
                    self.settings.close_grace_period, on_grace_expired
                )
                return
            pending.poll_handle = loop.call_later(self.settings.close_poll_interval, poll_closed)

        async def check_status() -> None:
            try:
                status = await self.client.get_status()
            except (ApiError, httpx.HTTPError) as exc:
                logger.debug("Focus status check failed: %s", exc)
                return
            if status.authenticated and pending.resolve(LoginResult.succeeded(via="focus")):
                logger.debug("Login resolved by focus status check")

        def start_status_check() -> None:
            pending.focus_handle = None
            if pending.resolved:
                return
            if pending.focus_task is not None and not pending.focus_task.done():
                return
            pending.focus_task = loop.create_task(check_status())

        def on_focus() -> None:
            if pending.resolved or pending.focus_handle is not None:
                return
            pending.focus_handle = loop.call_later(
                self.settings.focus_settle_delay, start_status_check
            )

        pending.subscriptions.add(self.host.add_message_listener(on_message))
        if focus_fallback:
            pending.subscriptions.add(self.host.add_focus_listener(on_focus))
        pending.poll_handle = loop.call_later(self.settings.close_poll_interval, poll_closed)
