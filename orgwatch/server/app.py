"""FastAPI application factory for the OrgWatch auth server."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request

from ..config import OrgWatchSettings, get_settings
from ..log import configure as configure_logging
from .janitor import ExpiryJanitor
from .memory import MemoryOAuthStateLedger, MemorySessionStore
from .provider import SalesforceProvider
from .routes import create_auth_router, create_cron_router
from .types import default_clock


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .base import OAuthStateLedger, SessionStore
    from .types import Clock


logger = logging.getLogger("orgwatch.server")


class SessionMiddleware:
    """ASGI middleware that resolves the session cookie.

    Places the ``SessionRecord`` (or None) in ``request.state.session`` and
    marks the session as seen, so idle expiry counts from the last request.

    Parameters
    ----------
    app : ASGI application
        The wrapped application.
    sessions : SessionStore
        Session lookup.
    cookie_name : str
        Name of the session cookie.
    untracked_prefixes : tuple of str
        Paths that never resolve or touch a session (e.g. the cron sweep).
    """

    def __init__(
        self,
        app: Any,
        sessions: SessionStore,
        cookie_name: str,
        untracked_prefixes: tuple[str, ...] = ("/api/cron",),
    ) -> None:
        self.app = app
        self.sessions = sessions
        self.cookie_name = cookie_name
        self.untracked_prefixes = untracked_prefixes

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        """Handle ASGI request."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        state["session"] = None
        path = scope.get("path", "")
        if not path.startswith(self.untracked_prefixes):
            session_id = Request(scope).cookies.get(self.cookie_name)
            if session_id:
                state["session"] = await self._resolve(session_id)

        await self.app(scope, receive, send)

    async def _resolve(self, session_id: str) -> Any:
        try:
            session = await self.sessions.get(session_id)
            if session is not None:
                await self.sessions.touch(session_id)
        except Exception as exc:
            logger.warning("Session lookup failed: %s", exc)
            return None
        return session


def build_stores(
    settings: OrgWatchSettings, clock: Clock | None = None
) -> tuple[OAuthStateLedger, SessionStore]:
    """Create the OAuth state ledger and session store for the configured backend."""
    deploy = settings.deploy
    if deploy.state_backend == "redis":
        from .redis import RedisOAuthStateLedger, RedisSessionStore

        ledger: OAuthStateLedger = RedisOAuthStateLedger(
            redis_url=deploy.redis_url,
            prefix=deploy.redis_prefix,
            max_age=deploy.state_ttl,
            clock=clock,
        )
        sessions: SessionStore = RedisSessionStore(
            redis_url=deploy.redis_url,
            prefix=deploy.redis_prefix,
            idle_ttl=deploy.session_idle_ttl,
            clock=clock,
        )
        return ledger, sessions
    return (
        MemoryOAuthStateLedger(max_age=deploy.state_ttl, clock=clock),
        MemorySessionStore(clock=clock),
    )


def build_janitor(
    settings: OrgWatchSettings,
    ledger: OAuthStateLedger,
    sessions: SessionStore,
    clock: Clock | None = None,
) -> ExpiryJanitor:
    return ExpiryJanitor(
        ledger,
        sessions,
        state_max_age=settings.deploy.state_ttl,
        session_idle_max=settings.deploy.session_idle_ttl,
        clock=clock,
    )


def create_app(
    settings: OrgWatchSettings | None = None,
    *,
    ledger: OAuthStateLedger | None = None,
    sessions: SessionStore | None = None,
    provider: SalesforceProvider | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create the auth server application.

    Parameters
    ----------
    settings : OrgWatchSettings, optional
        Configuration. Defaults to the global settings.
    ledger : OAuthStateLedger, optional
        Overrides the configured OAuth state backend.
    sessions : SessionStore, optional
        Overrides the configured session backend.
    provider : SalesforceProvider, optional
        Overrides the identity provider client.
    clock : Clock, optional
        Time source shared by stores, routes and janitor.

    Returns
    -------
    FastAPI
        The application with routes mounted under ``/api``.
    """
    settings = settings or get_settings()
    clock = clock or default_clock
    configure_logging(settings.log.level, settings.log.format)

    if ledger is None or sessions is None:
        default_ledger, default_sessions = build_stores(settings, clock)
        ledger = ledger or default_ledger
        sessions = sessions or default_sessions
    provider = provider or SalesforceProvider(settings.salesforce)
    janitor = build_janitor(settings, ledger, sessions, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pylint: disable=unused-argument
        logger.info("Auth server starting (state backend: %s)", settings.deploy.state_backend)
        yield
        await provider.close()
        for store in (ledger, sessions):
            close = getattr(store, "close", None)
            if close is not None:
                await close()

    app = FastAPI(title="OrgWatch", lifespan=lifespan)
    app.add_middleware(
        SessionMiddleware, sessions=sessions, cookie_name=settings.server.cookie_name
    )
    app.include_router(
        create_auth_router(ledger, sessions, provider, settings, clock=clock), prefix="/api"
    )
    app.include_router(create_cron_router(janitor, settings), prefix="/api")

    app.state.settings = settings
    app.state.ledger = ledger
    app.state.sessions = sessions
    app.state.janitor = janitor
    return app
