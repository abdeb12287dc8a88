"""FastAPI routes for popup OAuth2 + PKCE login and scheduled cleanup.

``create_auth_router`` provides login, callback, status, refresh and logout
under ``/auth``; ``create_cron_router`` provides the bearer-protected
cleanup endpoint under ``/cron``. Both are mounted below ``/api`` by
``create_app``. The current session, if any, is resolved from the cookie
by the app middleware and read here from ``request.state.session``.
"""

# pylint: disable=logging-too-many-args,too-many-statements,too-many-arguments

from __future__ import annotations

import contextlib
import logging

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from ..auth.pkce import PKCEChallenge, generate_state_token
from ..auth.types import ENVIRONMENTS
from ..exceptions import TokenError, TokenRefreshError
from .pages import popup_error_page, popup_success_page
from .security import LoginRateLimiter, bearer_matches, generate_session_id, is_valid_return_url, verify_origin
from .types import OAuthStateRecord, SessionRecord, default_clock


if TYPE_CHECKING:
    from ..config import OrgWatchSettings
    from .base import OAuthStateLedger, SessionStore
    from .janitor import ExpiryJanitor
    from .provider import SalesforceProvider
    from .types import Clock


logger = logging.getLogger("orgwatch.server")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    return bool(value)


def create_auth_router(  # noqa: C901, PLR0915
    ledger: OAuthStateLedger,
    sessions: SessionStore,
    provider: SalesforceProvider,
    settings: OrgWatchSettings,
    rate_limiter: LoginRateLimiter | None = None,
    clock: Clock | None = None,
) -> APIRouter:
    """Create the ``/auth`` router.

    Parameters
    ----------
    ledger : OAuthStateLedger
        Pending OAuth states.
    sessions : SessionStore
        Authenticated sessions.
    provider : SalesforceProvider
        Identity provider client.
    settings : OrgWatchSettings
        Server, auth and cookie configuration.
    rate_limiter : LoginRateLimiter, optional
        Limits login initiation per client address.
    clock : Clock, optional
        Time source for record timestamps.

    Returns
    -------
    APIRouter
        Router with ``/auth/*`` routes.
    """
    router = APIRouter(prefix="/auth", tags=["authentication"])
    server = settings.server
    default_return = settings.auth.default_return_url
    limiter = rate_limiter or LoginRateLimiter(server.login_rate_limit, server.login_rate_window)
    now = clock or default_clock

    def csrf_rejected(request: Request) -> JSONResponse | None:
        if verify_origin(request, server.allowed_origins):
            return None
        logger.warning("Rejected %s %s: origin check failed", request.method, request.url.path)
        return _error(403, "Origin verification failed")

    async def mint_auth_url(
        client_id: str,
        redirect_uri: str,
        environment: str,
        return_url: str,
        popup: bool,
    ) -> str:
        """Record a new OAuth state and build the authorize URL for it."""
        if not is_valid_return_url(return_url, server.allowed_return_paths):
            logger.debug("Return URL %r not allowed; using %s", return_url, default_return)
            return_url = default_return

        pkce = PKCEChallenge.generate()
        record = OAuthStateRecord(
            state=generate_state_token(),
            code_verifier=pkce.verifier,
            environment=environment,
            created_at=now(),
            client_id=client_id,
            redirect_uri=redirect_uri,
            return_url=return_url,
            popup=popup,
            nonce=generate_state_token(16),
        )
        await ledger.put(record)
        return provider.build_authorize_url(
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=record.state,
            pkce=pkce,
            environment=environment,
        )

    @router.post("/login")
    async def auth_login(request: Request) -> Response:
        """Mint an OAuth state and return the authorization URL.

        Body: ``{clientId, redirectUri, environment, returnUrl, popup}``.
        """
        rejected = csrf_rejected(request)
        if rejected is not None:
            return rejected
        if not limiter.is_allowed(_client_ip(request)):
            return _error(429, "Too many login attempts. Please try again later.")

        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        client_id = body.get("clientId")
        redirect_uri = body.get("redirectUri")
        if not client_id or not redirect_uri:
            return _error(400, "clientId and redirectUri are required")
        environment = body.get("environment") or "production"
        if environment not in ENVIRONMENTS:
            return _error(400, "environment must be 'production' or 'sandbox'")

        try:
            auth_url = await mint_auth_url(
                client_id=str(client_id),
                redirect_uri=str(redirect_uri),
                environment=environment,
                return_url=str(body.get("returnUrl") or "/"),
                popup=_truthy(body.get("popup", False)),
            )
        except Exception:
            logger.exception("Login initiation failed")
            return _error(500, "Failed to initiate login")

        logger.info("Login initiated (environment=%s)", environment)
        return JSONResponse(content={"authUrl": auth_url})

    @router.get("/login")
    async def auth_login_redirect(request: Request) -> Response:
        """Redirect variant of login for plain links.

        Query: ``clientId, redirectUri, env, returnUrl, popup``.
        """
        if not limiter.is_allowed(_client_ip(request)):
            return _error(429, "Too many login attempts. Please try again later.")

        params = request.query_params
        client_id = params.get("clientId")
        redirect_uri = params.get("redirectUri")
        if not client_id or not redirect_uri:
            return _error(400, "clientId and redirectUri are required")
        environment = params.get("env") or "production"
        if environment not in ENVIRONMENTS:
            return _error(400, "environment must be 'production' or 'sandbox'")

        try:
            auth_url = await mint_auth_url(
                client_id=client_id,
                redirect_uri=redirect_uri,
                environment=environment,
                return_url=params.get("returnUrl") or "/",
                popup=_truthy(params.get("popup", "false")),
            )
        except Exception:
            logger.exception("Login initiation failed")
            return _error(500, "Failed to initiate login")
        return RedirectResponse(url=auth_url, status_code=302)

    def callback_failure(message: str, record: OAuthStateRecord | None) -> Response:
        if record is not None and record.popup:
            return popup_error_page(message, return_url=record.return_url)
        return RedirectResponse(url=f"{default_return}?error={quote(message)}", status_code=302)

    @router.get("/callback")
    async def auth_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> Response:
        """Complete the authorization-code exchange.

        Consumes the OAuth state exactly once, exchanges the code with the
        stored PKCE verifier, creates the session and sets its cookie.
        """
        if error or not code or not state:
            # Consuming here both invalidates the attempt and tells us
            # whether to answer with the popup page.
            record = await ledger.consume(state) if state else None
            if error:
                logger.warning("Provider returned error: %s", error)
                return callback_failure(error_description or error, record)
            return callback_failure("Missing code or state", record)

        record = await ledger.consume(state)
        if record is None:
            logger.warning("Callback with unknown, replayed or expired state")
            return callback_failure("Invalid or expired state", None)

        try:
            tokens = await provider.exchange_code(
                code=code,
                client_id=record.client_id,
                redirect_uri=record.redirect_uri,
                code_verifier=record.code_verifier,
                environment=record.environment,
            )
        except TokenError as exc:
            logger.warning("Token exchange failed: %s", exc)
            return callback_failure("Token exchange failed", record)
        except Exception:
            logger.exception("Token exchange failed")
            return callback_failure("Authentication failed", record)

        user_info = await provider.get_userinfo(tokens.id_url, tokens.access_token)
        created = now()
        session = SessionRecord(
            session_id=generate_session_id(),
            user_id=tokens.user_id or str(user_info.get("user_id") or ""),
            instance_url=tokens.instance_url,
            environment=record.environment,
            created_at=created,
            last_seen_at=created,
            client_id=record.client_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            username=user_info.get("username") or user_info.get("email") or "",
            display_name=user_info.get("display_name") or user_info.get("name") or "",
            email=user_info.get("email") or "",
            organization_id=tokens.organization_id or str(user_info.get("organization_id") or ""),
            org_name=user_info.get("organization_name") or "",
        )
        await sessions.create(session)

        if record.popup:
            response: Response = popup_success_page(return_url=record.return_url)
        else:
            response = RedirectResponse(url=record.return_url or default_return, status_code=302)

        response.set_cookie(
            key=server.cookie_name,
            value=session.session_id,
            httponly=True,
            secure=server.cookie_secure or request.url.scheme == "https",
            samesite="lax",
            max_age=server.session_max_age,
            path="/",
        )
        logger.info("User %s authenticated (environment=%s)", session.user_id, session.environment)
        return response

    @router.get("/status")
    async def auth_status(request: Request) -> JSONResponse:
        """Report the authoritative session state. Never fails."""
        try:
            session: SessionRecord | None = getattr(request.state, "session", None)
            if session is None:
                return JSONResponse(content={"authenticated": False})
            return JSONResponse(content=session.status_payload())
        except Exception:
            logger.exception("Status check failed")
            return JSONResponse(content={"authenticated": False})

    @router.post("/refresh")
    async def auth_refresh(request: Request) -> JSONResponse:
        """Rotate the access token using the server-held refresh token."""
        rejected = csrf_rejected(request)
        if rejected is not None:
            return rejected

        session: SessionRecord | None = getattr(request.state, "session", None)
        if session is None:
            return _error(401, "Not authenticated")
        if not session.refresh_token:
            return _error(401, "No refresh token available")

        try:
            tokens = await provider.refresh_tokens(
                session.refresh_token, session.client_id, session.environment
            )
        except TokenRefreshError as exc:
            logger.warning("Token refresh failed for user %s: %s", session.user_id, exc)
            return _error(500, "Token refresh failed")

        await sessions.update_tokens(session.session_id, tokens)
        return JSONResponse(content={"success": True})

    @router.post("/logout")
    async def auth_logout(request: Request) -> Response:
        """Destroy the session and clear the cookie."""
        rejected = csrf_rejected(request)
        if rejected is not None:
            return rejected

        session: SessionRecord | None = getattr(request.state, "session", None)
        if session is not None:
            if session.access_token:
                with contextlib.suppress(Exception):
                    await provider.revoke_token(session.access_token, session.environment)
            await sessions.delete(session.session_id)
            logger.info("User %s logged out", session.user_id)

        response = JSONResponse(content={"success": True})
        response.delete_cookie(key=server.cookie_name, path="/")
        return response

    return router


def create_cron_router(janitor: ExpiryJanitor, settings: OrgWatchSettings) -> APIRouter:
    """Create the ``/cron`` router.

    Parameters
    ----------
    janitor : ExpiryJanitor
        Runs the expiry sweeps.
    settings : OrgWatchSettings
        Supplies ``server.cron_secret``; when unset the endpoint is open.

    Returns
    -------
    APIRouter
        Router with ``/cron/cleanup``.
    """
    router = APIRouter(prefix="/cron", tags=["maintenance"])

    @router.get("/cleanup")
    async def cron_cleanup(request: Request) -> JSONResponse:
        """Delete expired OAuth states and idle sessions."""
        secret = settings.server.cron_secret
        if secret and not bearer_matches(request.headers.get("authorization"), secret):
            return _error(401, "Unauthorized")

        try:
            result = await janitor.run()
        except Exception:
            logger.exception("Cleanup failed")
            return _error(500, "Cleanup failed")

        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        return JSONResponse(
            content={
                "success": True,
                "cleanup": result.to_dict(),
                "timestamp": timestamp.replace("+00:00", "Z"),
            }
        )

    return router
