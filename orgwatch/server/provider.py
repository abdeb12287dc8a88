"""Salesforce OAuth2 endpoints for the PKCE web-server flow.

The connected app is a public client: no client secret is sent, the
PKCE verifier held in the OAuth state ledger proves possession instead.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import Any
from urllib.parse import urlencode

import httpx

from ..auth.pkce import PKCEChallenge
from ..config import SalesforceSettings, get_settings
from ..exceptions import TokenError, TokenRefreshError
from ..log import redact_sensitive_data
from .types import OAuthTokenSet


logger = logging.getLogger("orgwatch.server")


def _issued_at(raw: dict[str, Any]) -> float:
    """Salesforce reports ``issued_at`` as epoch milliseconds in a string."""
    value = raw.get("issued_at")
    try:
        return float(value) / 1000.0
    except (TypeError, ValueError):
        return time.time()


def _token_set(raw: dict[str, Any], fallback_refresh: str | None = None) -> OAuthTokenSet:
    return OAuthTokenSet(
        access_token=raw["access_token"],
        refresh_token=raw.get("refresh_token") or fallback_refresh,
        instance_url=raw.get("instance_url", ""),
        id_url=raw.get("id", ""),
        issued_at=_issued_at(raw),
        token_type=raw.get("token_type", "Bearer"),
        scope=raw.get("scope", ""),
        raw=raw,
    )


class SalesforceProvider:
    """Talks to ``login.salesforce.com`` / ``test.salesforce.com``.

    Parameters
    ----------
    settings : SalesforceSettings, optional
        Login hosts, scopes and timeout. Defaults to the global settings.
    http_client : httpx.AsyncClient, optional
        Pre-configured client (e.g. built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: SalesforceSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings().salesforce
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def login_host(self, environment: str) -> str:
        if environment == "sandbox":
            return self.settings.sandbox_login_url.rstrip("/")
        return self.settings.production_login_url.rstrip("/")

    def authorize_url(self, environment: str) -> str:
        return f"{self.login_host(environment)}/services/oauth2/authorize"

    def token_url(self, environment: str) -> str:
        return f"{self.login_host(environment)}/services/oauth2/token"

    def revoke_url(self, environment: str) -> str:
        return f"{self.login_host(environment)}/services/oauth2/revoke"

    def build_authorize_url(
        self,
        client_id: str,
        redirect_uri: str,
        state: str,
        pkce: PKCEChallenge,
        environment: str = "production",
    ) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        client_id : str
            Connected-app consumer key.
        redirect_uri : str
            The callback URL registered on the connected app.
        state : str
            The OAuth state token recorded in the ledger.
        pkce : PKCEChallenge
            Challenge pair; only the challenge leaves the server.
        environment : str
            Selects the login host.

        Returns
        -------
        str
            The full authorization URL.
        """
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": self.settings.scopes,
            "state": state,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        return f"{self.authorize_url(environment)}?{urlencode(params)}"

    async def exchange_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: str,
        environment: str = "production",
    ) -> OAuthTokenSet:
        """Exchange an authorization code and PKCE verifier for tokens.

        Raises
        ------
        TokenError
            If the provider rejects the exchange or cannot be reached.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        try:
            client = await self._get_client()
            resp = await client.post(
                self.token_url(environment),
                data=data,
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            raw = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Token exchange failed: {exc.response.status_code}"
            raise TokenError(
                msg, environment=environment, status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise TokenError(msg, environment=environment) from exc
        except ValueError as exc:
            raise TokenError("Token response was not JSON", environment=environment) from exc

        if not isinstance(raw, dict) or "access_token" not in raw:
            logger.debug("Unexpected token response: %s", redact_sensitive_data(raw))
            raise TokenError("Token response missing access_token", environment=environment)
        return _token_set(raw)

    async def refresh_tokens(
        self, refresh_token: str, client_id: str, environment: str = "production"
    ) -> OAuthTokenSet:
        """Rotate the access token.

        Salesforce does not rotate refresh tokens by default, so the
        existing one is carried over when the response omits it.

        Raises
        ------
        TokenRefreshError
            If the refresh fails.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        }
        try:
            client = await self._get_client()
            resp = await client.post(
                self.token_url(environment),
                data=data,
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            raw = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Token refresh failed: {exc.response.status_code}"
            raise TokenRefreshError(
                msg, environment=environment, status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"Token refresh request failed: {exc}"
            raise TokenRefreshError(msg, environment=environment) from exc
        except ValueError as exc:
            raise TokenRefreshError(
                "Refresh response was not JSON", environment=environment
            ) from exc

        if not isinstance(raw, dict) or "access_token" not in raw:
            logger.debug("Unexpected refresh response: %s", redact_sensitive_data(raw))
            raise TokenRefreshError("Refresh response missing access_token", environment=environment)
        return _token_set(raw, fallback_refresh=refresh_token)

    async def get_userinfo(self, id_url: str, access_token: str) -> dict[str, Any]:
        """Fetch the identity record behind the token's ``id`` URL.

        Returns an empty dict when the lookup fails; a missing profile
        never blocks a login.
        """
        if not id_url:
            return {}
        try:
            client = await self._get_client()
            resp = await client.get(id_url, headers={"Authorization": f"Bearer {access_token}"})
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch user info: %s", exc)
            return {}
        if not resp.is_success:
            logger.warning("User info request returned %s", resp.status_code)
            return {}
        try:
            info = resp.json()
        except ValueError:
            logger.warning("User info response was not JSON")
            return {}
        if not isinstance(info, dict):
            logger.warning("User info response was not a JSON object")
            return {}
        return info

    async def revoke_token(self, token: str, environment: str = "production") -> bool:
        """Revoke a token at the provider.

        Returns
        -------
        bool
            True if revocation succeeded.
        """
        try:
            client = await self._get_client()
            resp = await client.post(self.revoke_url(environment), data={"token": token})
        except httpx.HTTPError:
            return False
        return resp.is_success
