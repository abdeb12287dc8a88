"""HTTP client for the OrgWatch auth endpoints.

Holds the session cookie in the ``httpx.AsyncClient`` cookie jar, so the
status, refresh and logout calls act on whatever session the popup
callback established for this client.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any

import httpx

from ..exceptions import ApiError, TokenRefreshError
from .types import AuthStatus, OrgCredentials


logger = logging.getLogger("orgwatch.auth")


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    """Decode a JSON object body. None for HTML, arrays and other bodies."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _error_message(response: httpx.Response, default: str) -> str:
    """Pull the ``error`` field out of a JSON error body."""
    body = _json_object(response)
    if body is not None and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    return default


class AuthApiClient:
    """Async client for ``/api/auth/*``.

    Parameters
    ----------
    base_url : str
        Origin of the OrgWatch server (e.g. ``https://app.example.com``).
    api_prefix : str
        Path prefix of the API routes (default ``/api``).
    http_client : httpx.AsyncClient, optional
        Pre-configured client (e.g. one built on ``httpx.MockTransport``).
    timeout : float
        Request timeout in seconds when a client is created here.
    """

    def __init__(
        self,
        base_url: str = "",
        api_prefix: str = "/api",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    async def request_auth_url(
        self,
        credentials: OrgCredentials,
        environment: str | None = None,
        return_url: str = "/dashboard",
        popup: bool = True,
    ) -> str:
        """Ask the server to mint an OAuth state and return the authorize URL.

        Parameters
        ----------
        credentials : OrgCredentials
            Stored connected-app parameters.
        environment : str, optional
            Overrides the environment stored with the credentials.
        return_url : str
            Where a non-popup login lands afterwards.
        popup : bool
            Whether the callback should answer with the popup page.

        Returns
        -------
        str
            The identity provider authorization URL.

        Raises
        ------
        ApiError
            If the server answers non-2xx, with a body that is not a JSON
            object, or without ``authUrl``.
        httpx.HTTPError
            On transport failure.
        """
        client = await self._get_client()
        body = {
            "clientId": credentials.client_id,
            "redirectUri": credentials.redirect_uri,
            "environment": environment or credentials.environment,
            "returnUrl": return_url,
            "popup": popup,
        }
        resp = await client.post(self._url("/auth/login"), json=body)
        if not resp.is_success:
            raise ApiError(
                _error_message(resp, "Failed to initiate login"), status_code=resp.status_code
            )
        body = _json_object(resp)
        if body is None:
            raise ApiError("Unexpected response from the login endpoint", status_code=resp.status_code)
        auth_url = body.get("authUrl")
        if not auth_url or not isinstance(auth_url, str):
            raise ApiError("Server did not return an authorization URL", status_code=resp.status_code)
        return auth_url

    async def get_status(self) -> AuthStatus:
        """Read the authoritative session status.

        Raises
        ------
        ApiError
            On a non-2xx response or a body that is not a JSON object.
        httpx.HTTPError
            On transport failure.
        """
        client = await self._get_client()
        resp = await client.get(self._url("/auth/status"))
        if not resp.is_success:
            raise ApiError(_error_message(resp, "Status check failed"), status_code=resp.status_code)
        body = _json_object(resp)
        if body is None:
            raise ApiError("Unexpected response from the status endpoint", status_code=resp.status_code)
        return AuthStatus.from_dict(body)

    async def refresh(self) -> None:
        """Rotate the server-held access token.

        Raises
        ------
        TokenRefreshError
            If the server refuses or cannot refresh.
        """
        client = await self._get_client()
        try:
            resp = await client.post(self._url("/auth/refresh"))
        except httpx.HTTPError as exc:
            raise TokenRefreshError("Token refresh failed") from exc
        if not resp.is_success:
            raise TokenRefreshError(
                _error_message(resp, "Token refresh failed"), status_code=resp.status_code
            )

    async def logout(self) -> None:
        """Destroy the server session.

        Raises
        ------
        ApiError
            On a non-2xx response.
        """
        client = await self._get_client()
        resp = await client.post(self._url("/auth/logout"))
        if not resp.is_success:
            raise ApiError(_error_message(resp, "Logout failed"), status_code=resp.status_code)

    async def fetch_with_auth(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Call an authenticated API route, refreshing once on 401.

        Dashboard data fetchers use this so an expired access token is
        rotated transparently. If the refresh fails the original 401
        response is returned for the caller to handle.

        Parameters
        ----------
        method : str
            HTTP method.
        path : str
            Path below the API prefix (e.g. ``/salesforce/users``).
        **kwargs : Any
            Passed through to ``httpx.AsyncClient.request``.

        Returns
        -------
        httpx.Response
            The final response.
        """
        client = await self._get_client()
        url = self._url(path)
        resp = await client.request(method, url, **kwargs)
        if resp.status_code != 401:
            return resp

        logger.debug("401 from %s %s; attempting token refresh", method, path)
        try:
            await self.refresh()
        except TokenRefreshError as exc:
            logger.info("Token refresh failed: %s", exc)
            return resp
        return await client.request(method, url, **kwargs)
