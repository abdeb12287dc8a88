"""Tests for the auth API client."""

from __future__ import annotations

import json

import httpx
import pytest

from orgwatch.auth.client import AuthApiClient
from orgwatch.exceptions import ApiError, TokenRefreshError


BASE_URL = "http://orgwatch.test"


def _client(handler) -> AuthApiClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AuthApiClient(base_url=BASE_URL, http_client=http_client)


class TestRequestAuthUrl:
    """POST /api/auth/login."""

    @pytest.mark.asyncio
    async def test_body_carries_exactly_the_login_fields(self, org_credentials) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"authUrl": "https://test.salesforce.com/auth?x=1"})

        client = _client(handler)
        url = await client.request_auth_url(org_credentials, popup=True)

        assert url == "https://test.salesforce.com/auth?x=1"
        assert seen[0].method == "POST"
        assert str(seen[0].url) == f"{BASE_URL}/api/auth/login"
        assert json.loads(seen[0].content) == {
            "clientId": "3MVG9abcdefghijklmnop",
            "redirectUri": "https://app.example.com/api/auth/callback",
            "environment": "sandbox",
            "returnUrl": "/dashboard",
            "popup": True,
        }

    @pytest.mark.asyncio
    async def test_server_error_message(self, org_credentials) -> None:
        client = _client(
            lambda request: httpx.Response(400, json={"error": "clientId and redirectUri are required"})
        )

        with pytest.raises(ApiError) as exc_info:
            await client.request_auth_url(org_credentials)

        assert exc_info.value.message == "clientId and redirectUri are required"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_non_json_error_uses_default(self, org_credentials) -> None:
        client = _client(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(ApiError, match="Failed to initiate login"):
            await client.request_auth_url(org_credentials)

    @pytest.mark.asyncio
    async def test_missing_auth_url(self, org_credentials) -> None:
        client = _client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(ApiError, match="authorization URL"):
            await client.request_auth_url(org_credentials)

    @pytest.mark.asyncio
    async def test_html_success_body_raises_api_error(self, org_credentials) -> None:
        client = _client(
            lambda request: httpx.Response(
                200, text="<html>proxy login</html>", headers={"content-type": "text/html"}
            )
        )

        with pytest.raises(ApiError, match="Unexpected response") as exc_info:
            await client.request_auth_url(org_credentials)

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_json_array_body_raises_api_error(self, org_credentials) -> None:
        client = _client(lambda request: httpx.Response(200, json=["https://login.example"]))

        with pytest.raises(ApiError, match="Unexpected response"):
            await client.request_auth_url(org_credentials)

    @pytest.mark.asyncio
    async def test_non_string_auth_url_raises_api_error(self, org_credentials) -> None:
        client = _client(lambda request: httpx.Response(200, json={"authUrl": 42}))

        with pytest.raises(ApiError, match="authorization URL"):
            await client.request_auth_url(org_credentials)


class TestStatusRefreshLogout:
    """Status, refresh and logout calls."""

    @pytest.mark.asyncio
    async def test_get_status(self) -> None:
        payload = {
            "authenticated": True,
            "user": {"id": "005xx", "username": "ada@acme.com", "displayName": "Ada"},
            "environment": "production",
            "instanceUrl": "https://acme.my.salesforce.com",
            "orgCredentialsId": None,
        }
        client = _client(lambda request: httpx.Response(200, json=payload))

        status = await client.get_status()

        assert status.authenticated
        assert status.user.display_name == "Ada"
        assert status.instance_url == "https://acme.my.salesforce.com"
        assert status.org_credentials_id is None

    @pytest.mark.asyncio
    async def test_get_status_html_body_raises_api_error(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(ApiError, match="Unexpected response from the status endpoint"):
            await client.get_status()

    @pytest.mark.asyncio
    async def test_refresh_failure(self) -> None:
        client = _client(lambda request: httpx.Response(401, json={"error": "No refresh token available"}))

        with pytest.raises(TokenRefreshError, match="No refresh token available"):
            await client.refresh()

    @pytest.mark.asyncio
    async def test_logout_failure(self) -> None:
        client = _client(lambda request: httpx.Response(500))

        with pytest.raises(ApiError, match="Logout failed"):
            await client.logout()


class TestFetchWithAuth:
    """401 handling with a single refresh and retry."""

    @pytest.mark.asyncio
    async def test_refreshes_once_and_retries(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if request.url.path == "/api/auth/refresh":
                return httpx.Response(200, json={"success": True})
            if calls.count("/api/salesforce/users") == 1:
                return httpx.Response(401, json={"error": "Session expired"})
            return httpx.Response(200, json={"users": []})

        client = _client(handler)
        resp = await client.fetch_with_auth("GET", "/salesforce/users")

        assert resp.status_code == 200
        assert calls == ["/api/salesforce/users", "/api/auth/refresh", "/api/salesforce/users"]

    @pytest.mark.asyncio
    async def test_returns_401_when_refresh_fails(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if request.url.path == "/api/auth/refresh":
                return httpx.Response(500, json={"error": "Token refresh failed"})
            return httpx.Response(401, json={"error": "Session expired"})

        client = _client(handler)
        resp = await client.fetch_with_auth("GET", "/salesforce/users")

        assert resp.status_code == 401
        assert calls == ["/api/salesforce/users", "/api/auth/refresh"]

    @pytest.mark.asyncio
    async def test_non_401_passes_through(self) -> None:
        client = _client(lambda request: httpx.Response(403, json={"error": "Forbidden"}))

        resp = await client.fetch_with_auth("POST", "/integrations", json={"name": "x"})

        assert resp.status_code == 403
        await client.close()
