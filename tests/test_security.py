"""Tests for request hardening helpers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from orgwatch.server.security import (
    LoginRateLimiter,
    bearer_matches,
    generate_session_id,
    is_valid_return_url,
    verify_origin,
)


ALLOWED_PATHS = ["/", "/dashboard", "/settings"]


def _request(headers: dict[str, str]) -> MagicMock:
    request = MagicMock()
    request.headers = {k.lower(): v for k, v in headers.items()}
    return request


class TestVerifyOrigin:
    """Origin / Referer checks."""

    TRUSTED = ["https://app.example.com"]

    def test_disabled_without_trusted_origins(self) -> None:
        assert verify_origin(_request({}), None) is True
        assert verify_origin(_request({"Origin": "https://evil.example.com"}), []) is True

    def test_matching_origin(self) -> None:
        assert verify_origin(_request({"Origin": "https://app.example.com"}), self.TRUSTED)

    def test_trailing_slashes_ignored(self) -> None:
        request = _request({"Origin": "https://app.example.com/"})
        assert verify_origin(request, ["https://app.example.com/"])

    def test_foreign_origin(self) -> None:
        assert not verify_origin(_request({"Origin": "https://evil.example.com"}), self.TRUSTED)

    def test_referer_fallback(self) -> None:
        request = _request({"Referer": "https://app.example.com/dashboard?tab=1"})
        assert verify_origin(request, self.TRUSTED)

    def test_null_origin_uses_referer(self) -> None:
        request = _request({"Origin": "null", "Referer": "https://evil.example.com/"})
        assert not verify_origin(request, self.TRUSTED)

    def test_missing_headers(self) -> None:
        assert not verify_origin(_request({}), self.TRUSTED)


class TestLoginRateLimiter:
    """Sliding window per client address."""

    def test_limit_per_client(self) -> None:
        limiter = LoginRateLimiter(max_requests=2, window_seconds=60)

        assert limiter.is_allowed("10.0.0.1")
        assert limiter.is_allowed("10.0.0.1")
        assert not limiter.is_allowed("10.0.0.1")
        assert limiter.is_allowed("10.0.0.2")

    def test_window_slides(self) -> None:
        limiter = LoginRateLimiter(max_requests=1, window_seconds=60)
        with patch("orgwatch.server.security.time.monotonic", return_value=1000.0):
            assert limiter.is_allowed("ip")
            assert not limiter.is_allowed("ip")
        with patch("orgwatch.server.security.time.monotonic", return_value=1061.0):
            assert limiter.is_allowed("ip")

    def test_reset(self) -> None:
        limiter = LoginRateLimiter(max_requests=1, window_seconds=60)
        limiter.is_allowed("ip")
        limiter.reset()
        assert limiter.is_allowed("ip")


class TestReturnUrl:
    """Open-redirect protection."""

    @pytest.mark.parametrize(
        "url", ["/", "/dashboard", "/dashboard/orgs/1", "/settings?tab=org", "/dashboard#top"]
    )
    def test_allowed(self, url: str) -> None:
        assert is_valid_return_url(url, ALLOWED_PATHS)

    @pytest.mark.parametrize(
        "url",
        [
            "https://evil.example.com/dashboard",
            "//evil.example.com",
            "/\\evil.example.com",
            "/admin",
            "/dashboardx",
            "dashboard",
            "",
        ],
    )
    def test_rejected(self, url: str) -> None:
        assert not is_valid_return_url(url, ALLOWED_PATHS)

    def test_root_does_not_allow_everything(self) -> None:
        assert not is_valid_return_url("/anything", ["/"])


class TestSecrets:
    def test_session_ids_are_unique(self) -> None:
        ids = {generate_session_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) >= 40 for i in ids)

    def test_bearer_matches(self) -> None:
        assert bearer_matches("Bearer s3cret", "s3cret")
        assert bearer_matches("bearer s3cret", "s3cret")
        assert not bearer_matches("Bearer other", "s3cret")
        assert not bearer_matches("Token s3cret", "s3cret")
        assert not bearer_matches(None, "s3cret")
        assert not bearer_matches("", "s3cret")
