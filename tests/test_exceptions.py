"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

from orgwatch.exceptions import (
    ApiError,
    AuthenticationError,
    AuthFlowCancelled,
    ConfigurationError,
    OrgWatchException,
    PopupBlockedError,
    StateValidationError,
    StorageError,
    TokenError,
    TokenRefreshError,
)


@pytest.mark.parametrize(
    "exc_type",
    [
        ConfigurationError,
        StorageError,
        ApiError,
        AuthenticationError,
        PopupBlockedError,
        AuthFlowCancelled,
        StateValidationError,
        TokenError,
        TokenRefreshError,
    ],
)
def test_everything_is_an_orgwatch_exception(exc_type) -> None:
    with pytest.raises(OrgWatchException):
        raise exc_type("boom")


def test_auth_family() -> None:
    assert issubclass(PopupBlockedError, AuthenticationError)
    assert issubclass(AuthFlowCancelled, AuthenticationError)
    assert issubclass(TokenRefreshError, TokenError)


def test_message_without_context() -> None:
    assert str(OrgWatchException("plain")) == "plain"


def test_context_is_rendered() -> None:
    exc = TokenError("Token exchange failed: 400", environment="sandbox", status_code=400)

    assert exc.message == "Token exchange failed: 400"
    assert exc.environment == "sandbox"
    assert exc.status_code == 400
    assert str(exc) == "Token exchange failed: 400 (environment='sandbox', status_code=400)"


def test_storage_and_api_attributes() -> None:
    assert StorageError("unreadable", key="orgwatch.credentials").key == "orgwatch.credentials"
    assert ApiError("Not authenticated", status_code=401).status_code == 401
