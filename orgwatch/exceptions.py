"""OrgWatch exception hierarchy.

All OrgWatch-specific exceptions inherit from OrgWatchException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class OrgWatchException(Exception):
    """Base exception for all OrgWatch errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize OrgWatch exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (environment, state, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(OrgWatchException):
    """Required configuration is missing.

    Raised when no org credentials are stored, so a login cannot be
    initiated until the org is (re)registered.
    """


class StorageError(OrgWatchException):
    """Local persisted storage could not be read or written.

    Callers reading credentials treat this as the record being absent.
    """

    def __init__(self, message: str, key: str | None = None, **context: Any) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The storage key being accessed.
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, **context)
        self.key = key


class ApiError(OrgWatchException):
    """An OrgWatch server endpoint answered with a non-2xx status.

    ``message`` carries the server's ``error`` field when it sent one.
    """

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize API error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status of the failed response.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class AuthenticationError(OrgWatchException):
    """Base exception for all authentication failures.

    Raised when a login attempt, token exchange, or session operation fails.
    """

    def __init__(
        self,
        message: str,
        environment: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        environment : str, optional
            The org environment ("production" or "sandbox").
        **context : Any
            Additional context.
        """
        super().__init__(message, environment=environment, **context)
        self.environment = environment


class PopupBlockedError(AuthenticationError):
    """The browser refused to open the login popup."""


class AuthFlowCancelled(AuthenticationError):
    """Authentication flow was cancelled.

    Raised when the user closes the login window without a success or
    error message arriving within the grace period.
    """


class StateValidationError(AuthenticationError):
    """OAuth state is unknown, expired, or was already consumed.

    Raised at the callback when a replayed or forged ``state`` is presented.
    """


class TokenError(AuthenticationError):
    """Base exception for token-related failures.

    Raised when token operations (exchange, refresh, revoke) fail.
    """

    def __init__(
        self,
        message: str,
        environment: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize token error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        environment : str, optional
            The org environment.
        status_code : int, optional
            HTTP status returned by the identity provider.
        **context : Any
            Additional context.
        """
        super().__init__(message, environment=environment, status_code=status_code, **context)
        self.status_code = status_code


class TokenRefreshError(TokenError):
    """Token refresh failed.

    Raised when rotating the access token with the stored refresh
    token fails.
    """
