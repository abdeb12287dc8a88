"""OrgWatch - popup OAuth login and session sync for a Salesforce org dashboard.

The ``orgwatch.auth`` package holds the client side: credential storage,
the popup login orchestrator and the session-truth state. The
``orgwatch.server`` package holds the FastAPI auth endpoints, the OAuth
state ledger, the session stores and the expiry janitor.
"""

from __future__ import annotations

from .config import OrgWatchSettings, get_settings
from .exceptions import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    OrgWatchException,
    StorageError,
    TokenError,
    TokenRefreshError,
)


__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "AuthenticationError",
    "ConfigurationError",
    "OrgWatchException",
    "OrgWatchSettings",
    "StorageError",
    "TokenError",
    "TokenRefreshError",
    "__version__",
    "get_settings",
]
