"""Auth server for the dashboard.

Usage
-----
Single process (default, in-memory state)::

    from orgwatch.server import create_app
    app = create_app()

Multiple workers share state through Redis::

    # ORGWATCH_DEPLOY__STATE_BACKEND=redis
    # ORGWATCH_DEPLOY__REDIS_URL=redis://localhost:6379/0
"""

from __future__ import annotations

from .app import SessionMiddleware, build_janitor, build_stores, create_app
from .base import OAuthStateLedger, SessionStore
from .janitor import ExpiryJanitor
from .memory import MemoryOAuthStateLedger, MemorySessionStore
from .provider import SalesforceProvider
from .types import CleanupResult, OAuthStateRecord, OAuthTokenSet, SessionRecord


__all__ = [
    "CleanupResult",
    "ExpiryJanitor",
    "MemoryOAuthStateLedger",
    "MemorySessionStore",
    "OAuthStateLedger",
    "OAuthStateRecord",
    "OAuthTokenSet",
    "SalesforceProvider",
    "SessionMiddleware",
    "SessionRecord",
    "SessionStore",
    "build_janitor",
    "build_stores",
    "create_app",
]
