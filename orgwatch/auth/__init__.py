"""Client-side authentication for the dashboard.

Provides org credential storage, the popup OAuth2 + PKCE login
orchestrator, the auth API client and the session-truth state that the
rest of the dashboard subscribes to.
"""

from __future__ import annotations

from .browser import BrowserHost, PopupHandle, ScreenGeometry, WindowMessage
from .cache import DataCache
from .client import AuthApiClient
from .credentials import CredentialStore
from .orchestrator import AuthOrchestrator
from .pkce import PKCEChallenge, generate_state_token
from .session_state import SessionState
from .storage import JsonFileStorage, LocalStorage, MemoryStorage
from .types import (
    AuthStatus,
    ConnectionStatus,
    LoginOutcome,
    LoginPhase,
    LoginResult,
    OrgCredentials,
    SessionSnapshot,
    UserInfo,
)


__all__ = [
    "AuthApiClient",
    "AuthOrchestrator",
    "AuthStatus",
    "BrowserHost",
    "ConnectionStatus",
    "CredentialStore",
    "DataCache",
    "JsonFileStorage",
    "LocalStorage",
    "LoginOutcome",
    "LoginPhase",
    "LoginResult",
    "MemoryStorage",
    "OrgCredentials",
    "PKCEChallenge",
    "PopupHandle",
    "ScreenGeometry",
    "SessionSnapshot",
    "SessionState",
    "UserInfo",
    "WindowMessage",
    "generate_state_token",
]
