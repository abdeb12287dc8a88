"""Server-side records for OAuth state, sessions and tokens.

Timestamps are Unix epoch seconds. Every store and the janitor take an
injectable ``Clock`` so expiry boundaries can be tested deterministically.
"""

from __future__ import annotations

import time

from collections.abc import Callable
from dataclasses import asdict, dataclass, field, fields
from typing import Any


Clock = Callable[[], float]


def default_clock() -> float:
    """Current Unix time in seconds."""
    return time.time()


@dataclass
class OAuthStateRecord:
    """One in-flight login attempt, keyed by ``state``.

    Attributes
    ----------
    state : str
        Opaque anti-replay token echoed back by the identity provider.
    code_verifier : str
        PKCE verifier matching the challenge sent to the provider.
    environment : str
        ``"production"`` or ``"sandbox"``.
    created_at : float
        When the attempt was minted.
    client_id : str
        Connected-app consumer key used for the exchange.
    redirect_uri : str
        Callback URL the code was issued for.
    return_url : str
        Validated path a non-popup login lands on.
    popup : bool
        Whether the callback answers with the popup page.
    nonce : str
        Per-attempt nonce.
    """

    state: str
    code_verifier: str
    environment: str
    created_at: float
    client_id: str
    redirect_uri: str
    return_url: str = "/dashboard"
    popup: bool = False
    nonce: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthStateRecord:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class OAuthTokenSet:
    """Token response from the identity provider.

    Attributes
    ----------
    access_token : str
        Bearer token for org API calls.
    refresh_token : str or None
        Long-lived token used by ``/api/auth/refresh``.
    instance_url : str
        Base URL of the org's API instance.
    id_url : str
        Identity URL; its last two path segments are org id and user id.
    issued_at : float
        When the token was issued.
    token_type : str
        Token type, typically "Bearer".
    scope : str
        Space-separated granted scopes.
    raw : dict[str, Any]
        The raw token response.
    """

    access_token: str
    refresh_token: str | None = None
    instance_url: str = ""
    id_url: str = ""
    issued_at: float = field(default_factory=time.time)
    token_type: str = "Bearer"  # noqa: S105
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def organization_id(self) -> str:
        parts = self.id_url.rstrip("/").split("/")
        return parts[-2] if len(parts) >= 2 else ""

    @property
    def user_id(self) -> str:
        parts = self.id_url.rstrip("/").split("/")
        return parts[-1] if parts and parts[-1] else ""


@dataclass
class SessionRecord:
    """Authenticated session keyed by the opaque cookie value.

    Holds the org tokens server-side; the browser only ever sees
    ``session_id`` in an HttpOnly cookie.
    """

    session_id: str
    user_id: str
    instance_url: str
    environment: str
    created_at: float
    last_seen_at: float
    client_id: str = ""
    access_token: str = ""
    refresh_token: str | None = None
    username: str = ""
    display_name: str = ""
    email: str = ""
    organization_id: str = ""
    org_name: str = ""
    org_credentials_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionRecord:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def status_payload(self) -> dict[str, Any]:
        """Body of ``GET /api/auth/status`` for this session."""
        return {
            "authenticated": True,
            "user": {
                "id": self.user_id,
                "username": self.username,
                "displayName": self.display_name,
                "email": self.email,
                "organizationId": self.organization_id,
                "orgName": self.org_name,
            },
            "environment": self.environment,
            "instanceUrl": self.instance_url,
            "orgCredentialsId": self.org_credentials_id,
        }


@dataclass
class CleanupResult:
    """Counts returned by one janitor sweep."""

    expired_states: int = 0
    expired_sessions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"expiredStates": self.expired_states, "expiredSessions": self.expired_sessions}
