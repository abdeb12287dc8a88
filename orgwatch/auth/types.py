"""Data types shared by the browser-side auth components."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Literal


Environment = Literal["production", "sandbox"]

ENVIRONMENTS: tuple[str, ...] = ("production", "sandbox")


@dataclass(frozen=True)
class OrgCredentials:
    """Public connected-app parameters for one org.

    No client secret is ever held here; PKCE removes the need for one.

    Attributes
    ----------
    client_id : str
        Connected-app consumer key.
    redirect_uri : str
        Callback URL registered on the connected app.
    environment : str
        ``"production"`` or ``"sandbox"``.
    org_name : str
        Display name chosen at registration.
    """

    client_id: str
    redirect_uri: str
    environment: Environment
    org_name: str

    def to_dict(self) -> dict[str, str]:
        """Serialize using the camelCase keys of the persisted record."""
        return {
            "clientId": self.client_id,
            "redirectUri": self.redirect_uri,
            "environment": self.environment,
            "orgName": self.org_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrgCredentials:
        """Build from a persisted record.

        Raises
        ------
        ValueError
            If a required field is missing or the environment is unknown.
        """
        missing = [k for k in ("clientId", "redirectUri") if not data.get(k)]
        if missing:
            msg = f"Missing required credential fields: {', '.join(missing)}"
            raise ValueError(msg)
        environment = data.get("environment") or "production"
        if environment not in ENVIRONMENTS:
            msg = f"Unknown environment: {environment!r}"
            raise ValueError(msg)
        return cls(
            client_id=str(data["clientId"]),
            redirect_uri=str(data["redirectUri"]),
            environment=environment,
            org_name=str(data.get("orgName") or ""),
        )


@dataclass
class UserInfo:
    """Identity of the signed-in org user as reported by the status endpoint."""

    id: str
    username: str = ""
    display_name: str = ""
    email: str = ""
    organization_id: str = ""
    org_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserInfo:
        return cls(
            id=str(data.get("id") or ""),
            username=data.get("username") or "",
            display_name=data.get("displayName") or "",
            email=data.get("email") or "",
            organization_id=data.get("organizationId") or "",
            org_name=data.get("orgName") or "",
        )


@dataclass
class AuthStatus:
    """Parsed ``GET /api/auth/status`` payload."""

    authenticated: bool
    user: UserInfo | None = None
    environment: str | None = None
    instance_url: str | None = None
    org_credentials_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthStatus:
        user = data.get("user")
        return cls(
            authenticated=bool(data.get("authenticated")),
            user=UserInfo.from_dict(user) if isinstance(user, dict) else None,
            environment=data.get("environment"),
            instance_url=data.get("instanceUrl"),
            org_credentials_id=data.get("orgCredentialsId"),
        )


class LoginPhase(str, Enum):
    """Lifecycle of a single popup login attempt."""

    IDLE = "idle"
    INITIATING = "initiating"
    POPUP_OPENING = "popup_opening"
    ARMED = "armed"
    RESOLVED = "resolved"


class LoginOutcome(str, Enum):
    """Terminal classification of a login attempt."""

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"
    POPUP_BLOCKED = "popup_blocked"
    NOT_CONFIGURED = "not_configured"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class LoginResult:
    """Result of a popup login attempt.

    Every failure collapses to ``success=False`` with an ``error`` message;
    ``outcome`` keeps the class of failure so the UI can react to it.

    Attributes
    ----------
    success : bool
        Whether the attempt established a session.
    outcome : LoginOutcome
        Which path resolved the attempt.
    error : str or None
        User-visible error message on failure.
    via : str or None
        The signal that won the race (``"message"``, ``"closed"``,
        ``"focus"``), or None when the attempt ended before arming.
    """

    success: bool
    outcome: LoginOutcome
    error: str | None = None
    via: str | None = None

    @classmethod
    def succeeded(cls, via: str) -> LoginResult:
        return cls(success=True, outcome=LoginOutcome.SUCCESS, via=via)

    @classmethod
    def failed(cls, outcome: LoginOutcome, error: str, via: str | None = None) -> LoginResult:
        return cls(success=False, outcome=outcome, error=error, via=via)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


class ConnectionStatus(str, Enum):
    """Status indicator values shown in the navigation bar."""

    CONNECTING = "connecting"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    OPERATIONAL = "operational"


@dataclass
class SessionSnapshot:
    """Immutable-by-convention view of SessionState handed to listeners."""

    authenticated: bool
    is_loading: bool
    is_logging_in: bool
    user: UserInfo | None
    environment: str
    instance_url: str | None
    org_credentials_id: str | None
    selected_org_id: str | None
    error: str | None
    refresh_key: int
    status: ConnectionStatus
