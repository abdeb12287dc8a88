"""Configuration system for OrgWatch using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.orgwatch] section (project-level)
3. ./orgwatch.toml (project-level, explicit)
4. ~/.config/orgwatch/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use ORGWATCH_ prefix with nested delimiter __.
Example: ORGWATCH_AUTH__CLOSE_GRACE_PERIOD, ORGWATCH_DEPLOY__REDIS_URL
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    orgwatch_toml = Path("orgwatch.toml")
    if orgwatch_toml.exists():
        files.append(orgwatch_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "orgwatch" / "config.toml"
    else:
        user_config = Path("~/.config/orgwatch/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("ORGWATCH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files.

    Unreadable or invalid files are skipped.
    """
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("orgwatch", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _split_csv(v: Any) -> list[str]:
    if isinstance(v, str):
        return [s.strip() for s in v.split(",") if s.strip()]
    return list(v or [])


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "cron_secret",
    "redis_url",
}

_REDACTED = "********"


class AuthSettings(BaseSettings):
    """Popup login timing and defaults.

    Environment prefix: ORGWATCH_AUTH__
    Example: ORGWATCH_AUTH__CLOSE_GRACE_PERIOD=0.8
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGWATCH_AUTH__",
        extra="ignore",
    )

    default_environment: Literal["production", "sandbox"] = Field(
        default="sandbox", description="Environment used before the user picks one"
    )
    default_return_url: str = Field(
        default="/dashboard", description="Where the callback sends non-popup logins"
    )
    popup_width: int = Field(default=600, ge=200, description="Login popup width in pixels")
    popup_height: int = Field(default=700, ge=200, description="Login popup height in pixels")
    popup_name: str = Field(default="salesforce_oauth", description="Popup window name")
    close_poll_interval: float = Field(
        default=0.3, gt=0, description="Seconds between popup-closed checks"
    )
    close_grace_period: float = Field(
        default=0.5,
        ge=0,
        description="Seconds to wait for a late message after the popup closes",
    )
    focus_settle_delay: float = Field(
        default=0.3,
        ge=0,
        description="Seconds to wait after the opener regains focus before re-checking status",
    )


class SalesforceSettings(BaseSettings):
    """Identity provider endpoints.

    Environment prefix: ORGWATCH_SALESFORCE__
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGWATCH_SALESFORCE__",
        extra="ignore",
    )

    production_login_url: str = Field(
        default="https://login.salesforce.com",
        description="Login host for production orgs",
    )
    sandbox_login_url: str = Field(
        default="https://test.salesforce.com",
        description="Login host for sandbox orgs",
    )
    scopes: str = Field(default="api refresh_token", description="Space-separated OAuth scopes")
    request_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for token and userinfo requests"
    )


class ServerSettings(BaseSettings):
    """Auth server settings.

    Environment prefix: ORGWATCH_SERVER__
    Example: ORGWATCH_SERVER__PORT=8080
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGWATCH_SERVER__",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Server port")
    log_level: Literal["critical", "error", "warning", "info", "debug", "trace"] = Field(
        default="info", description="Uvicorn log level"
    )
    cookie_name: str = Field(default="sf_session", description="Session cookie name")
    cookie_secure: bool = Field(
        default=False,
        description="Always set the Secure cookie flag. It is set anyway for HTTPS requests.",
    )
    session_max_age: int = Field(
        default=86400, ge=60, description="Session cookie max-age in seconds"
    )
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Origins allowed to call state-changing endpoints. Empty disables the check.",
    )
    allowed_return_paths: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["/", "/dashboard", "/settings"],
        description="Paths (and their sub-paths) a login may return to",
    )
    login_rate_limit: int = Field(
        default=10, ge=1, description="Login attempts allowed per client per window"
    )
    login_rate_window: float = Field(
        default=60.0, gt=0, description="Rate-limit window in seconds"
    )
    cron_secret: str | None = Field(
        default=None,
        description="Bearer secret for /api/cron/cleanup. Unset disables the check.",
    )

    @field_validator("allowed_origins", "allowed_return_paths", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Any) -> list[str]:
        """Parse comma-separated strings from env vars."""
        return _split_csv(v)


class DeploySettings(BaseSettings):
    """Server-side state backend settings.

    Environment prefix: ORGWATCH_DEPLOY__
    Example: ORGWATCH_DEPLOY__STATE_BACKEND=redis
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGWATCH_DEPLOY__",
        extra="ignore",
    )

    state_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Where OAuth states and sessions live: 'memory' or 'redis'",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    redis_prefix: str = Field(default="orgwatch", description="Key prefix for all Redis keys")
    state_ttl: int = Field(
        default=600, ge=60, description="OAuth state lifetime in seconds"
    )
    session_idle_ttl: int = Field(
        default=14400, ge=60, description="Idle time in seconds before a session expires"
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: ORGWATCH_LOG__
    Example: ORGWATCH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGWATCH_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


_SECTIONS: list[tuple[str, str, str]] = [
    ("Auth (Popup Login)", "auth", "AUTH"),
    ("Salesforce", "salesforce", "SALESFORCE"),
    ("Server", "server", "SERVER"),
    ("Deploy (State Backend)", "deploy", "DEPLOY"),
    ("Logging", "log", "LOG"),
]


class OrgWatchSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: ORGWATCH__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.orgwatch] section
    3. ./orgwatch.toml (project-level)
    4. ~/.config/orgwatch/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGWATCH__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    auth: AuthSettings = Field(default_factory=AuthSettings)
    salesforce: SalesforceSettings = Field(default_factory=SalesforceSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

        # Bare CRON_SECRET is what schedulers conventionally inject
        if self.server.cron_secret is None and os.environ.get("CRON_SECRET"):
            self.server.cron_secret = os.environ["CRON_SECRET"]

    def _dump_sections(self) -> dict[str, Any]:
        return self.model_dump(exclude={attr: _SENSITIVE_FIELDS for _, attr, _ in _SECTIONS})

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# OrgWatch Configuration", "# Generated by: orgwatch config --toml", ""]
        all_data = self._dump_sections()

        for _, section_name, _ in _SECTIONS:
            lines.append(f"[{section_name}]")
            for field_name, field_value in all_data.get(section_name, {}).items():
                if field_value is None:
                    continue
                if isinstance(field_value, list):
                    value_str = "[" + ", ".join(f'"{v}"' for v in field_value) + "]"
                elif isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    value_str = f'"{field_value}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            section_cls = type(getattr(self, section_name))
            lines.extend(
                f'{rn} = "{_REDACTED}"'
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# OrgWatch Environment Variables",
            "# Generated by: orgwatch config --env",
            "",
        ]
        all_data = self._dump_sections()

        for _, attr_name, env_prefix in _SECTIONS:
            for field_name, field_value in all_data.get(attr_name, {}).items():
                if field_value is None:
                    continue
                env_name = f"ORGWATCH_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, list):
                    value_str = ",".join(str(v) for v in field_value)
                elif isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            section_cls = type(getattr(self, attr_name))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                lines.append(f'export ORGWATCH_{env_prefix}__{redacted_name.upper()}="{_REDACTED}"')

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["OrgWatch Configuration", "=" * 60, ""]
        all_data = self._dump_sections()

        for display_name, attr_name, _ in _SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:22} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:22} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> OrgWatchSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return OrgWatchSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> OrgWatchSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
