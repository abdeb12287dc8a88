"""Logging setup for OrgWatch.

Modules log through ``logging.getLogger("orgwatch.<component>")``. Those
loggers propagate to the ``orgwatch`` root configured here, which owns a
single stderr handler.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


ROOT_LOGGER = "orgwatch"
DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"
REDACTED = "[REDACTED]"

# Substrings of keys whose values never reach a log line
_SENSITIVE_KEYS = frozenset(
    {
        "secret",
        "password",
        "token",
        "verifier",
        "code",
        "cookie",
        "authorization",
        "session_id",
        "sessionid",
    }
)


def get_logger() -> logging.Logger:
    """Return the ``orgwatch`` root logger, installing its handler once."""
    logger = logging.getLogger(ROOT_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.WARNING)
    return logger


def set_level(level: int | str) -> None:
    """Set the level of every ``orgwatch.*`` logger.

    Parameters
    ----------
    level : int or str
        A ``logging`` level or its name in any case (``"debug"``).

    Raises
    ------
    ValueError
        If ``level`` names no logging level.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            msg = f"Unknown log level: {level!r}"
            raise ValueError(msg)
        level = resolved
    get_logger().setLevel(level)


def configure(level: int | str = "WARNING", fmt: str | None = None) -> logging.Logger:
    """Apply the configured level and handler format.

    Parameters
    ----------
    level : int or str
        The logging level.
    fmt : str, optional
        A ``logging.Formatter`` format string for the installed handler.

    Returns
    -------
    logging.Logger
        The ``orgwatch`` root logger.
    """
    logger = get_logger()
    set_level(level)
    if fmt:
        for handler in logger.handlers:
            handler.setFormatter(logging.Formatter(fmt))
    return logger


def enable_debug() -> None:
    """Log login attempts, status checks, token calls and sweeps verbosely."""
    set_level(logging.DEBUG)


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return any(part in name for part in _SENSITIVE_KEYS)


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Copy ``data`` with the values of secret-looking keys replaced.

    Dicts and lists are walked recursively; anything nested deeper than
    ``max_depth`` collapses to ``"[MAX_DEPTH]"``. Scalars are returned
    unchanged.

    Parameters
    ----------
    data : Any
        A decoded JSON payload (token response, userinfo, request body).
    max_depth : int
        Maximum nesting to walk.

    Returns
    -------
    Any
        The redacted copy.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
