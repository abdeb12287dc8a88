"""Request hardening for the auth endpoints."""

from __future__ import annotations

import collections
import secrets
import threading
import time

from urllib.parse import urlparse

from fastapi import Request


# ── CSRF Origin Verification ────────────────────────────────────────


def verify_origin(request: Request, trusted_origins: list[str] | None = None) -> bool:
    """Check that a state-changing request comes from a trusted origin.

    Uses the ``Origin`` header, falling back to ``Referer``. With no
    trusted origins configured the check is disabled and always passes.

    Parameters
    ----------
    request : Request
        The incoming request.
    trusted_origins : list[str] or None
        Allowed origins (e.g. ``["https://orgwatch.example.com"]``).

    Returns
    -------
    bool
        Whether the request may proceed.
    """
    if not trusted_origins:
        return True

    origin = request.headers.get("origin")
    referer = request.headers.get("referer")

    source_origin: str | None = None
    if origin and origin != "null":
        source_origin = origin.rstrip("/")
    elif referer:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc:
            source_origin = f"{parsed.scheme}://{parsed.netloc}"

    if source_origin is None:
        return False
    return source_origin in [o.rstrip("/") for o in trusted_origins]


# ── Login Rate Limiter ───────────────────────────────────────────────


class LoginRateLimiter:
    """In-process sliding-window rate limiter keyed by client address.

    Parameters
    ----------
    max_requests : int
        Maximum number of requests allowed per window.
    window_seconds : float
        Time window in seconds.
    """

    def __init__(self, max_requests: int = 10, window_seconds: float = 60.0) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, collections.deque[float]] = {}
        self._lock = threading.Lock()

    def is_allowed(self, client_ip: str) -> bool:
        """Record a request from ``client_ip`` and say whether it is allowed."""
        now = time.monotonic()
        with self._lock:
            dq = self._requests.setdefault(client_ip, collections.deque())
            while dq and dq[0] < now - self._window:
                dq.popleft()

            if len(dq) >= self._max_requests:
                return False

            dq.append(now)
            return True

    def reset(self) -> None:
        """Clear all rate limit state."""
        with self._lock:
            self._requests.clear()


# ── Return URL Validation ────────────────────────────────────────────


def is_valid_return_url(url: str, allowed_paths: list[str]) -> bool:
    """Whether ``url`` is a local path on the allowed list.

    A path is allowed when it equals an allowed entry or sits below one.
    The query string is ignored for the comparison. Protocol-relative
    (``//host``) and backslash paths are always rejected.
    """
    if not url.startswith("/") or url.startswith("//") or "\\" in url:
        return False
    path = url.split("?", 1)[0].split("#", 1)[0]
    for allowed in allowed_paths:
        if path == allowed:
            return True
        prefix = allowed.rstrip("/") + "/"
        if allowed != "/" and path.startswith(prefix):
            return True
    return False


def generate_session_id() -> str:
    """Opaque, unguessable session cookie value."""
    return secrets.token_urlsafe(32)


def bearer_matches(authorization: str | None, secret: str) -> bool:
    """Constant-time check of an ``Authorization: Bearer <secret>`` header."""
    if not authorization:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return secrets.compare_digest(token.strip().encode("utf-8"), secret.encode("utf-8"))
