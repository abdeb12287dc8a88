"""Abstract server-side stores.

Two stores back the auth endpoints:

- ``OAuthStateLedger``: one short-lived record per in-flight login,
  consumed exactly once at the callback.
- ``SessionStore``: authenticated sessions keyed by the cookie value.

Both expose sweep methods taking an explicit cutoff so the expiry janitor
owns the "how old is too old" policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .types import OAuthStateRecord, OAuthTokenSet, SessionRecord


class OAuthStateLedger(ABC):
    """Abstract store for pending OAuth states."""

    @abstractmethod
    async def put(self, record: OAuthStateRecord) -> None:
        """Record a freshly minted login attempt.

        Parameters
        ----------
        record : OAuthStateRecord
            The attempt, keyed by ``record.state``.
        """
        ...

    @abstractmethod
    async def consume(self, state: str) -> OAuthStateRecord | None:
        """Atomically fetch and delete the record for ``state``.

        Of any number of concurrent callers presenting the same ``state``,
        at most one receives the record.

        Parameters
        ----------
        state : str
            The ``state`` query parameter from the callback.

        Returns
        -------
        OAuthStateRecord or None
            The record, or None if unknown, already consumed or expired.
        """
        ...

    @abstractmethod
    async def delete_expired(self, cutoff: float) -> int:
        """Delete every record created strictly before ``cutoff``.

        Returns
        -------
        int
            Number of records this call deleted.
        """
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of pending records."""
        ...


class SessionStore(ABC):
    """Abstract store for authenticated sessions."""

    @abstractmethod
    async def create(self, record: SessionRecord) -> None:
        """Persist a new session.

        Parameters
        ----------
        record : SessionRecord
            The session, keyed by ``record.session_id``.
        """
        ...

    @abstractmethod
    async def get(self, session_id: str) -> SessionRecord | None:
        """Return the session or None if it does not exist."""
        ...

    @abstractmethod
    async def touch(self, session_id: str) -> bool:
        """Mark the session as seen now.

        Returns
        -------
        bool
            False if the session does not exist.
        """
        ...

    @abstractmethod
    async def update_tokens(self, session_id: str, tokens: OAuthTokenSet) -> bool:
        """Replace the session's tokens after a refresh and mark it seen.

        Returns
        -------
        bool
            False if the session does not exist.
        """
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete the session.

        Returns
        -------
        bool
            True if a session was deleted.
        """
        ...

    @abstractmethod
    async def delete_idle(self, cutoff: float) -> int:
        """Delete every session last seen strictly before ``cutoff``.

        Returns
        -------
        int
            Number of sessions this call deleted.
        """
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of stored sessions."""
        ...
