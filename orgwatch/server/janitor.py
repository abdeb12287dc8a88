"""Scheduled expiry sweeps for abandoned logins and idle sessions."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING

from .types import CleanupResult, default_clock


if TYPE_CHECKING:
    from .base import OAuthStateLedger, SessionStore
    from .types import Clock


logger = logging.getLogger("orgwatch.server")

STATE_MAX_AGE = 10 * 60
SESSION_IDLE_MAX = 4 * 60 * 60


class ExpiryJanitor:
    """Deletes stale OAuth states and idle sessions.

    A sweep only deletes; it is safe to run repeatedly and from several
    workers at once because each store reports only the rows it removed.

    Parameters
    ----------
    ledger : OAuthStateLedger
        Pending OAuth states.
    sessions : SessionStore
        Authenticated sessions.
    state_max_age : float
        States created more than this many seconds ago are deleted.
    session_idle_max : float
        Sessions last seen more than this many seconds ago are deleted.
    clock : Clock, optional
        Time source.
    """

    def __init__(
        self,
        ledger: OAuthStateLedger,
        sessions: SessionStore,
        state_max_age: float = STATE_MAX_AGE,
        session_idle_max: float = SESSION_IDLE_MAX,
        clock: Clock | None = None,
    ) -> None:
        self.ledger = ledger
        self.sessions = sessions
        self.state_max_age = state_max_age
        self.session_idle_max = session_idle_max
        self._clock = clock or default_clock

    async def sweep_states(self) -> int:
        """Delete OAuth states older than ``state_max_age``."""
        return await self.ledger.delete_expired(self._clock() - self.state_max_age)

    async def sweep_sessions(self) -> int:
        """Delete sessions idle longer than ``session_idle_max``."""
        return await self.sessions.delete_idle(self._clock() - self.session_idle_max)

    async def run(self) -> CleanupResult:
        """Run both sweeps.

        Returns
        -------
        CleanupResult
            How many states and sessions this sweep deleted.
        """
        states, sessions = await asyncio.gather(self.sweep_states(), self.sweep_sessions())
        result = CleanupResult(expired_states=states, expired_sessions=sessions)
        logger.info(
            "Cleanup removed %d expired states and %d idle sessions",
            result.expired_states,
            result.expired_sessions,
        )
        return result
