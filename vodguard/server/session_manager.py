"""
Session lifecycle: explicit termination and the periodic expiry sweep.

Active -> Expired (time based) and Active -> Terminated (explicit) are the only
transitions. Both end states are terminal and sessions are kept for audit.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Callable

from vodguard.common.models import SessionFilter, SessionState, VideoSession

if TYPE_CHECKING:
    from vodguard.common.interfaces import ISessionStore

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """Moves sessions out of the Active state."""

    def __init__(
        self,
        session_store: ISessionStore,
        clock: Callable[[], float] = time.time,
    ):
        self.session_store = session_store
        self.clock = clock

    async def list_active_sessions(self, user_id: str) -> list[VideoSession]:
        now = self.clock()
        sessions = await self.session_store.find_sessions(user_id, active_only=True)
        return [s for s in sessions if s.is_live(now)]

    async def terminate(self, session_id: str) -> bool:
        """End a session. Returns False when it was already inactive or unknown."""
        session = await self.session_store.get_session(session_id)
        if session is None or not session.active:
            return False
        await self.session_store.update_session(
            session_id,
            {
                "active": False,
                "terminated_at": int(self.clock()),
                "end_reason": SessionState.TERMINATED,
            },
        )
        logger.info("Terminated video session %s", session_id)
        return True

    async def sweep_expired(self) -> int:
        """Mark every timed-out active session as expired.

        Never raises: a failed cycle is logged and reported as zero so the next
        cycle still runs.
        """
        now = int(self.clock())
        try:
            affected = await self.session_store.batch_update_sessions(
                SessionFilter(active=True, expires_before=now),
                {
                    "active": False,
                    "terminated_at": now,
                    "end_reason": SessionState.EXPIRED,
                },
            )
        except Exception:
            logger.exception("Expired session sweep failed; skipping this cycle")
            return 0
        logger.info("Cleaned up %s expired video sessions", affected)
        return affected


class SessionSweeper:
    """Background task that runs the sweep on a fixed interval."""

    def __init__(self, manager: SessionLifecycleManager, interval: float):
        self.manager = manager
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        return await self.manager.sweep_expired()

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Session sweeper started (interval %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Session sweeper stopped")
