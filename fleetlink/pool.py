"""Pool of robot sessions keyed by robot id."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

from . import constants
from .session import RobotSession, RobotSessionFactory

LOGGER = logging.getLogger(__name__)


class RobotSessionPool:
    """Caches one connected :class:`RobotSession` per robot id.

    Concurrent ``get_session`` calls for the same robot share a single
    connect attempt. The attempt is tracked as a task in ``_pending`` only
    until it settles; a failed attempt also drops the session so that the
    next lookup starts over.
    """

    def __init__(self, session_factory: RobotSessionFactory) -> None:
        self.session_factory = session_factory
        self._sessions: Dict[str, RobotSession] = {}
        self._pending: Dict[str, asyncio.Task[None]] = {}
        self._last_use: Dict[str, float] = {}

    async def get_session(
        self, robot_id: str, name: str = constants.DEFAULT_ROBOT_NAME
    ) -> RobotSession:
        """Return a connected session for ``robot_id``, connecting it if needed.

        Raises whatever the connect attempt raised, for every waiting caller,
        and ``RuntimeError`` if the session was freed while connecting.
        """
        self._last_use[robot_id] = time.monotonic()

        session = self._sessions.get(robot_id)
        if session is None:
            session = self.session_factory.build(robot_id, name)
            self._sessions[robot_id] = session
            self._pending[robot_id] = asyncio.ensure_future(
                self._connect(robot_id, session)
            )

        pending = self._pending.get(robot_id)
        if pending is not None:
            await asyncio.shield(pending)
            if not session.is_connected:
                raise RuntimeError(
                    f"Robot session {robot_id} was ended while connecting"
                )
        return session

    async def _connect(self, robot_id: str, session: RobotSession) -> None:
        try:
            await session.connect()
        except Exception:
            if self._sessions.get(robot_id) is session:
                del self._sessions[robot_id]
                self._last_use.pop(robot_id, None)
            raise
        finally:
            if self._pending.get(robot_id) is asyncio.current_task():
                del self._pending[robot_id]

    def has_session(self, robot_id: str) -> bool:
        return robot_id in self._sessions

    def last_used(self, robot_id: str) -> Optional[float]:
        """Monotonic time of the last lookup for ``robot_id``."""
        return self._last_use.get(robot_id)

    async def free_session(self, robot_id: str) -> None:
        """End and forget the session for ``robot_id``; no-op if absent."""
        session = self._sessions.pop(robot_id, None)
        pending = self._pending.pop(robot_id, None)
        self._last_use.pop(robot_id, None)
        if session is None:
            return
        LOGGER.info("Freeing robot session %s", robot_id)
        await session.end()
        if pending is not None:
            await self._settle([pending])

    async def tear_down(self) -> None:
        """End every session in the pool and wait for in-flight connects."""
        sessions = list(self._sessions.values())
        pending = list(self._pending.values())
        self._sessions.clear()
        self._pending.clear()
        self._last_use.clear()

        results = await asyncio.gather(
            *(session.end() for session in sessions), return_exceptions=True
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                LOGGER.warning(
                    "Failed to end robot session %s: %s", session.robot_id, result
                )
        await self._settle(pending)

    @staticmethod
    async def _settle(tasks: List[asyncio.Task[None]]) -> None:
        # Ended sessions close their transport once the handshake returns
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                LOGGER.debug("Connect attempt for a freed session failed: %s", result)
