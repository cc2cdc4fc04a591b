"""Registry of live sessions with idle cleanup and liveness checks."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterator

from mcpwire.errors import LackSessionError
from mcpwire.session.state import SessionState

_log = logging.getLogger(__name__)

Detection = Callable[[str], Awaitable[object]]


class SessionManager:
    """Keeps the sessions of a server and drops dead or idle ones."""

    detection_attempts = 3

    def __init__(self, detection, max_idle_time=None):
        self.detection: Detection = detection
        self.max_idle_time: float | None = max_idle_time
        self._sessions: dict[str, SessionState] = {}
        self._stop = asyncio.Event()

    def create_session(self, session_id) -> SessionState:
        state = SessionState()
        self._sessions[session_id] = state
        return state

    def has_session(self, session_id) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id) -> SessionState:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise LackSessionError() from None

    async def send_message(self, session_id, message):
        await self.get_session(session_id).send_message(message)

    async def get_message_for_send(self, session_id) -> bytes:
        return await self.get_session(session_id).get_message_for_send()

    def touch_session(self, session_id):
        """Record activity on a session; unknown ids are ignored."""
        state = self._sessions.get(session_id)
        if state is not None:
            state.touch()

    def close_session(self, session_id):
        """Remove and close a session; unknown ids are ignored."""
        state = self._sessions.pop(session_id, None)
        if state is not None:
            state.close()

    def close_all_sessions(self):
        for session_id in list(self._sessions):
            self.close_session(session_id)

    async def run_heartbeat(self, interval=60.0):
        """Check every session each *interval* seconds until stopped."""
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), interval)
            except asyncio.TimeoutError:
                await self.check_sessions()
            else:
                return

    async def check_sessions(self):
        """Close sessions that are idle too long or fail every liveness probe."""
        now = time.monotonic()
        for session_id, state in list(self._sessions.items()):
            if self._sessions.get(session_id) is not state:
                continue
            if self.max_idle_time and now - state.last_active_at > self.max_idle_time:
                self.close_session(session_id)
                continue
            if not await self._is_alive(session_id):
                self.close_session(session_id)

    async def _is_alive(self, session_id: str) -> bool:
        for attempt in range(1, self.detection_attempts + 1):
            try:
                await self.detection(session_id)
            except Exception as exc:
                _log.debug("session %s probe %d failed: %s", session_id, attempt, exc)
            else:
                return True
        return False

    def stop_heartbeat(self):
        self._stop.set()

    def sessions(self) -> Iterator[tuple[str, SessionState]]:
        """Iterate over a snapshot of (session id, state) pairs."""
        yield from list(self._sessions.items())

    def is_empty(self) -> bool:
        return not self._sessions