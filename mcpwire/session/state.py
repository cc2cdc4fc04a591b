"""Per-session state kept by the server."""

import asyncio
import itertools
import time
from collections.abc import Awaitable
from typing import Any

from mcpwire.errors import SendEOFError, SessionClosedError


class SessionState:
    """Outgoing message queue, pending requests and flags of one client session."""

    def __init__(self, queue_size=64):
        self.last_active_at = time.monotonic()
        self.client_info: Any = None
        self.client_capabilities: Any = None
        self.pending_responses: dict[str, asyncio.Future] = {}
        self.subscribed_resources: set[str] = set()
        self._outbox: asyncio.Queue[bytes] = asyncio.Queue(maxsize=queue_size)
        self._closed = asyncio.Event()
        self._request_ids = itertools.count(1)
        self._received_init_request = False
        self._ready = False

    @property
    def received_init_request(self) -> bool:
        return self._received_init_request

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def set_client_info(self, client_info, client_capabilities):
        """Remember what the client said about itself when initializing."""
        self.client_info = client_info
        self.client_capabilities = client_capabilities

    def mark_received_init_request(self):
        self._received_init_request = True

    def mark_ready(self):
        self._ready = True

    def next_request_id(self) -> int:
        """Return a fresh id for a request sent to the client."""
        return next(self._request_ids)

    def touch(self):
        """Record activity on the session now."""
        self.last_active_at = time.monotonic()

    def close(self):
        """Close the session; queued messages can still be taken."""
        self._closed.set()

    async def _until_closed(self, awaitable: Awaitable) -> tuple[bool, Any]:
        """Await *awaitable* unless the session closes first."""
        task = asyncio.ensure_future(awaitable)
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({task, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not task.done():
                task.cancel()
        if task.done() and not task.cancelled():
            return True, task.result()
        return False, None

    async def send_message(self, message):
        """Queue a message for the client, waiting while the queue is full."""
        if self.closed:
            raise SessionClosedError()
        delivered, _ = await self._until_closed(self._outbox.put(message))
        if not delivered:
            raise SessionClosedError()

    async def get_message_for_send(self) -> bytes:
        """Take the next queued message; raise SendEOFError once closed and drained."""
        if not self._outbox.empty():
            return self._outbox.get_nowait()
        if self.closed:
            raise SendEOFError()
        received, message = await self._until_closed(self._outbox.get())
        if received:
            return message
        if not self._outbox.empty():
            return self._outbox.get_nowait()
        raise SendEOFError()