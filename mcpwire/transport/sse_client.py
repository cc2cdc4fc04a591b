"""Client transport that receives over Server-Sent Events and sends over HTTP POST."""

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from urllib.parse import urljoin, urlsplit

import aiohttp

from mcpwire.transport.base import ClientTransport

_log = logging.getLogger(__name__)

ENDPOINT_TIMEOUT = 10.0
"""Seconds to wait for the server to announce its message endpoint."""

_SSE_REQUEST_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def _iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Split a stream of byte chunks into lines, keeping the newline."""
    pending = b""
    async for chunk in chunks:
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            yield line + b"\n"
    if pending:
        yield pending


class SSEClientTransport(ClientTransport):
    """Connects to an SSE endpoint, learns where to POST, and relays messages.

    *session* is an :class:`aiohttp.ClientSession` to use; when omitted the
    transport creates one and closes it on :meth:`close`.
    """

    def __init__(self, server_url, receive_timeout=30.0, session=None):
        try:
            urlsplit(server_url)
        except ValueError as exc:
            raise ValueError(f"failed to parse server URL: {exc}") from exc
        self.server_url = server_url
        self.receive_timeout = receive_timeout
        self.message_endpoint: str | None = None
        self._session = session
        self._owns_session = session is None
        self._receiver = None
        self._response: aiohttp.ClientResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._endpoint_ready = asyncio.Event()
        self._closing = False

    def set_receiver(self, receiver):
        self._receiver = receiver

    async def start(self):
        """Open the event stream and wait until the message endpoint is known."""
        if self._receiver is None:
            raise RuntimeError("receiver must be set before start")
        self._closing = False
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        try:
            await self._connect()
        except BaseException:
            await self.close()
            raise

    async def _connect(self):
        try:
            response = await self._session.get(
                self.server_url,
                headers=_SSE_REQUEST_HEADERS,
                timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
            )
        except aiohttp.ClientError as exc:
            raise ConnectionError(f"failed to connect to SSE stream: {exc}") from exc
        if response.status != 200:
            response.release()
            raise ConnectionError(
                f"unexpected status code: {response.status}, status: {response.reason}"
            )
        self._response = response
        self._reader_task = asyncio.create_task(
            self._read_sse(_iter_lines(response.content.iter_any()))
        )

        waiter = asyncio.ensure_future(self._endpoint_ready.wait())
        try:
            await asyncio.wait(
                {waiter, self._reader_task},
                timeout=ENDPOINT_TIMEOUT,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
        if self._endpoint_ready.is_set():
            return
        if self._reader_task.done():
            raise ConnectionError("SSE stream ended before the endpoint was received")
        raise TimeoutError("timeout waiting for endpoint")

    async def _read_sse(self, lines: AsyncIterable[bytes]):
        """Parse the event stream and handle each complete event."""
        event = data = ""
        try:
            async for raw in lines:
                line = raw.decode("utf-8", "replace").rstrip("\r\n")
                if not line:
                    if event and data:
                        await self.handle_sse_event(event, data)
                        event = data = ""
                    continue
                if line.startswith("event:"):
                    event = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    data = line[len("data:"):].strip()
        except (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError) as exc:
            if not self._closing:
                _log.error("SSE stream error: %s", exc)
            return
        if event and data:
            await self.handle_sse_event(event, data)

    async def handle_sse_event(self, event, data):
        """Act on one event: remember the endpoint, or pass a message to the receiver."""
        if event == "endpoint":
            try:
                endpoint = urljoin(self.server_url, data)
                urlsplit(endpoint)
            except ValueError as exc:
                _log.error("Error parsing endpoint URL: %s", exc)
                return
            _log.debug("Received endpoint: %s", endpoint)
            self.message_endpoint = endpoint
            self._endpoint_ready.set()
        elif event == "message":
            if self._receiver is None:
                _log.error("Error receive message: receiver is not set")
                return
            try:
                await asyncio.wait_for(self._receiver(data.encode("utf-8")), self.receive_timeout)
            except Exception as exc:
                _log.error("Error receive message: %s", exc)

    async def send(self, message):
        """POST *message* to the endpoint the server announced."""
        if self.message_endpoint is None or self._session is None:
            raise RuntimeError("transport is not started")
        payload = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        _log.debug("Sending message: %s to %s", payload.decode("utf-8", "replace"), self.message_endpoint)
        try:
            async with self._session.post(
                self.message_endpoint,
                data=payload,
                headers={"Content-Type": "application/json"},
            ) as response:
                if not 200 <= response.status < 300:
                    raise ConnectionError(
                        f"unexpected status code: {response.status}, status: {response.reason}"
                    )
        except aiohttp.ClientError as exc:
            raise ConnectionError(f"failed to send message: {exc}") from exc

    async def close(self):
        """Drop the event stream and wait for the reader to stop."""
        self._closing = True
        response, self._response = self._response, None
        if response is not None:
            response.close()
        task, self._reader_task = self._reader_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._owns_session and self._session is not None:
            session, self._session = self._session, None
            await session.close()