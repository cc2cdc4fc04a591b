"""Server transport that speaks newline-delimited JSON-RPC over stdin and stdout."""

import asyncio
import logging
import sys

from mcpwire.transport.base import ServerTransport

_log = logging.getLogger(__name__)

STDIO_SESSION_ID = "stdio"
"""The single session every stdio connection belongs to."""

MESSAGE_DELIMITER = b"\n"


def _strip_line_ending(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


class StdioServerTransport(ServerTransport):
    """Reads one message per line from *reader* and writes replies to *writer*.

    *reader* is an :class:`asyncio.StreamReader`; when omitted, standard input
    is attached when the transport runs. *writer* is a binary file object or an
    :class:`asyncio.StreamWriter`; it defaults to standard output.
    """

    def __init__(self, reader=None, writer=None):
        self._reader = reader
        self._writer = writer if writer is not None else sys.stdout.buffer
        self._receiver = None
        self._session_manager = None
        self._pipe = None
        self._receive_task: asyncio.Task | None = None
        self._stopping = False
        self._done = asyncio.Event()

    def set_receiver(self, receiver):
        self._receiver = receiver

    def set_session_manager(self, manager):
        self._session_manager = manager

    async def _open_stdin(self) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        self._pipe, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer
        )
        return reader

    async def run(self):
        """Deliver incoming lines to the receiver until input ends or shutdown."""
        if self._receiver is None or self._session_manager is None:
            raise RuntimeError("receiver and session manager must be set before run")
        reader = self._reader if self._reader is not None else await self._open_stdin()
        self._session_manager.create_session(STDIO_SESSION_ID)
        self._receive_task = asyncio.create_task(self._receive(reader))
        try:
            await self._receive_task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
        finally:
            self._done.set()

    async def _receive(self, reader: asyncio.StreamReader):
        while True:
            try:
                line = await reader.readline()
            except ValueError as exc:
                _log.error("server unexpected error reading input: %s", exc)
                return
            if not line:
                return
            message = _strip_line_ending(line)
            if not message.strip(b" \t"):
                _log.debug("skipping empty message")
                continue
            try:
                await self._receiver(STDIO_SESSION_ID, message)
            except Exception as exc:
                _log.error("receiver failed: %s", exc)

    async def send(self, session_id, message):
        """Write *message* followed by a newline; the session id is ignored."""
        try:
            self._writer.write(bytes(message) + MESSAGE_DELIMITER)
            drain = getattr(self._writer, "drain", None)
            if drain is not None:
                await drain()
            else:
                flush = getattr(self._writer, "flush", None)
                if flush is not None:
                    flush()
        except OSError as exc:
            raise ConnectionError(f"failed to write: {exc}") from exc

    async def shutdown(self, server_done):
        """Stop reading, then wait until reading ends or *server_done* is set."""
        self._stopping = True
        if self._receive_task is not None:
            self._receive_task.cancel()
        if self._pipe is not None:
            self._pipe.close()
        if self._receive_task is None:
            return
        waiters = {
            asyncio.ensure_future(self._done.wait()),
            asyncio.ensure_future(server_done.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()