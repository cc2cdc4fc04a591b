"""Client transport that starts a server process and talks to it over pipes."""

import asyncio
import logging
import os
import subprocess
from collections.abc import Mapping

from mcpwire.transport.base import ClientTransport

_log = logging.getLogger(__name__)

MESSAGE_DELIMITER = b"\n"


def _strip_line_ending(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


def _build_env(extra) -> dict[str, str]:
    environ = dict(os.environ)
    if extra is None:
        return environ
    if isinstance(extra, Mapping):
        environ.update({str(key): str(value) for key, value in extra.items()})
        return environ
    for entry in extra:
        key, _, value = entry.partition("=")
        environ[key] = value
    return environ


class StdioClientTransport(ClientTransport):
    """Runs *command* with *args* and exchanges one message per line with it.

    *env* adds to the current environment: a mapping, or ``KEY=VALUE`` strings.
    """

    def __init__(self, command, args=(), env=None):
        self.command = command
        self.args = list(args)
        self.env = _build_env(env)
        self._receiver = None
        self._process: asyncio.subprocess.Process | None = None
        self._receive_task: asyncio.Task | None = None
        self._closing = False

    def set_receiver(self, receiver):
        self._receiver = receiver

    async def start(self):
        """Start the server process and begin reading its output."""
        if self._receiver is None:
            raise RuntimeError("receiver must be set before start")
        self._process = await asyncio.create_subprocess_exec(
            self.command,
            *self.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            env=self.env,
        )
        self._closing = False
        self._receive_task = asyncio.create_task(self._receive(self._process.stdout))

    async def _receive(self, stdout: asyncio.StreamReader):
        while True:
            try:
                line = await stdout.readline()
            except ValueError as exc:
                _log.error("client receive unexpected error reading input: %s", exc)
                return
            if not line or self._closing:
                return
            try:
                await self._receiver(_strip_line_ending(line))
            except Exception as exc:
                _log.error("receiver failed: %s", exc)
                return

    async def send(self, message):
        """Write *message* followed by a newline to the server's input."""
        if self._process is None:
            raise RuntimeError("transport is not started")
        stdin = self._process.stdin
        stdin.write(bytes(message) + MESSAGE_DELIMITER)
        await stdin.drain()

    async def close(self):
        """Close the server's input, wait for it to exit and for reading to end.

        Raises :class:`subprocess.CalledProcessError` if the process exits
        with a non-zero status.
        """
        process = self._process
        if process is None:
            return
        self._process = None
        self._closing = True
        process.stdin.close()
        try:
            await process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass
        returncode = await process.wait()
        if self._receive_task is not None:
            await self._receive_task
            self._receive_task = None
        if returncode != 0:
            raise subprocess.CalledProcessError(returncode, [self.command, *self.args])