"""Server transport that sends to clients over Server-Sent Events and receives over HTTP POST."""

import asyncio
import logging
import posixpath
import uuid
from urllib.parse import urlsplit, urlunsplit

from aiohttp import web

from mcpwire.errors import SendEOFError
from mcpwire.transport.base import ServerTransport

_log = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
_DISCONNECT_POLL = 1.0


def _clean(path: str) -> str:
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*elements: str) -> str:
    parts = [element for element in elements if element]
    if not parts:
        return ""
    return _clean("/".join(parts))


def join_path(url, *args):
    """Return *url* with *args* joined onto its path, cleaned of ``.``, ``..`` and ``//``.

    A relative path stays relative, and a trailing slash on the last element is kept.
    """
    parts = urlsplit(url)
    elements = [parts.path, *args]
    if not elements[0].startswith("/"):
        elements[0] = "/" + elements[0]
        path = _join(*elements)[1:]
    else:
        path = _join(*elements)
    if elements[-1].endswith("/") and not path.endswith("/"):
        path += "/"
    if parts.netloc and path and not path.startswith("/"):
        path = "/" + path
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def complete_message_path(url_prefix, message_path):
    """Return the message endpoint URL made of *url_prefix* and *message_path*."""
    try:
        return join_path(url_prefix, message_path)
    except ValueError as exc:
        raise ValueError(f"failed to parse URL prefix {url_prefix!r}: {exc}") from exc


def _error_response(code: int, message: str) -> web.Response:
    _log.error("sse server transport error: code: %d, message: %s", code, message)
    return web.Response(status=code, text=message, content_type="text/plain")


def _connection_lost(request: web.Request) -> bool:
    transport = request.transport
    return transport is None or transport.is_closing()


class SSEServerTransport(ServerTransport):
    """Serves an SSE stream per client and accepts its messages by POST.

    With *host* set to None no HTTP server is started: mount :meth:`handle_sse`
    and :meth:`handle_message` in an application of your own instead.
    """

    def __init__(self, host="127.0.0.1", port=8080, sse_path="/sse",
                 message_path="/message", url_prefix=""):
        self.host = host
        self.port = port
        self.sse_path = sse_path
        self.message_path = message_path
        self.url_prefix = url_prefix
        self.message_endpoint_url = message_path
        if url_prefix:
            self.message_endpoint_url = complete_message_path(url_prefix, message_path)
        self.started = asyncio.Event()
        self._receiver = None
        self._session_manager = None
        self._runner: web.AppRunner | None = None
        self._cancelled = False
        self._stopped = asyncio.Event()
        self._in_flight = 0
        self._sends_idle = asyncio.Event()
        self._sends_idle.set()

    def set_receiver(self, receiver):
        self._receiver = receiver

    def set_session_manager(self, manager):
        self._session_manager = manager

    async def run(self):
        """Serve HTTP until shut down; without a host, just wait for shutdown."""
        if self._session_manager is None:
            raise RuntimeError("session manager must be set before run")
        if self.host is None:
            self.started.set()
            await self._stopped.wait()
            return
        app = web.Application()
        app.router.add_route("*", self.sse_path, self.handle_sse)
        app.router.add_route("*", self.message_path, self.handle_message)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            raise ConnectionError(f"failed to start HTTP server: {exc}") from exc
        self._runner = runner
        if runner.addresses:
            self.port = runner.addresses[0][1]
        self.started.set()
        await self._stopped.wait()

    async def send(self, session_id, message):
        """Queue *message* for the SSE stream of *session_id*."""
        if self._cancelled:
            raise ConnectionError("transport is shut down")
        self._in_flight += 1
        self._sends_idle.clear()
        try:
            await self._session_manager.send_message(session_id, bytes(message))
        finally:
            self._in_flight -= 1
            if not self._in_flight:
                self._sends_idle.set()

    async def shutdown(self, server_done):
        """Wait for *server_done*, finish in-flight sends, close sessions and stop serving."""
        await server_done.wait()
        self._cancelled = True
        await self._sends_idle.wait()
        if self._session_manager is not None:
            self._session_manager.close_all_sessions()
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
        self._stopped.set()

    async def handle_sse(self, request):
        """Open a session and stream its queued messages as SSE events."""
        response = web.StreamResponse(status=200, headers=_SSE_HEADERS)
        await response.prepare(request)

        session_id = str(uuid.uuid4())
        manager = self._session_manager
        manager.create_session(session_id)
        pending: asyncio.Future | None = None
        try:
            endpoint = f"{self.message_endpoint_url}?sessionID={session_id}"
            try:
                await response.write(f"event: endpoint\ndata: {endpoint}\n\n".encode())
            except (ConnectionError, RuntimeError):
                _log.error("send endpoint message fail")
                return response

            while True:
                if pending is None:
                    pending = asyncio.ensure_future(manager.get_message_for_send(session_id))
                done, _ = await asyncio.wait({pending}, timeout=_DISCONNECT_POLL)
                if not done:
                    if _connection_lost(request):
                        _log.debug("sse connection lost, sessionID=%s", session_id)
                        return response
                    continue
                finished, pending = pending, None
                try:
                    message = finished.result()
                except SendEOFError:
                    return response
                except Exception as exc:
                    _log.debug("sse connect request err: %s, sessionID=%s", exc, session_id)
                    return response

                _log.debug("Sending message: %s", message.decode("utf-8", "replace"))
                try:
                    await response.write(b"event: message\ndata: " + message + b"\n\n")
                except (ConnectionError, RuntimeError) as exc:
                    _log.error("Failed to write message: %s", exc)
                    if _connection_lost(request):
                        return response
        finally:
            if pending is not None:
                pending.cancel()
            manager.close_session(session_id)

    async def handle_message(self, request):
        """Pass a POSTed message to the receiver and answer 202 Accepted."""
        try:
            if request.method != "POST":
                return _error_response(405, "Method not allowed")
            session_id = request.query.get("sessionID", "")
            if not session_id:
                return _error_response(400, "Missing session ID")
            try:
                body = await request.read()
            except (ConnectionError, ValueError) as exc:
                return _error_response(400, f"Invalid request: {exc}")
            if self._receiver is None:
                raise RuntimeError("receiver is not set")
            try:
                await self._receiver(session_id, body)
            except Exception as exc:
                return _error_response(400, f"Failed to receive: {exc}")
            _log.debug("Received message: %s", body.decode("utf-8", "replace"))
            return web.Response(status=202)
        except Exception:
            _log.exception("message handler failed")
            return _error_response(500, "Internal server error")


class SSEHandler:
    """Request handlers of a transport, for mounting in an application of your own."""

    def __init__(self, transport):
        self.transport = transport

    async def handle_sse(self, request):
        return await self.transport.handle_sse(request)

    async def handle_message(self, request):
        return await self.transport.handle_message(request)


def create_sse_transport_and_handler(message_endpoint_url):
    """Return a transport that starts no server, and the handlers to mount for it.

    *message_endpoint_url* is what clients are told to POST to: a path or a full URL.
    """
    transport = SSEServerTransport(host=None, port=None)
    transport.message_endpoint_url = message_endpoint_url
    return transport, SSEHandler(transport)