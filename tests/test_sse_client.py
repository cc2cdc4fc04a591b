import asyncio
import contextlib
import socket
from urllib.parse import parse_qs, urlsplit

import pytest
from aiohttp import web

from mcpwire.session.manager import SessionManager
from mcpwire.transport.sse_client import SSEClientTransport
from mcpwire.transport.sse_server import SSEServerTransport, create_sse_transport_and_handler


async def _no_probe(session_id):
    return None


@contextlib.asynccontextmanager
async def _serve(app):
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        await runner.cleanup()


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _collector():
    queue = asyncio.Queue()

    async def receive(*args):
        await queue.put(args)

    return queue, receive


async def _exchange(client, server):
    server_queue, server_receiver = _collector()
    client_queue, client_receiver = _collector()
    server.set_receiver(server_receiver)
    client.set_receiver(client_receiver)

    await client.start()
    try:
        await client.send(b"hello")
        session_id, received = await asyncio.wait_for(server_queue.get(), 5)
        assert received == b"hello"

        announced = parse_qs(urlsplit(client.message_endpoint).query)["sessionID"][0]
        assert announced == session_id

        await server.send(session_id, b"hello")
        (delivered,) = await asyncio.wait_for(client_queue.get(), 5)
        assert delivered == b"hello"
    finally:
        await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("data", "want"),
    [
        ("/sse/messages", "https://api.example.com/sse/messages"),
        ("https://api.example.org/sse/messages", "https://api.example.org/sse/messages"),
    ],
)
async def test_endpoint_event_resolves_against_server_url(data, want):
    client = SSEClientTransport("https://api.example.com/mcp")
    await client.handle_sse_event("endpoint", data)
    assert client.message_endpoint == want


@pytest.mark.asyncio
async def test_message_event_reaches_receiver():
    queue, receiver = _collector()
    client = SSEClientTransport("https://api.example.com/mcp")
    client.set_receiver(receiver)
    await client.handle_sse_event("message", '{"id":1}')
    assert queue.get_nowait() == (b'{"id":1}',)
    assert queue.empty()
    assert client.message_endpoint is None


@pytest.mark.asyncio
async def test_unknown_event_is_ignored():
    queue, receiver = _collector()
    client = SSEClientTransport("https://api.example.com/mcp")
    client.set_receiver(receiver)
    await client.handle_sse_event("other", "payload")
    assert queue.empty()
    assert client.message_endpoint is None


@pytest.mark.asyncio
async def test_send_before_start_fails():
    client = SSEClientTransport("https://api.example.com/mcp")
    with pytest.raises(RuntimeError):
        await client.send(b"hello")


@pytest.mark.asyncio
async def test_start_without_receiver_fails():
    client = SSEClientTransport("https://api.example.com/mcp")
    with pytest.raises(RuntimeError):
        await client.start()


@pytest.mark.asyncio
async def test_with_sse_server_transport():
    server = SSEServerTransport(host="127.0.0.1", port=0)
    server.set_session_manager(SessionManager(_no_probe))
    run_task = asyncio.create_task(server.run())
    await asyncio.wait_for(server.started.wait(), 5)

    client = SSEClientTransport(f"http://127.0.0.1:{server.port}/sse")
    try:
        await _exchange(client, server)
    finally:
        done = asyncio.Event()
        done.set()
        await asyncio.wait_for(server.shutdown(done), 10)
        await asyncio.wait_for(run_task, 5)
    assert run_task.done()


@pytest.mark.asyncio
async def test_with_sse_handler():
    port = _free_port()
    base = f"http://127.0.0.1:{port}"
    server, handler = create_sse_transport_and_handler(f"{base}/message")
    server.set_session_manager(SessionManager(_no_probe))

    app = web.Application()
    app.router.add_get("/sse", handler.handle_sse)
    app.router.add_post("/message", handler.handle_message)
    runner = web.AppRunner(app)
    await runner.setup()
    await web.TCPSite(runner, "127.0.0.1", port).start()
    run_task = asyncio.create_task(server.run())

    client = SSEClientTransport(f"{base}/sse")
    try:
        await _exchange(client, server)
        assert client.message_endpoint.startswith(f"{base}/message?sessionID=")
    finally:
        done = asyncio.Event()
        done.set()
        await asyncio.wait_for(server.shutdown(done), 10)
        await asyncio.wait_for(run_task, 5)
        await runner.cleanup()


@pytest.mark.asyncio
async def test_stream_split_across_chunks_and_crlf():
    pieces = [
        b"event: end",
        b"point\r\ndata: /msg?sessionID=abc\r\n\r\n",
        b'event: message\ndata: {"a":',
        b"1}\n\n",
        b"event: message\ndata: tail",
    ]

    async def sse(request):
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        for piece in pieces:
            await response.write(piece)
            await asyncio.sleep(0.01)
        return response

    app = web.Application()
    app.router.add_get("/sse", sse)
    queue, receiver = _collector()
    async with _serve(app) as base:
        client = SSEClientTransport(f"{base}/sse")
        client.set_receiver(receiver)
        await client.start()
        try:
            assert client.message_endpoint == f"{base}/msg?sessionID=abc"
            first = await asyncio.wait_for(queue.get(), 5)
            last = await asyncio.wait_for(queue.get(), 5)
        finally:
            await client.close()
    assert first == (b'{"a":1}',)
    assert last == (b"tail",)


@pytest.mark.asyncio
async def test_start_fails_on_bad_status():
    async def sse(request):
        return web.Response(status=404, text="missing")

    app = web.Application()
    app.router.add_get("/sse", sse)
    queue, receiver = _collector()
    async with _serve(app) as base:
        client = SSEClientTransport(f"{base}/sse")
        client.set_receiver(receiver)
        with pytest.raises(ConnectionError):
            await client.start()


@pytest.mark.asyncio
async def test_start_fails_when_stream_ends_without_endpoint():
    async def sse(request):
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        await response.write(b"event: message\ndata: early\n\n")
        return response

    app = web.Application()
    app.router.add_get("/sse", sse)
    queue, receiver = _collector()
    async with _serve(app) as base:
        client = SSEClientTransport(f"{base}/sse")
        client.set_receiver(receiver)
        with pytest.raises(ConnectionError):
            await client.start()
    assert client.message_endpoint is None


@pytest.mark.asyncio
async def test_send_posts_body_and_checks_status():
    posted = []

    async def sse(request):
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        await response.write(b"event: endpoint\ndata: /ok\n\n")
        return response

    async def ok(request):
        posted.append((await request.read(), request.headers["Content-Type"]))
        return web.Response(status=202)

    async def broken(request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get("/sse", sse)
    app.router.add_post("/ok", ok)
    app.router.add_post("/broken", broken)
    queue, receiver = _collector()
    async with _serve(app) as base:
        client = SSEClientTransport(f"{base}/sse")
        client.set_receiver(receiver)
        await client.start()
        try:
            await client.send(b"hello")
            client.message_endpoint = f"{base}/broken"
            with pytest.raises(ConnectionError):
                await client.send(b"hello")
        finally:
            await client.close()
    assert posted == [(b"hello", "application/json")]