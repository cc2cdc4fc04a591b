# mcpwire

Building blocks for a Model Context Protocol (MCP) server on asyncio. The
package decodes JSON-RPC 2.0 messages and routes them to your handlers. It
keeps per-session state. It carries messages over standard input/output or
over HTTP with Server-Sent Events. Client-side transports for both channels
are included.

## Installation

```
pip install mcpwire
```

To run the tests:

```
pip install "mcpwire[test]"
pytest
```

## What is in the package

- `mcpwire.server.dispatch.Dispatcher` takes raw messages from a transport and
  handles them.
  - It answers `ping`, `initialize`, `prompts/list`, `prompts/get`,
    `resources/list`, `resources/templates/list`, `resources/read`,
    `resources/subscribe`, `resources/unsubscribe`, `tools/list` and
    `tools/call`.
  - It marks a session ready on `notifications/initialized`.
  - It hands a client's responses to the futures waiting in
    `SessionState.pending_responses`.
  - You register tools, prompts, resources and resource templates by putting
    entries in its `tools`, `prompts`, `resources` and `resource_templates`
    dictionaries.
- `mcpwire.session.manager.SessionManager` keeps the live sessions.
  `run_heartbeat(interval)` and `check_sessions()` close sessions that have
  been idle longer than `max_idle_time`. They also close sessions whose
  detection coroutine fails three times in a row.
- `mcpwire.session.state.SessionState` holds what belongs to one session: the
  outgoing message queue, request ids, subscribed resources, client info and
  the initialization flags.
- `mcpwire.uritemplate.URITemplate` parses RFC 6570 templates. It tests URIs
  against them and extracts their variables.
- Transports, all defined against `mcpwire.transport.base.ServerTransport` and
  `ClientTransport`:
  - `mcpwire.transport.stdio_server.StdioServerTransport` handles
    newline-delimited JSON on stdin and stdout.
  - `mcpwire.transport.stdio_client.StdioClientTransport` starts a server
    command as a child process and talks to it over its pipes.
  - `mcpwire.transport.sse_server.SSEServerTransport` runs its own aiohttp
    server. `create_sse_transport_and_handler` returns a transport that starts
    no server, along with an `SSEHandler` to mount in your own aiohttp
    application.
  - `mcpwire.transport.sse_client.SSEClientTransport` opens an SSE stream and
    waits for the `endpoint` event. It then POSTs messages to that endpoint.
- `mcpwire.messages` builds JSON-RPC envelopes with `request`,
  `success_response`, `error_response` and `notification`, and serializes them
  with `encode`. It also defines the `Method` and `ErrorCode` enumerations and
  the `Implementation` and `ServerCapabilities` records.
- `mcpwire.errors` holds the exception hierarchy, rooted at `MCPError`.

## Example: a stdio server

```python
import asyncio

from mcpwire.messages import Implementation
from mcpwire.server.dispatch import Dispatcher
from mcpwire.session.manager import SessionManager
from mcpwire.transport.stdio_server import StdioServerTransport


async def always_alive(session_id):
    return None


def current_time(params):
    return {"content": [{"type": "text", "text": "12:00"}]}


async def main() -> None:
    transport = StdioServerTransport()  # stdin / stdout
    manager = SessionManager(always_alive)
    dispatcher = Dispatcher(
        manager,
        transport.send,
        server_info=Implementation(name="ExampleServer", version="1.0.0"),
    )
    dispatcher.tools["current_time"] = (
        {
            "name": "current_time",
            "description": "Report the current time",
            "inputSchema": {"type": "object", "properties": {"timezone": {"type": "string"}}},
        },
        current_time,
    )
    transport.set_session_manager(manager)
    transport.set_receiver(dispatcher.receive)
    await transport.run()


asyncio.run(main())
```

Handlers receive the request parameters as a dict. They may be plain
functions or coroutine functions. A resource template entry is
`(definition, URITemplate(...), handler)`. When a template matches, its
variables are passed to the handler under the `"arguments"` key.

## Example: an SSE server

```python
from mcpwire.transport.sse_server import SSEServerTransport

transport = SSEServerTransport("127.0.0.1", 8080, sse_path="/sse", message_path="/message")
# wire a SessionManager and a Dispatcher as above, then: await transport.run()
```

Clients connect to `/sse`. The first event they receive is `endpoint`. It
carries the URL to POST messages to, with a `sessionID` query parameter. Each
POST is answered with `202 Accepted`, and replies arrive as `message` events
on the stream.

To serve from an aiohttp application of your own:

```python
from aiohttp import web

from mcpwire.transport.sse_server import create_sse_transport_and_handler

transport, handler = create_sse_transport_and_handler("/message")
app = web.Application()
app.router.add_get("/sse", handler.handle_sse)
app.router.add_post("/message", handler.handle_message)
```

## Behaviour notes

- Before a session is ready, only `initialize`, `ping` and
  `notifications/initialized` are accepted.
- `initialize` must carry protocol version `2024-11-05`. Any other version is
  answered with an error.
- Errors are returned to the client with these codes:
  - an unknown method gets `METHOD_NOT_FOUND`;
  - unreadable parameters get `PARSE_ERROR`;
  - anything else gets `INTERNAL_ERROR`.
- When `Dispatcher.in_shutdown` is set, new requests are refused.
  `wait_idle()` waits for the requests already accepted to be answered.
  `shutdown(server_done)` on a transport stops it and closes every session
  once the `server_done` event is set.

## What the package does not do

There is no single server object that ties the pieces together for you. You
wire a `SessionManager`, a `Dispatcher` and a transport yourself, as in the
examples.

Nothing in the package does the following:

- send `list_changed` notifications when you change the registries;
- send `resources/updated` notifications to subscribers;
- ping clients from the heartbeat; you supply the detection coroutine.

There is no client-side protocol object either. The client transports only
move raw messages. The package installs no command.