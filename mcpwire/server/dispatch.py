"""Routing of incoming JSON-RPC messages to the server's handlers."""

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from mcpwire import messages
from mcpwire.errors import (
    DuplicateResponseError,
    LackResponseChannelError,
    LackSessionError,
    MCPError,
    MethodNotSupportError,
    RequestInvalidError,
    ServerNotSupportError,
    SessionNotInitializedError,
)
from mcpwire.messages import (
    JSONRPC_VERSION,
    PROTOCOL_VERSION,
    ErrorCode,
    Implementation,
    Method,
    ServerCapabilities,
)

_log = logging.getLogger(__name__)

Sender = Callable[[str, bytes], Awaitable[object]]
Handler = Callable[[dict[str, Any]], Any]


class _ParamsError(MCPError):
    """Request parameters could not be read as the expected object."""

    default_message = "json unmarshal error"


def _params(message: dict[str, Any], required: bool) -> dict[str, Any]:
    raw = message.get("params")
    if raw is None:
        if required:
            raise _ParamsError("missing params")
        return {}
    if not isinstance(raw, dict):
        raise _ParamsError("params must be a JSON object")
    return dict(raw)


def _is_valid_request(message: dict[str, Any]) -> bool:
    method = message.get("method")
    return (
        message.get("jsonrpc") == JSONRPC_VERSION
        and message.get("id") is not None
        and isinstance(method, str)
        and bool(method)
    )


def _error_code(exc: Exception) -> ErrorCode:
    if isinstance(exc, MethodNotSupportError):
        return ErrorCode.METHOD_NOT_FOUND
    if isinstance(exc, RequestInvalidError):
        return ErrorCode.INVALID_REQUEST
    if isinstance(exc, _ParamsError):
        return ErrorCode.PARSE_ERROR
    return ErrorCode.INTERNAL_ERROR


async def _invoke(handler: Handler, params: dict[str, Any]) -> Any:
    result = handler(params)
    if inspect.isawaitable(result):
        result = await result
    return result


class Dispatcher:
    """Decodes messages from clients, runs the matching handler and sends the reply.

    The registries are plain dictionaries:

    * ``tools``: tool name -> ``(definition, handler)``
    * ``prompts``: prompt name -> ``(definition, handler)``
    * ``resources``: resource URI -> ``(definition, handler)``
    * ``resource_templates``: URI template -> ``(definition, URITemplate, handler)``

    A handler is called with the request parameters as a dict and may be a
    plain function or a coroutine function. *sender* is awaited with a session
    id and the encoded message to deliver.
    """

    def __init__(self, session_manager, sender, capabilities=None, server_info=None, instructions=""):
        self.session_manager = session_manager
        self.sender: Sender = sender
        self.capabilities: ServerCapabilities = (
            capabilities if capabilities is not None else ServerCapabilities()
        )
        self.server_info: Implementation = server_info if server_info is not None else Implementation()
        self.instructions: str = instructions
        self.tools: dict[str, tuple[Any, Handler]] = {}
        self.prompts: dict[str, tuple[Any, Handler]] = {}
        self.resources: dict[str, tuple[Any, Handler]] = {}
        self.resource_templates: dict[str, tuple[Any, Any, Handler]] = {}
        self.in_shutdown = False
        self._requests: set[asyncio.Task] = set()
        self._background: set[asyncio.Task] = set()
        self._routes = {
            Method.PING: self._ping,
            Method.INITIALIZE: self._initialize,
            Method.PROMPTS_LIST: self._list_prompts,
            Method.PROMPTS_GET: self._get_prompt,
            Method.RESOURCES_LIST: self._list_resources,
            Method.RESOURCE_LIST_TEMPLATES: self._list_resource_templates,
            Method.RESOURCES_READ: self._read_resource,
            Method.RESOURCES_SUBSCRIBE: self._subscribe,
            Method.RESOURCES_UNSUBSCRIBE: self._unsubscribe,
            Method.TOOLS_LIST: self._list_tools,
            Method.TOOLS_CALL: self._call_tool,
        }

    # -- entry point -------------------------------------------------------

    async def receive(self, session_id, message):
        """Accept one raw message from *session_id* and route it.

        Requests, responses and most notifications are handled in the
        background; the ``initialized`` notification is handled before
        returning. Raises for unknown sessions, undecodable or invalid
        requests, and requests arriving during shutdown.
        """
        if not self.session_manager.has_session(session_id):
            raise LackSessionError()
        payload = json.loads(message)
        if not isinstance(payload, dict):
            raise ValueError("message must be a JSON object")

        if "id" not in payload:
            if payload.get("method") == Method.NOTIFICATION_INITIALIZED:
                await self._logged_notification(session_id, payload)
            else:
                self._spawn(self._logged_notification(session_id, payload), self._background)
            return

        if "method" not in payload:
            self._spawn(self._logged_response(session_id, payload), self._background)
            return

        if not _is_valid_request(payload):
            raise RequestInvalidError()
        if self.in_shutdown:
            raise MCPError("server already shutdown")
        self._spawn(self._logged_request(session_id, payload), self._requests)

    async def wait_idle(self):
        """Wait until every request accepted so far has been answered."""
        while self._requests:
            await asyncio.gather(*list(self._requests), return_exceptions=True)

    def _spawn(self, coro: Coroutine, registry: set[asyncio.Task]) -> None:
        task = asyncio.create_task(coro)
        registry.add(task)
        task.add_done_callback(registry.discard)

    async def _logged_request(self, session_id: str, request: dict[str, Any]) -> None:
        try:
            await self.handle_request(session_id, request)
        except Exception as exc:
            _log.error("receive request id=%r method=%r error: %s",
                       request.get("id"), request.get("method"), exc)

    async def _logged_notification(self, session_id: str, notification: dict[str, Any]) -> None:
        try:
            await self.handle_notification(session_id, notification)
        except Exception as exc:
            _log.error("receive notify method=%r error: %s", notification.get("method"), exc)

    async def _logged_response(self, session_id: str, response: dict[str, Any]) -> None:
        try:
            await self.handle_response(session_id, response)
        except Exception as exc:
            _log.error("receive response id=%r error: %s", response.get("id"), exc)

    # -- message kinds -----------------------------------------------------

    async def handle_request(self, session_id, request):
        """Run the handler for *request* and send its result or error to the session."""
        method = request.get("method")
        if method not in (Method.INITIALIZE, Method.PING):
            if not self.session_manager.get_session(session_id).ready:
                raise SessionNotInitializedError()
        if method != Method.PING:
            self.session_manager.touch_session(session_id)

        request_id = request.get("id")
        try:
            route = self._routes.get(method) if isinstance(method, str) else None
            if route is None:
                raise MethodNotSupportError(f"method not support: method={method}")
            result = await route(session_id, request)
        except Exception as exc:
            reply = messages.error_response(request_id, _error_code(exc), str(exc))
        else:
            reply = messages.success_response(request_id, result)
        await self.sender(session_id, messages.encode(reply))

    async def handle_notification(self, session_id, notification):
        """Act on a notification from the client."""
        state = self.session_manager.get_session(session_id)
        method = notification.get("method")
        if not state.ready and method != Method.NOTIFICATION_INITIALIZED:
            raise SessionNotInitializedError()
        if method == Method.NOTIFICATION_INITIALIZED:
            _params(notification, required=False)
            if not state.received_init_request:
                raise MCPError("the server has not received the client's initialization request")
            state.mark_ready()
            return
        raise MethodNotSupportError(f"method not support: method={method}")

    async def handle_response(self, session_id, response):
        """Hand a client's response to whoever is waiting for it."""
        state = self.session_manager.get_session(session_id)
        request_id = response.get("id")
        future = state.pending_responses.get(str(request_id))
        if future is None:
            raise LackResponseChannelError(
                f"lack response chan: sessionID={session_id}, requestID={request_id}"
            )
        if future.done():
            raise DuplicateResponseError(
                f"duplicate response received: sessionID={session_id}, requestID={request_id}"
            )
        future.set_result(response)

    # -- request handlers --------------------------------------------------

    async def _ping(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _initialize(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        params = _params(request, required=True)
        if params.get("protocolVersion") != PROTOCOL_VERSION:
            raise MCPError(
                f"protocol version not supported, supported version is {PROTOCOL_VERSION}"
            )
        state = self.session_manager.get_session(session_id)
        state.set_client_info(params.get("clientInfo"), params.get("capabilities"))
        state.mark_received_init_request()
        result = {
            "serverInfo": self.server_info.to_dict(),
            "capabilities": self.capabilities.to_dict(),
            "protocolVersion": PROTOCOL_VERSION,
        }
        if self.instructions:
            result["instructions"] = self.instructions
        return result

    def _require(self, capability: Any) -> None:
        if capability is None:
            raise ServerNotSupportError()

    async def _list_prompts(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._require(self.capabilities.prompts)
        _params(request, required=False)
        return {"prompts": [prompt for prompt, _ in self.prompts.values()]}

    async def _get_prompt(self, session_id: str, request: dict[str, Any]) -> Any:
        self._require(self.capabilities.prompts)
        params = _params(request, required=True)
        name = params.get("name")
        entry = self.prompts.get(name) if isinstance(name, str) else None
        if entry is None:
            raise MCPError(f"missing prompt, promptName={name}")
        return await _invoke(entry[1], params)

    async def _list_resources(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._require(self.capabilities.resources)
        _params(request, required=False)
        return {"resources": [resource for resource, _ in self.resources.values()]}

    async def _list_resource_templates(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._require(self.capabilities.resources)
        _params(request, required=False)
        return {"resourceTemplates": [template for template, _, _ in self.resource_templates.values()]}

    async def _read_resource(self, session_id: str, request: dict[str, Any]) -> Any:
        self._require(self.capabilities.resources)
        params = _params(request, required=True)
        uri = params.get("uri")
        handler = None
        if isinstance(uri, str):
            entry = self.resources.get(uri)
            if entry is not None:
                handler = entry[1]
            for _, template, template_handler in self.resource_templates.values():
                variables = template.match(uri)
                if variables is None:
                    continue
                handler = template_handler
                params["arguments"] = variables
                break
        if handler is None:
            raise MCPError(f"missing resource, resourceName={uri}")
        return await _invoke(handler, params)

    def _require_subscribe(self) -> None:
        resources = self.capabilities.resources
        if resources is None or not resources.get("subscribe"):
            raise ServerNotSupportError()

    async def _subscribe(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._require_subscribe()
        params = _params(request, required=True)
        state = self.session_manager.get_session(session_id)
        state.subscribed_resources.add(params.get("uri"))
        return {}

    async def _unsubscribe(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._require_subscribe()
        params = _params(request, required=True)
        state = self.session_manager.get_session(session_id)
        state.subscribed_resources.discard(params.get("uri"))
        return {}

    async def _list_tools(self, session_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._require(self.capabilities.tools)
        _params(request, required=False)
        return {"tools": [tool for tool, _ in self.tools.values()]}

    async def _call_tool(self, session_id: str, request: dict[str, Any]) -> Any:
        self._require(self.capabilities.tools)
        params = _params(request, required=True)
        name = params.get("name")
        entry = self.tools.get(name) if isinstance(name, str) else None
        if entry is None:
            raise MCPError(f"missing tool, toolName={name}")
        return await _invoke(entry[1], params)