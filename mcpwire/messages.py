"""JSON-RPC message construction and encoding for the model context protocol."""

import dataclasses
import json
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"


class Method(StrEnum):
    """Names of the requests and notifications exchanged with a client."""

    PING = "ping"
    INITIALIZE = "initialize"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"
    RESOURCES_LIST = "resources/list"
    RESOURCE_LIST_TEMPLATES = "resources/templates/list"
    RESOURCES_READ = "resources/read"
    RESOURCES_SUBSCRIBE = "resources/subscribe"
    RESOURCES_UNSUBSCRIBE = "resources/unsubscribe"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    NOTIFICATION_INITIALIZED = "notifications/initialized"
    NOTIFICATION_TOOLS_LIST_CHANGED = "notifications/tools/list_changed"
    NOTIFICATION_PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"
    NOTIFICATION_RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
    NOTIFICATION_RESOURCES_UPDATED = "notifications/resources/updated"


class ErrorCode(IntEnum):
    """Standard JSON-RPC error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class Implementation:
    """Name and version of a client or server."""

    name: str = ""
    version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "version": self.version}


def _prompts_default() -> dict[str, Any]:
    return {"listChanged": True}


def _resources_default() -> dict[str, Any]:
    return {"listChanged": True, "subscribe": True}


def _tools_default() -> dict[str, Any]:
    return {"listChanged": True}


@dataclass
class ServerCapabilities:
    """What a server offers; a capability set to None is not advertised."""

    prompts: dict[str, Any] | None = field(default_factory=_prompts_default)
    resources: dict[str, Any] | None = field(default_factory=_resources_default)
    tools: dict[str, Any] | None = field(default_factory=_tools_default)

    def to_dict(self) -> dict[str, Any]:
        items = (("prompts", self.prompts), ("resources", self.resources), ("tools", self.tools))
        return {name: dict(value) for name, value in items if value is not None}


def _require_id(request_id) -> None:
    if request_id is None:
        raise ValueError("request id must not be None")


def request(request_id, method, params=None) -> dict[str, Any]:
    """Build a JSON-RPC request; *params* is left out when None."""
    _require_id(request_id)
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": str(method)}
    if params is not None:
        message["params"] = params
    return message


def success_response(request_id, result) -> dict[str, Any]:
    """Build a JSON-RPC response carrying *result*."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id, code, message) -> dict[str, Any]:
    """Build a JSON-RPC response carrying an error object."""
    _require_id(request_id)
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": int(code), "message": message},
    }


def notification(method, params=None) -> dict[str, Any]:
    """Build a JSON-RPC notification; *params* is left out when None."""
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": str(method)}
    if params is not None:
        message["params"] = params
    return message


def _to_json(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def encode(message) -> bytes:
    """Serialize a message as compact UTF-8 JSON."""
    return json.dumps(
        message, separators=(",", ":"), ensure_ascii=False, default=_to_json
    ).encode("utf-8")