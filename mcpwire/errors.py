"""Exceptions raised by the server, its sessions and its transports."""


class MCPError(Exception):
    """Base class of every error raised by this package."""

    default_message = "mcp error"

    def __str__(self) -> str:
        return super().__str__() or self.default_message


class LackSessionError(MCPError):
    """The session named by a message does not exist."""

    default_message = "lack session"


class SessionNotInitializedError(MCPError):
    """A message arrived before the session finished its initialization."""

    default_message = "session has not initialized"


class ServerNotSupportError(MCPError):
    """The server was asked for a capability it does not advertise."""

    default_message = "server not support"


class MethodNotSupportError(MCPError):
    """A request or notification named an unknown method."""

    default_message = "method not support"


class RequestInvalidError(MCPError):
    """A JSON-RPC request was malformed."""

    default_message = "request invalid"


class SendEOFError(MCPError):
    """The session was closed and every queued message has been delivered."""

    default_message = "send EOF"


class SessionClosedError(MCPError):
    """A message was sent to a session that is already closed."""

    default_message = "session already closed"


class LackResponseChannelError(MCPError):
    """A response arrived for a request nobody is waiting for."""

    default_message = "lack response chan"


class DuplicateResponseError(MCPError):
    """A second response arrived for the same request."""

    default_message = "duplicate response received"


class ResponseError(MCPError):
    """The peer answered a request with a JSON-RPC error object."""

    default_message = "response error"

    def __init__(self, code, message, data=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        text = f"code={self.code} message={self.message}"
        if self.data is not None:
            text += f" data={self.data!r}"
        return text