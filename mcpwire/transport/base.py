"""Interfaces shared by the client and server transports."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Protocol

ClientReceiver = Callable[[bytes], Awaitable[None]]
"""Called with each message the client transport receives."""

ServerReceiver = Callable[[str, bytes], Awaitable[None]]
"""Called with the session id and each message the server transport receives."""


class SessionManagerProtocol(Protocol):
    """What a server transport needs from the session registry."""

    def create_session(self, session_id: str) -> object:
        """Register a new session."""

    async def send_message(self, session_id: str, message: bytes) -> None:
        """Queue a message for a session."""

    async def get_message_for_send(self, session_id: str) -> bytes:
        """Take the next message queued for a session."""

    def close_session(self, session_id: str) -> None:
        """Remove and close one session."""

    def close_all_sessions(self) -> None:
        """Remove and close every session."""


class ClientTransport(ABC):
    """Carries JSON-RPC messages from a client to one server."""

    @abstractmethod
    async def start(self):
        """Open the connection to the server."""

    @abstractmethod
    async def send(self, message):
        """Transmit one message to the server."""

    @abstractmethod
    def set_receiver(self, receiver):
        """Set the coroutine function called for each incoming message."""

    @abstractmethod
    async def close(self):
        """Close the connection and wait for the reader to stop."""


class ServerTransport(ABC):
    """Carries JSON-RPC messages between a server and its client sessions."""

    @abstractmethod
    async def run(self):
        """Serve until shut down."""

    @abstractmethod
    async def send(self, session_id, message):
        """Transmit one message to the given session."""

    @abstractmethod
    def set_receiver(self, receiver):
        """Set the coroutine function called for each incoming message."""

    @abstractmethod
    def set_session_manager(self, manager):
        """Set the registry that owns the sessions of this transport."""

    @abstractmethod
    async def shutdown(self, server_done):
        """Stop listening, wait for the *server_done* event, then close all sessions.

        Callers bound the whole shutdown with their own timeout.
        """