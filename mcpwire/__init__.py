"""Model Context Protocol dispatch, sessions and stdio/SSE transports."""

__version__ = "0.1.0"