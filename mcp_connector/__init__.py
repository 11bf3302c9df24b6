"""Model Context Protocol client: stdio, streamable HTTP and SSE transports."""

__version__ = "0.1.0"
