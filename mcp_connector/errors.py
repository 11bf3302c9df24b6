"""Exceptions raised by the MCP client."""

from typing import Any, Optional


class MCPClientError(Exception):
    """Base exception for MCP client errors."""
    pass


class TransportError(MCPClientError):
    """Transport failure (process spawn, HTTP status, broken pipe).

    Fatal to the connection: every pending request is failed and the
    capability caches are cleared.
    """
    pass


class ConnectionClosedError(TransportError):
    """The connection closed before a response arrived."""

    def __init__(self, message: str = "Connection closed"):
        super().__init__(message)


class HTTPTransportError(TransportError):
    """Non-2xx HTTP status from an MCP endpoint."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"HTTP error: {status_code} {reason}".rstrip())


class ProtocolError(MCPClientError):
    """JSON-RPC error object returned by the server."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC error {code}: {message}")

    @classmethod
    def from_error_object(cls, error: Any) -> "ProtocolError":
        """Build from the ``error`` member of a response, however it is shaped."""
        if isinstance(error, dict):
            code = error.get("code")
            return cls(
                code=code if isinstance(code, int) else -32603,
                message=str(error.get("message", "Unknown error")),
                data=error.get("data"),
            )
        return cls(code=-32603, message=str(error))


class MCPTimeoutError(MCPClientError, TimeoutError):
    """A request exceeded its deadline."""

    def __init__(self, method: str, timeout: Optional[float]):
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request '{method}' timed out after {timeout}s")


class NotConnectedError(MCPClientError):
    """An operational call was attempted before the connection was ready."""
    pass


class InvalidResultError(MCPClientError):
    """The server's result could not be interpreted."""
    pass
