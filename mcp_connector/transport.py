"""Transport interface shared by the stdio and HTTP bindings."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set

from .codec import encode_response
from .correlator import RequestCorrelator
from .errors import ConnectionClosedError, MCPClientError, MCPTimeoutError
from .logging_config import mask_sensitive_data
from .models import RequestId
from .notifications import NotificationChannel


METHOD_NOT_FOUND = -32601


class Transport(ABC):
    """One physical channel to an MCP server.

    Subclasses move encoded messages in and out; request ids, pending
    requests, deadlines and teardown are handled here so every binding
    behaves the same way for callers.
    """

    transport_type = ""

    def __init__(
        self,
        server_id: str,
        timeout: Optional[float] = None,
        notifications: Optional[NotificationChannel] = None,
        roots: Optional[List[Dict[str, str]]] = None,
    ):
        self.server_id = server_id
        self.timeout = timeout
        self.notifications = notifications or NotificationChannel()
        self.roots = list(roots or [])
        self.correlator = RequestCorrelator(self.notifications, self._handle_server_request, name=server_id)
        self.logger = logging.getLogger(f"mcp_client.{server_id}")
        self._closed = True
        self._close_callbacks: List[Callable[[str], None]] = []
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return not self._closed

    def add_close_callback(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(reason)``, called once when the transport closes."""
        self._close_callbacks.append(callback)

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel (spawn the process, create the HTTP session)."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel; pending requests fail with ConnectionClosedError."""

    @abstractmethod
    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification; no response is expected."""

    @abstractmethod
    async def _write_request(self, message: Dict[str, Any], timeout: Optional[float]) -> None:
        """Hand an encoded request to the channel; ``timeout`` is its effective deadline."""

    @abstractmethod
    async def _send_response(self, message: Dict[str, Any]) -> None:
        """Answer a request the server sent to us."""

    def _abort_request(self, request_id: RequestId) -> None:
        """Stop any I/O still running for a request that was given up on."""

    async def send_request(self, method: str, params: Optional[Dict[str, Any]] = None,
                           timeout: Optional[float] = None) -> Any:
        """Send a request and wait for its correlated result.

        Raises:
            ConnectionClosedError: The transport is closed or closed meanwhile.
            ProtocolError: The server answered with a JSON-RPC error.
            MCPTimeoutError: No answer within ``timeout`` (or the default).
        """
        if self._closed:
            raise ConnectionClosedError(f"Connection to '{self.server_id}' is closed")
        if timeout is None:
            timeout = self.timeout

        message, future = self.correlator.create_request(method, params)
        request_id = message["id"]
        start_time = time.time()

        self.logger.info(f"MCP Request: {method} - ID: {request_id}")
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Request Data: {json.dumps(mask_sensitive_data(message))}")

        try:
            await self._write_request(message, timeout)
        except BaseException:
            self.correlator.cancel(request_id)
            raise

        try:
            if timeout is None:
                result = await future
            else:
                result = await asyncio.wait_for(future, timeout)
        except MCPTimeoutError:
            self._abort_request(request_id)
            raise
        except asyncio.TimeoutError:
            self.correlator.cancel(request_id)
            self._abort_request(request_id)
            duration = time.time() - start_time
            self.logger.warning(f"MCP Timeout: {method} - ID: {request_id} - Duration: {duration:.3f}s")
            raise MCPTimeoutError(method, timeout) from None
        except asyncio.CancelledError:
            self.correlator.cancel(request_id)
            self._abort_request(request_id)
            raise
        except MCPClientError as e:
            duration = time.time() - start_time
            self.logger.error(f"MCP Error: {method} - ID: {request_id} - Duration: {duration:.3f}s - Error: {e}")
            raise

        duration = time.time() - start_time
        self.logger.info(f"MCP Response: {method} - ID: {request_id} - Duration: {duration:.3f}s")
        return result

    def _mark_closed(self, reason: str = "Connection closed") -> None:
        """Fail everything still pending and notify listeners, once."""
        if self._closed:
            return
        self._closed = True
        self.correlator.fail_all(reason)
        self._on_closed()
        for callback in list(self._close_callbacks):
            callback(reason)

    def _on_closed(self) -> None:
        """Binding-specific cleanup that must happen synchronously on close."""

    def _handle_server_request(self, message: Dict[str, Any]) -> None:
        method = message["method"]
        request_id = message["id"]
        if method == "ping":
            response = encode_response(request_id, {})
        elif method == "roots/list":
            response = encode_response(request_id, {"roots": self.roots})
        else:
            response = encode_response(request_id, error={
                "code": METHOD_NOT_FOUND,
                "message": f"Method not found: {method}"
            })
        self.logger.debug(f"Answering server request: {method} - ID: {request_id}")
        self._spawn(self._send_response(response))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(f"Background send failed: {task.exception()}")
