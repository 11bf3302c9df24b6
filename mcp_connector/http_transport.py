"""HTTP transports for remote MCP servers (streamable HTTP and SSE)."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .codec import aiter_sse_messages, encode_notification, parse_json_body
from .errors import (
    ConnectionClosedError,
    HTTPTransportError,
    InvalidResultError,
    MCPTimeoutError,
    TransportError,
)
from .logging_config import mask_sensitive_data
from .models import JSONRPC_VERSION, RequestId
from .notifications import NotificationChannel
from .transport import Transport


SESSION_HEADER = "Mcp-Session-Id"

DEFAULT_HTTP_TIMEOUT = 30.0

HTTP_TRANSPORT_TYPES = ("streamable-http", "sse")


class HttpTransport(Transport):
    """MCP over HTTP POST, one call per request.

    Responses are either a single JSON document or an SSE stream; the
    ``Content-Type`` of each response decides which. The server-issued
    session id is echoed on every request once it is known.

    Usage:
        transport = HttpTransport("search", "https://mcp.example.com/mcp",
                                  headers={"Authorization": "Bearer xxx"})
        await transport.connect()
        result = await transport.send_request("tools/call", {"name": "search", "arguments": {"q": "mcp"}})
        await transport.disconnect()
    """

    def __init__(
        self,
        server_id: str,
        url: str,
        transport_type: str = "streamable-http",
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = DEFAULT_HTTP_TIMEOUT,
        verify_ssl: bool = True,
        notifications: Optional[NotificationChannel] = None,
        roots: Optional[List[Dict[str, str]]] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if transport_type not in HTTP_TRANSPORT_TYPES:
            raise ValueError(f"Unsupported HTTP transport type: {transport_type}")
        super().__init__(server_id, timeout=timeout, notifications=notifications, roots=roots)
        self.transport_type = transport_type
        self.url = url
        self.headers = dict(headers or {})
        self.verify_ssl = verify_ssl
        self.session_id: Optional[str] = None
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None
        self._inflight: Dict[RequestId, asyncio.Task] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify_ssl,
                transport=self._http_transport
            )
        return self._client

    async def connect(self) -> None:
        if not self._closed:
            return
        await self._get_client()
        self._closed = False
        self.logger.info(f"HTTP transport ready: {self.url} ({self.transport_type})")
        self.logger.debug(f"Static headers: {json.dumps(mask_sensitive_data(self.headers))}")

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        headers.update(self.headers)
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    def _capture_session(self, response: httpx.Response) -> None:
        # Only ever set, never cleared: a response without the header keeps the known session
        session_id = response.headers.get(SESSION_HEADER)
        if session_id and session_id != self.session_id:
            self.session_id = session_id
            self.logger.info(f"MCP session established for '{self.server_id}'")

    async def _write_request(self, message: Dict[str, Any], timeout: Optional[float]) -> None:
        client = await self._get_client()
        request_id = message["id"]
        task = asyncio.ensure_future(self._exchange(client, message, timeout))
        self._inflight[request_id] = task
        task.add_done_callback(lambda _task: self._forget(request_id, _task))

    def _forget(self, request_id: RequestId, task: asyncio.Task) -> None:
        if self._inflight.get(request_id) is task:
            del self._inflight[request_id]
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Unexpected error in HTTP exchange {request_id}: {task.exception()}")
            self.correlator.cancel(request_id, TransportError(f"HTTP exchange failed: {task.exception()}"))

    def _abort_request(self, request_id: RequestId) -> None:
        task = self._inflight.pop(request_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def _exchange(self, client: httpx.AsyncClient, message: Dict[str, Any], timeout: Optional[float]) -> None:
        """POST one request and route everything the response carries.

        ``timeout`` replaces the client default for this request only.
        """
        request_id = message["id"]
        method = message["method"]
        try:
            async with client.stream("POST", self.url, json=message, headers=self._build_headers(),
                                     timeout=httpx.Timeout(timeout)) as response:
                if not response.is_success:
                    raise HTTPTransportError(response.status_code, response.reason_phrase)
                self._capture_session(response)

                content_type = response.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    await self._consume_event_stream(response, request_id)
                else:
                    body = await response.aread()
                    for incoming in parse_json_body(body):
                        self.correlator.resolve_incoming(incoming)
        except httpx.TimeoutException:
            self.logger.warning(f"HTTP timeout: {method} - ID: {request_id}")
            self.correlator.cancel(request_id, MCPTimeoutError(method, timeout))
            return
        except HTTPTransportError as e:
            self._fail_transport(request_id, e)
            return
        except httpx.HTTPError as e:
            self._fail_transport(request_id, TransportError(f"HTTP error: {e}"))
            return

        if self.correlator.is_pending(request_id):
            self.correlator.cancel(
                request_id,
                InvalidResultError(f"No result received for '{method}' (ID: {request_id})")
            )

    async def _consume_event_stream(self, response: httpx.Response, request_id: RequestId) -> None:
        # First correlated event wins; anything after it is not read
        async for incoming in aiter_sse_messages(response.aiter_lines()):
            self.correlator.resolve_incoming(incoming)
            if (incoming.get("jsonrpc") == JSONRPC_VERSION
                    and incoming.get("id") == request_id
                    and "method" not in incoming):
                break

    def _fail_transport(self, request_id: RequestId, error: TransportError) -> None:
        """Report ``error`` to its caller, then close: siblings fail as closed."""
        self.logger.error(f"HTTP transport failure for '{self.server_id}': {error}")
        self.correlator.cancel(request_id, error)
        self._mark_closed("Connection closed")

    def _on_closed(self) -> None:
        current = asyncio.current_task()
        for task in list(self._inflight.values()):
            if task is not current and not task.done():
                task.cancel()

    async def _post_without_reply(self, message: Dict[str, Any]) -> None:
        client = await self._get_client()
        try:
            async with client.stream("POST", self.url, json=message, headers=self._build_headers()) as response:
                self._capture_session(response)
                if not response.is_success:
                    self.logger.warning(
                        f"Server answered {message.get('method', 'response')} with HTTP {response.status_code}"
                    )
        except httpx.TimeoutException:
            raise MCPTimeoutError(message.get("method", "response"), self.timeout) from None
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}") from e

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        if self._closed:
            raise ConnectionClosedError(f"Connection to '{self.server_id}' is closed")
        self.logger.debug(f"MCP Notification: {method}")
        await self._post_without_reply(encode_notification(method, params))

    async def _send_response(self, message: Dict[str, Any]) -> None:
        if self._closed:
            return
        await self._post_without_reply(message)

    async def disconnect(self) -> None:
        was_open = not self._closed
        self._mark_closed("Connection closed")

        tasks = [task for task in self._inflight.values() if not task.done()]
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.session_id = None
        if was_open:
            self.logger.info(f"Disconnected from '{self.server_id}'")
