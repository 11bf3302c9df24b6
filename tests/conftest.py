"""Pytest configuration and shared fixtures."""

import asyncio
import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from mcp_connector.codec import encode_response
from mcp_connector.config import ClientConfig, StdioServerConfig
from mcp_connector.errors import ConnectionClosedError, ProtocolError
from mcp_connector.notifications import NotificationChannel
from mcp_connector.transport import Transport


FAKE_STDIO_SERVER = os.path.join(os.path.dirname(__file__), "fake_stdio_server.py")


class ScriptedTransport(Transport):
    """In-memory transport answering requests from a table of handlers.

    A handler receives the request params and returns the result; returning
    None means the request is never answered, raising ProtocolError turns
    into a JSON-RPC error response.
    """

    transport_type = "scripted"

    def __init__(self, server_id: str, handlers: Dict[str, Callable[[Dict[str, Any]], Any]],
                 timeout: Optional[float] = None, notifications: Optional[NotificationChannel] = None,
                 roots: Optional[List[Dict[str, str]]] = None):
        super().__init__(server_id, timeout=timeout, notifications=notifications, roots=roots)
        self.handlers = handlers
        self.sent: List[Dict[str, Any]] = []
        self.sent_notifications: List[Any] = []
        self.sent_responses: List[Dict[str, Any]] = []
        self.connect_error: Optional[BaseException] = None
        self.disconnect_calls = 0

    @property
    def methods(self) -> List[str]:
        return [message["method"] for message in self.sent]

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self._closed = False

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._mark_closed("Connection closed")

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        if self._closed:
            raise ConnectionClosedError()
        self.sent_notifications.append((method, params))

    async def _write_request(self, message: Dict[str, Any], timeout: Optional[float]) -> None:
        self.sent.append(message)
        request_id = message["id"]
        handler = self.handlers.get(message["method"])
        if handler is None:
            response = encode_response(request_id, error={"code": -32601, "message": "Method not found"})
        else:
            try:
                result = handler(message.get("params") or {})
            except ProtocolError as e:
                response = encode_response(request_id, error={"code": e.code, "message": e.message})
            else:
                if result is None:
                    return
                response = encode_response(request_id, result)
        asyncio.get_running_loop().call_soon(self.correlator.resolve_incoming, response)

    async def _send_response(self, message: Dict[str, Any]) -> None:
        self.sent_responses.append(message)

    def push(self, message: Dict[str, Any]) -> None:
        """Deliver a message as if the server had sent it."""
        self.correlator.resolve_incoming(message)


class ScriptedTransportFactory:
    """Transport factory for ServerConnection that records what it built."""

    def __init__(self, handlers: Dict[str, Callable[[Dict[str, Any]], Any]]):
        self.handlers = handlers
        self.created: List[ScriptedTransport] = []

    def __call__(self, server_id, server_config, client_config, notifications) -> ScriptedTransport:
        transport = ScriptedTransport(
            server_id,
            self.handlers,
            timeout=getattr(server_config, "timeout", None),
            notifications=notifications,
            roots=client_config.roots
        )
        self.created.append(transport)
        return transport

    @property
    def last(self) -> ScriptedTransport:
        return self.created[-1]


@pytest.fixture
def sample_server_info():
    """Sample server info for testing."""
    return {
        "name": "test-server",
        "version": "1.0.0"
    }


@pytest.fixture
def sample_initialize_result(sample_server_info):
    """Sample initialize result for testing."""
    return {
        "protocolVersion": "2024-11-05",
        "capabilities": {"tools": {"listChanged": True}, "resources": {}, "prompts": {}},
        "serverInfo": sample_server_info
    }


@pytest.fixture
def sample_tool_definition():
    """Sample tool definition for testing."""
    return {
        "name": "test_tool",
        "description": "A test tool",
        "inputSchema": {
            "type": "object",
            "properties": {
                "param1": {"type": "string"},
                "param2": {"type": "integer"}
            },
            "required": ["param1"]
        }
    }


@pytest.fixture
def mcp_handlers(sample_initialize_result, sample_tool_definition):
    """Handlers of a well-behaved server exposing one tool, resource and prompt."""
    return {
        "initialize": lambda params: dict(sample_initialize_result, protocolVersion=params["protocolVersion"]),
        "ping": lambda params: {},
        "tools/list": lambda params: {"tools": [sample_tool_definition]},
        "resources/list": lambda params: {"resources": [{"uri": "memo://one", "name": "one"}]},
        "prompts/list": lambda params: {"prompts": [{"name": "summary", "arguments": [{"name": "topic"}]}]},
        "tools/call": lambda params: {"content": [{"type": "text", "text": json.dumps(params["arguments"])}]},
        "resources/read": lambda params: {"contents": [{"uri": params["uri"], "text": "memo"}]},
        "prompts/get": lambda params: {"messages": [
            {"role": "user", "content": {"type": "text", "text": f"Summarize {params.get('arguments', {})}"}}]},
    }


@pytest.fixture
def transport_factory(mcp_handlers):
    return ScriptedTransportFactory(mcp_handlers)


@pytest.fixture
def client_config():
    return ClientConfig(
        name="test-client",
        version="9.9.9",
        roots=[{"uri": "file:///workspace", "name": "workspace"}],
        log_file=None,
        traffic_log_file=None
    )


@pytest.fixture
def fake_stdio_config():
    """Factory for a stdio config running the fake server with extra flags."""
    def make(*flags: str, **overrides) -> StdioServerConfig:
        return StdioServerConfig(
            command=sys.executable,
            args=["-u", FAKE_STDIO_SERVER, *flags],
            **overrides
        )
    return make


def build_fake_http_app(mode: str = "json", session_id: Optional[str] = "session-abc",
                        capabilities: Optional[Dict[str, Any]] = None) -> FastAPI:
    """Minimal streamable HTTP MCP endpoint at ``/mcp``.

    Every received request is recorded in ``app.state.received`` with its
    headers. In ``sse`` mode each result is preceded by a log notification.
    """
    app = FastAPI()
    app.state.received = []

    def handle(message: Dict[str, Any]) -> Dict[str, Any]:
        method = message["method"]
        params = message.get("params") or {}
        if method == "initialize":
            result = {
                "protocolVersion": params["protocolVersion"],
                "capabilities": capabilities if capabilities is not None else {"tools": {}},
                "serverInfo": {"name": "fake-http", "version": "2.0.0"}
            }
        elif method == "tools/list":
            result = {"tools": [{"name": "echo", "description": "Echo the message back"}]}
        elif method == "tools/call":
            text = str(params.get("arguments", {}).get("message", ""))
            result = {"content": [{"type": "text", "text": text}]}
        elif method == "ping":
            result = {}
        else:
            return encode_response(message["id"], error={"code": -32601, "message": f"Method not found: {method}"})
        return encode_response(message["id"], result)

    @app.post("/mcp")
    async def mcp_endpoint(request: Request):
        message = await request.json()
        app.state.received.append({"headers": dict(request.headers), "body": message})

        headers = {}
        if session_id and message.get("method") == "initialize":
            headers["Mcp-Session-Id"] = session_id

        if "id" not in message or "method" not in message:
            return Response(status_code=202, headers=headers)

        response = handle(message)
        if mode == "sse":
            notification = {"jsonrpc": "2.0", "method": "notifications/message",
                            "params": {"level": "info", "data": message["method"]}}
            body = (
                "event: message\n"
                f"data: {json.dumps(notification)}\n\n"
                "event: message\n"
                f"data: {json.dumps(response)}\n\n"
            )
            return Response(content=body, media_type="text/event-stream", headers=headers)
        return JSONResponse(response, headers=headers)

    return app


@pytest.fixture
def fake_http_app():
    return build_fake_http_app
