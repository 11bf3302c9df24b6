"""Connection lifecycle for one MCP server: handshake, catalogs and calls."""

import asyncio
import functools
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .cache import CapabilityCache
from .config import ClientConfig, HttpServerConfig, ServerConfig, StdioServerConfig
from .errors import ConnectionClosedError, InvalidResultError, MCPClientError, NotConnectedError
from .http_transport import HttpTransport
from .models import (
    CallToolResult,
    GetPromptResult,
    InitializeResult,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    Prompt,
    ReadResourceResult,
    Resource,
    ServerCapabilities,
    ServerInfo,
    Tool,
)
from .notifications import NotificationChannel, NotificationSubscription
from .stdio_transport import StdioTransport
from .transport import Transport


ModelT = TypeVar("ModelT", bound=BaseModel)

# Upper bound on pages followed by one listing call
MAX_LIST_PAGES = 100


class ConnectionState(str, Enum):
    """Lifecycle states of a ServerConnection."""
    DISCONNECTED = "disconnected"
    INITIALIZING = "initializing"
    READY = "ready"


def create_transport(
    server_id: str,
    server_config: ServerConfig,
    client_config: ClientConfig,
    notifications: NotificationChannel,
) -> Transport:
    """Build the transport binding for a config variant."""
    if isinstance(server_config, StdioServerConfig):
        return StdioTransport(
            server_id,
            command=server_config.command,
            args=server_config.args,
            env=server_config.env,
            cwd=server_config.cwd,
            timeout=server_config.timeout,
            notifications=notifications,
            roots=client_config.roots,
        )
    if isinstance(server_config, HttpServerConfig):
        return HttpTransport(
            server_id,
            url=server_config.url,
            transport_type=server_config.transport,
            headers=server_config.headers,
            timeout=server_config.timeout,
            verify_ssl=server_config.verify_ssl,
            notifications=notifications,
            roots=client_config.roots,
        )
    raise ValueError(f"Unsupported server configuration for '{server_id}': {type(server_config).__name__}")


TransportFactory = Callable[[str, ServerConfig, ClientConfig, NotificationChannel], Transport]


class ServerConnection:
    """One configured MCP server.

    ``connect`` runs the handshake: ``initialize``, then
    ``notifications/initialized``, then the listing calls for each
    capability the server declared. Operational calls are only accepted once
    the ``initialize`` result has been consumed. A closed transport moves the
    connection back to ``disconnected`` and empties the caches; reconnecting
    always starts from a fresh transport.

    Usage:
        connection = ServerConnection("fetch", StdioServerConfig(command="uvx", args=["mcp-server-fetch"]))
        await connection.connect()
        result = await connection.call_tool("fetch", {"url": "https://example.com"})
        await connection.disconnect()
    """

    def __init__(
        self,
        server_id: str,
        server_config: ServerConfig,
        client_config: Optional[ClientConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.server_id = server_id
        self.config = server_config
        self.client_config = client_config or ClientConfig()
        self.state = ConnectionState.DISCONNECTED
        self.cache = CapabilityCache()
        self.notifications = NotificationChannel()
        self.transport: Optional[Transport] = None
        self.last_error: Optional[str] = None
        self._transport_factory = transport_factory or create_transport
        self._release_tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(f"mcp_client.{server_id}")

    @property
    def name(self) -> str:
        return self.config.name or self.server_id

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self.cache.server_info

    @property
    def protocol_version(self) -> Optional[str]:
        return self.cache.protocol_version

    @property
    def capabilities(self) -> ServerCapabilities:
        return self.cache.capabilities

    @property
    def instructions(self) -> Optional[str]:
        return self.cache.instructions

    @property
    def session_id(self) -> Optional[str]:
        return getattr(self.transport, "session_id", None)

    def get_tools(self) -> List[Tool]:
        return list(self.cache.tools)

    def get_resources(self) -> List[Resource]:
        return list(self.cache.resources)

    def get_prompts(self) -> List[Prompt]:
        return list(self.cache.prompts)

    def subscribe(self) -> NotificationSubscription:
        """Subscribe to this server's notifications, in arrival order."""
        return self.notifications.subscribe()

    async def connect(self) -> None:
        """Open the transport and run the handshake.

        Raises:
            TransportError: The transport could not be opened or broke.
            ProtocolError: The server rejected ``initialize``.
            MCPTimeoutError: ``initialize`` did not complete in time.
        """
        if self.state == ConnectionState.READY:
            self.logger.debug(f"Already connected to '{self.server_id}'")
            return
        if self.state == ConnectionState.INITIALIZING:
            raise MCPClientError(f"Connection to '{self.server_id}' is already initializing")

        self.state = ConnectionState.INITIALIZING
        self.last_error = None
        transport = self._transport_factory(self.server_id, self.config, self.client_config, self.notifications)
        transport.add_close_callback(functools.partial(self._handle_transport_closed, transport))
        self.transport = transport
        self.logger.info(f"Connecting to MCP server '{self.server_id}' ({transport.transport_type})")

        try:
            await transport.connect()
            raw_result = await transport.send_request("initialize", {
                "protocolVersion": self.client_config.protocol_version,
                "capabilities": {
                    "roots": {"listChanged": True}
                },
                "clientInfo": {
                    "name": self.client_config.name,
                    "version": self.client_config.version
                }
            })
            result = self._parse(InitializeResult, raw_result, "initialize")
        except BaseException as e:
            self.last_error = str(e) or type(e).__name__
            self.logger.error(f"Handshake with '{self.server_id}' failed: {self.last_error}")
            await self._teardown()
            raise

        self.cache.store_initialize(result)
        self.state = ConnectionState.READY
        self.logger.info(
            f"Connected to '{self.server_id}': {result.serverInfo.name} {result.serverInfo.version} "
            f"(protocol {result.protocolVersion})"
        )

        try:
            await transport.send_notification("notifications/initialized")
        except BaseException as e:
            self.last_error = str(e) or type(e).__name__
            await self._teardown()
            raise

        await self._load_catalogs()
        if self.state != ConnectionState.READY:
            raise ConnectionClosedError(self.last_error or "Connection closed")

    async def _load_catalogs(self) -> None:
        capabilities = self.cache.capabilities
        if capabilities.tools:
            tools = await self._list("tools/list", "tools", ListToolsResult)
            if tools is not None:
                self.cache.replace_tools(tools)
        if capabilities.resources:
            resources = await self._list("resources/list", "resources", ListResourcesResult)
            if resources is not None:
                self.cache.replace_resources(resources)
        if capabilities.prompts:
            prompts = await self._list("prompts/list", "prompts", ListPromptsResult)
            if prompts is not None:
                self.cache.replace_prompts(prompts)

        self.logger.info(
            f"Catalogs for '{self.server_id}': {len(self.cache.tools)} tools, "
            f"{len(self.cache.resources)} resources, {len(self.cache.prompts)} prompts"
        )

    async def _list(self, method: str, key: str, model: Type[BaseModel]) -> Optional[List[Any]]:
        """Run one listing call, following pagination; None when it fails."""
        items: List[Any] = []
        cursor: Optional[str] = None
        try:
            for _ in range(MAX_LIST_PAGES):
                params: Dict[str, Any] = {"cursor": cursor} if cursor else {}
                page = self._parse(model, await self._request(method, params), method)
                items.extend(getattr(page, key))
                cursor = page.nextCursor
                if not cursor:
                    break
        except MCPClientError as e:
            self.logger.warning(f"Listing {key} from '{self.server_id}' failed: {e}")
            return None
        return items

    def _parse(self, model: Type[ModelT], result: Any, method: str) -> ModelT:
        if not isinstance(result, dict):
            raise InvalidResultError(f"Invalid result for '{method}': expected an object")
        try:
            return model.model_validate(result)
        except ValidationError as e:
            raise InvalidResultError(f"Invalid result for '{method}': {e}") from e

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None,
                       timeout: Optional[float] = None) -> Any:
        transport = self.transport
        if self.state != ConnectionState.READY or transport is None:
            raise NotConnectedError(f"Server '{self.server_id}' is not connected (state: {self.state.value})")
        return await transport.send_request(method, params, timeout=timeout)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None,
                        timeout: Optional[float] = None) -> CallToolResult:
        """Invoke a tool; a result with ``isError`` is returned, not raised."""
        result = await self._request("tools/call", {"name": name, "arguments": arguments or {}}, timeout)
        return self._parse(CallToolResult, result, "tools/call")

    async def read_resource(self, uri: str, timeout: Optional[float] = None) -> ReadResourceResult:
        result = await self._request("resources/read", {"uri": uri}, timeout)
        return self._parse(ReadResourceResult, result, "resources/read")

    async def get_prompt(self, name: str, arguments: Optional[Dict[str, str]] = None,
                         timeout: Optional[float] = None) -> GetPromptResult:
        params: Dict[str, Any] = {"name": name}
        if arguments is not None:
            params["arguments"] = arguments
        result = await self._request("prompts/get", params, timeout)
        return self._parse(GetPromptResult, result, "prompts/get")

    async def ping(self, timeout: Optional[float] = None) -> None:
        await self._request("ping", {}, timeout)

    async def disconnect(self) -> None:
        """Close the connection. A no-op when already disconnected."""
        if self._release_tasks:
            await asyncio.gather(*list(self._release_tasks), return_exceptions=True)
        if self.transport is None and self.state == ConnectionState.DISCONNECTED:
            return
        await self._teardown()
        self.logger.info(f"Disconnected from MCP server '{self.server_id}'")

    async def _teardown(self) -> None:
        transport, self.transport = self.transport, None
        self._reset()
        if transport is not None:
            await transport.disconnect()

    def _reset(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.cache.clear()

    def _handle_transport_closed(self, transport: Transport, reason: str) -> None:
        if transport is not self.transport:
            return
        self.logger.warning(f"Connection to '{self.server_id}' lost: {reason}")
        self.transport = None
        self.last_error = reason
        self._reset()
        # Release the process or HTTP client without blocking the caller
        task = asyncio.ensure_future(transport.disconnect())
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)
