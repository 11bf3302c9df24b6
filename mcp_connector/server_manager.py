"""Management of the configured MCP servers and their connections."""

from typing import Dict, List, Optional
import asyncio
import logging

from .config import Config, HttpServerConfig, ServerConfig
from .connection import ConnectionState, ServerConnection, TransportFactory
from .errors import MCPClientError
from .models import (
    CallToolResult,
    GetPromptResult,
    PromptGetRequest,
    ReadResourceResult,
    ResourceReadRequest,
    ServerPrompt,
    ServerResource,
    ServerStatus,
    ServerTool,
    ToolCallRequest,
)


class MCPServerManager:
    """Owns one ServerConnection per configured MCP server."""

    def __init__(self, config: Config, transport_factory: Optional[TransportFactory] = None):
        self.config = config
        self._transport_factory = transport_factory
        self._connections: Dict[str, ServerConnection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = logging.getLogger("server_manager")

    def validate_server_id(self, server_id: Optional[str]) -> str:
        """Validate and return a server ID, using default if None."""
        if server_id is None:
            return self.get_default_server_id()

        if server_id not in self.config.mcp_servers:
            available_servers = list(self.config.mcp_servers.keys())
            error_msg = f"Server '{server_id}' not found. Available servers: {available_servers}"
            self.logger.error(error_msg)
            raise ValueError(error_msg)

        return server_id

    def get_default_server_id(self) -> str:
        """Get the default server ID."""
        if self.config.default_server:
            return self.config.default_server
        if not self.config.mcp_servers:
            raise ValueError("No MCP servers configured")
        return next(iter(self.config.mcp_servers.keys()))

    def _lock(self, server_id: str) -> asyncio.Lock:
        if server_id not in self._locks:
            self._locks[server_id] = asyncio.Lock()
        return self._locks[server_id]

    def get_connection(self, server_id: Optional[str] = None) -> ServerConnection:
        """Get or create the connection object for a server (not connected yet)."""
        server_id = self.validate_server_id(server_id)
        if server_id not in self._connections:
            self.logger.debug(f"Creating connection for server: {server_id}")
            self._connections[server_id] = ServerConnection(
                server_id,
                self.config.mcp_servers[server_id],
                client_config=self.config.client,
                transport_factory=self._transport_factory
            )
        return self._connections[server_id]

    async def connect(self, server_id: Optional[str] = None) -> ServerConnection:
        """Connect to a server; returns the ready connection."""
        connection = self.get_connection(server_id)
        async with self._lock(connection.server_id):
            if not connection.is_ready:
                await connection.connect()
        return connection

    async def disconnect(self, server_id: str) -> bool:
        """Disconnect from a specific server."""
        connection = self._connections.get(server_id)
        if connection is None:
            return False
        async with self._lock(server_id):
            was_ready = connection.is_ready
            await connection.disconnect()
        return was_ready

    async def reconnect(self, server_id: str) -> ServerConnection:
        """Tear the connection down and run a fresh handshake."""
        connection = self.get_connection(server_id)
        async with self._lock(connection.server_id):
            await connection.disconnect()
            await connection.connect()
        return connection

    async def connect_enabled(self) -> Dict[str, bool]:
        """Connect every enabled server; failures are logged, not raised."""
        server_ids = [
            server_id for server_id, server_config in self.config.mcp_servers.items()
            if server_config.enabled
        ]
        outcomes = await asyncio.gather(
            *(self.connect(server_id) for server_id in server_ids),
            return_exceptions=True
        )

        results = {}
        for server_id, outcome in zip(server_ids, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error(f"Failed to connect to server '{server_id}': {outcome}")
                results[server_id] = False
            else:
                results[server_id] = True
        return results

    async def disconnect_all(self):
        """Disconnect from all servers."""
        for server_id in list(self._connections.keys()):
            try:
                await self.disconnect(server_id)
            except MCPClientError as e:
                self.logger.warning(f"Error while disconnecting '{server_id}': {e}")

    def get_server_status(self, server_id: str) -> ServerStatus:
        """Runtime status of one configured server."""
        server_id = self.validate_server_id(server_id)
        server_config = self.config.mcp_servers[server_id]
        connection = self._connections.get(server_id)

        status = ServerStatus(
            server_id=server_id,
            name=server_config.name or server_id,
            transport=server_config.transport,
            enabled=server_config.enabled,
        )
        if connection is None:
            return status

        if connection.state == ConnectionState.READY:
            status.status = "connected"
            status.server_info = connection.server_info
            status.protocol_version = connection.protocol_version
            status.tool_count = len(connection.cache.tools)
            status.resource_count = len(connection.cache.resources)
            status.prompt_count = len(connection.cache.prompts)
        elif connection.state == ConnectionState.INITIALIZING:
            status.status = "connecting"
        elif connection.last_error:
            status.status = "error"
            status.error = connection.last_error
        return status

    def list_servers(self) -> Dict[str, Dict[str, object]]:
        """List all configured servers with their details."""
        servers = {}
        for server_id, server_config in self.config.mcp_servers.items():
            status = self.get_server_status(server_id)
            servers[server_id] = {
                "server_id": server_id,
                "name": status.name,
                "transport": server_config.transport,
                "target": _describe_target(server_config),
                "description": server_config.description or "",
                "is_default": server_id == self.config.default_server,
                "enabled": server_config.enabled,
                "status": status.status,
                "error": status.error
            }
        return servers

    async def test_connection(self, server_id: Optional[str] = None) -> Dict[str, bool]:
        """Ping a specific server or every connected one."""
        if server_id:
            servers_to_test = [self.validate_server_id(server_id)]
        else:
            servers_to_test = [sid for sid, conn in self._connections.items() if conn.is_ready]

        results = {}
        for sid in servers_to_test:
            try:
                await self.get_connection(sid).ping()
                results[sid] = True
            except MCPClientError as e:
                self.logger.warning(f"Ping to '{sid}' failed: {e}")
                results[sid] = False

        return results

    async def call_tool(self, request: ToolCallRequest) -> CallToolResult:
        connection = self.get_connection(request.server_id)
        self.logger.info(f"Calling tool '{request.tool_name}' on '{request.server_id}'")
        return await connection.call_tool(request.tool_name, request.arguments)

    async def read_resource(self, request: ResourceReadRequest) -> ReadResourceResult:
        connection = self.get_connection(request.server_id)
        return await connection.read_resource(request.uri)

    async def get_prompt(self, request: PromptGetRequest) -> GetPromptResult:
        connection = self.get_connection(request.server_id)
        return await connection.get_prompt(request.prompt_name, request.arguments)

    def _ready_connections(self) -> List[ServerConnection]:
        return [
            self._connections[server_id]
            for server_id in self.config.mcp_servers
            if server_id in self._connections and self._connections[server_id].is_ready
        ]

    def get_all_tools(self) -> List[ServerTool]:
        """Tools of every ready server, tagged with their server."""
        return [
            ServerTool(server_id=conn.server_id, server_name=conn.name, tool=tool)
            for conn in self._ready_connections()
            for tool in conn.get_tools()
        ]

    def get_all_resources(self) -> List[ServerResource]:
        return [
            ServerResource(server_id=conn.server_id, server_name=conn.name, resource=resource)
            for conn in self._ready_connections()
            for resource in conn.get_resources()
        ]

    def get_all_prompts(self) -> List[ServerPrompt]:
        return [
            ServerPrompt(server_id=conn.server_id, server_name=conn.name, prompt=prompt)
            for conn in self._ready_connections()
            for prompt in conn.get_prompts()
        ]


def _describe_target(server_config: ServerConfig) -> str:
    if isinstance(server_config, HttpServerConfig):
        return server_config.url
    return " ".join([server_config.command] + list(server_config.args))
