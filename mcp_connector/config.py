"""Configuration management for the MCP connector."""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from . import __version__


DEFAULT_PROTOCOL_VERSION = "2024-11-05"

TRANSPORT_STDIO = "stdio"
TRANSPORT_STREAMABLE_HTTP = "streamable-http"
TRANSPORT_SSE = "sse"

TRANSPORT_ALIASES = {
    "stdio": TRANSPORT_STDIO,
    "streamable-http": TRANSPORT_STREAMABLE_HTTP,
    "streamable_http": TRANSPORT_STREAMABLE_HTTP,
    "streamableHttp": TRANSPORT_STREAMABLE_HTTP,
    "http": TRANSPORT_STREAMABLE_HTTP,
    "sse": TRANSPORT_SSE,
}


@dataclass
class StdioServerConfig:
    """MCP server launched as a local child process."""
    command: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    timeout: Optional[float] = None
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    transport: str = TRANSPORT_STDIO


@dataclass
class HttpServerConfig:
    """Remote MCP server reached over streamable HTTP or SSE."""
    url: str
    transport: str = TRANSPORT_STREAMABLE_HTTP
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = 30.0
    verify_ssl: bool = True
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True


ServerConfig = Union[StdioServerConfig, HttpServerConfig]


@dataclass
class ClientConfig:
    """Client identity, handshake and logging settings."""
    name: str = "mcp-connector"
    version: str = __version__
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    roots: List[Dict[str, str]] = field(default_factory=list)
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/mcp_connector.log"
    traffic_log_file: Optional[str] = "logs/mcp_traffic.log"


@dataclass
class Config:
    """Main configuration."""
    mcp_servers: Dict[str, ServerConfig]
    client: ClientConfig = field(default_factory=ClientConfig)
    default_server: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging setup."""
        return {
            "log_level": self.client.log_level,
            "log_file": self.client.log_file,
            "traffic_log_file": self.client.traffic_log_file
        }


def _normalize_transport(server_id: str, value: Any) -> str:
    transport = TRANSPORT_ALIASES.get(value) if isinstance(value, str) else None
    if transport is None:
        raise ValueError(f"Server '{server_id}' has unsupported transport: {value!r}")
    return transport


def parse_server_config(server_id: str, data: Dict[str, Any]) -> ServerConfig:
    """Build the config variant for one server entry.

    The transport comes from ``transport`` (or ``type``); when neither is
    given it is inferred: ``command`` means stdio, ``url`` streamable HTTP.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Server '{server_id}' must be an object")
    data = dict(data)

    declared_transport = data.pop("transport", None)
    declared_type = data.pop("type", None)
    declared = declared_transport or declared_type
    if declared is None:
        if "command" in data:
            declared = TRANSPORT_STDIO
        elif "url" in data:
            declared = TRANSPORT_STREAMABLE_HTTP
        else:
            raise ValueError(f"Server '{server_id}' needs either 'command' or 'url'")
    transport = _normalize_transport(server_id, declared)

    if "disabled" in data:
        data["enabled"] = not data.pop("disabled")
    if not data.get("name"):
        data["name"] = server_id

    try:
        if transport == TRANSPORT_STDIO:
            if not data.get("command"):
                raise ValueError(f"Stdio server '{server_id}' needs a 'command'")
            return StdioServerConfig(**data)
        if not data.get("url"):
            raise ValueError(f"HTTP server '{server_id}' needs a 'url'")
        return HttpServerConfig(transport=transport, **data)
    except TypeError as e:
        raise ValueError(f"Invalid configuration for server '{server_id}': {e}")


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file.

    Two layouts are understood: the native one with ``mcp_servers`` and
    ``client`` sections, and the widely used ``mcpServers`` layout.
    Without a file an empty configuration is returned.
    """
    if config_path is None:
        for path in ["config.json", "../config.json"]:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return Config(mcp_servers={}, client=ClientConfig())

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise KeyError("Top-level configuration must be an object")

        client_config = ClientConfig(**data.get("client", {}))

        if "mcp_servers" in data:
            raw_servers = data["mcp_servers"]
        elif "mcpServers" in data:
            raw_servers = data["mcpServers"]
        else:
            raise KeyError("Neither 'mcp_servers' nor 'mcpServers' found in config")

        servers = {
            server_id: parse_server_config(server_id, server_data)
            for server_id, server_data in raw_servers.items()
        }

        default_server = data.get("default_server")
        if default_server and default_server not in servers:
            raise ValueError(f"Default server '{default_server}' not found in mcp_servers")

        return Config(
            mcp_servers=servers,
            client=client_config,
            default_server=default_server or next(iter(servers), None)
        )

    except (OSError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Failed to load config from {config_path}: {e}")


def get_server_config(config: Config, server_id: Optional[str] = None) -> ServerConfig:
    """Get configuration for a specific MCP server."""
    if server_id is None:
        server_id = config.default_server

    if server_id not in config.mcp_servers:
        available_servers = list(config.mcp_servers.keys())
        raise ValueError(f"Server '{server_id}' not found. Available servers: {available_servers}")

    return config.mcp_servers[server_id]


def list_servers(config: Config) -> Dict[str, str]:
    """List all configured MCP servers with their display names."""
    return {
        server_id: server_config.name or server_id
        for server_id, server_config in config.mcp_servers.items()
    }
