"""MCP protocol models."""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


RequestId = Union[int, str]

JSONRPC_VERSION = "2.0"


class JSONRPCRequest(BaseModel):
    """JSON-RPC request envelope."""
    jsonrpc: str = JSONRPC_VERSION
    id: RequestId
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)


class JSONRPCNotification(BaseModel):
    """JSON-RPC notification envelope (no id, no response expected)."""
    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: Optional[Dict[str, Any]] = None


class ServerInfo(BaseModel):
    """Server identity reported by initialize."""
    name: str
    version: str = ""


class InitializeResult(BaseModel):
    """Initialize method result."""
    protocolVersion: str
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    serverInfo: ServerInfo
    instructions: Optional[str] = None


class ServerCapabilities(BaseModel):
    """Capability flags declared by a server.

    Each category is a plain boolean with its optional sub-flags next to it.
    A category the server did not declare must never be queried.
    """
    model_config = ConfigDict(frozen=True)

    tools: bool = False
    tools_list_changed: bool = False
    resources: bool = False
    resources_list_changed: bool = False
    resources_subscribe: bool = False
    prompts: bool = False
    prompts_list_changed: bool = False
    logging: bool = False

    @classmethod
    def from_wire(cls, capabilities: Optional[Dict[str, Any]]) -> "ServerCapabilities":
        """Read the ``capabilities`` object of an initialize result."""
        capabilities = capabilities or {}
        flags: Dict[str, bool] = {}
        for category in ("tools", "resources", "prompts"):
            value = capabilities.get(category)
            present = value is not None and value is not False
            options = value if isinstance(value, dict) else {}
            flags[category] = present
            flags[f"{category}_list_changed"] = present and bool(options.get("listChanged", False))
        resource_options = capabilities.get("resources")
        if isinstance(resource_options, dict):
            flags["resources_subscribe"] = bool(resource_options.get("subscribe", False))
        flags["logging"] = capabilities.get("logging") is not None
        return cls(**flags)


class Tool(BaseModel):
    """Tool definition model."""
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    description: Optional[str] = None
    inputSchema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class Resource(BaseModel):
    """Resource definition model."""
    model_config = ConfigDict(frozen=True, extra="allow")

    uri: str
    name: str
    description: Optional[str] = None
    mimeType: Optional[str] = None


class PromptArgument(BaseModel):
    """Prompt template parameter."""
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    description: Optional[str] = None
    required: bool = False


class Prompt(BaseModel):
    """Prompt template definition model."""
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = Field(default_factory=list)


class ListToolsResult(BaseModel):
    """List tools result."""
    tools: List[Tool] = Field(default_factory=list)
    nextCursor: Optional[str] = None


class ListResourcesResult(BaseModel):
    """List resources result."""
    resources: List[Resource] = Field(default_factory=list)
    nextCursor: Optional[str] = None


class ListPromptsResult(BaseModel):
    """List prompts result."""
    prompts: List[Prompt] = Field(default_factory=list)
    nextCursor: Optional[str] = None


class Content(BaseModel):
    """Content block (text, image, audio or embedded resource)."""
    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None
    data: Optional[str] = None
    mimeType: Optional[str] = None


class CallToolResult(BaseModel):
    """Call tool result."""
    model_config = ConfigDict(extra="allow")

    content: List[Content] = Field(default_factory=list)
    isError: bool = False


class ResourceContents(BaseModel):
    """One entry of a resources/read result."""
    model_config = ConfigDict(extra="allow")

    uri: str
    text: Optional[str] = None
    blob: Optional[str] = None
    mimeType: Optional[str] = None


class ReadResourceResult(BaseModel):
    """Read resource result."""
    contents: List[ResourceContents] = Field(default_factory=list)


class PromptMessage(BaseModel):
    """Message produced by a prompt template."""
    role: str
    content: Content


class GetPromptResult(BaseModel):
    """Get prompt result."""
    description: Optional[str] = None
    messages: List[PromptMessage] = Field(default_factory=list)


class ServerNotification(BaseModel):
    """A notification received from a server."""
    method: str
    params: Optional[Dict[str, Any]] = None


class ToolCallRequest(BaseModel):
    """Tool invocation routed through the server manager."""
    server_id: str
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ResourceReadRequest(BaseModel):
    """Resource read routed through the server manager."""
    server_id: str
    uri: str


class PromptGetRequest(BaseModel):
    """Prompt fetch routed through the server manager."""
    server_id: str
    prompt_name: str
    arguments: Optional[Dict[str, str]] = None


class ServerStatus(BaseModel):
    """Runtime information about one configured server."""
    server_id: str
    name: str
    transport: str
    enabled: bool = True
    status: str = "disconnected"
    error: Optional[str] = None
    server_info: Optional[ServerInfo] = None
    protocol_version: Optional[str] = None
    tool_count: int = 0
    resource_count: int = 0
    prompt_count: int = 0


class ServerTool(BaseModel):
    """Tool tagged with the server that exposes it."""
    server_id: str
    server_name: str
    tool: Tool


class ServerResource(BaseModel):
    """Resource tagged with the server that exposes it."""
    server_id: str
    server_name: str
    resource: Resource


class ServerPrompt(BaseModel):
    """Prompt tagged with the server that exposes it."""
    server_id: str
    server_name: str
    prompt: Prompt
