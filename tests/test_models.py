"""Tests for MCP protocol models."""

import pytest
from pydantic import ValidationError

from mcp_connector.models import (
    CallToolResult,
    GetPromptResult,
    InitializeResult,
    JSONRPCNotification,
    JSONRPCRequest,
    ListToolsResult,
    Prompt,
    ReadResourceResult,
    Resource,
    ServerCapabilities,
    ServerInfo,
    ServerStatus,
    Tool,
    ToolCallRequest,
)


class TestEnvelopes:
    """Test JSON-RPC envelope models."""

    def test_valid_request(self):
        request = JSONRPCRequest(id=1, method="initialize", params={"test": "value"})
        assert request.jsonrpc == "2.0"
        assert request.id == 1
        assert request.params == {"test": "value"}

    def test_request_needs_method_and_id(self):
        with pytest.raises(ValidationError):
            JSONRPCRequest(id=1)
        with pytest.raises(ValidationError):
            JSONRPCRequest(method="ping")

    def test_notification_dump(self):
        notification = JSONRPCNotification(method="notifications/initialized")
        assert notification.model_dump(exclude_none=True) == {
            "jsonrpc": "2.0",
            "method": "notifications/initialized"
        }


class TestInitializeResult:
    """Test InitializeResult model."""

    def test_valid_result(self, sample_initialize_result):
        result = InitializeResult.model_validate(sample_initialize_result)
        assert result.protocolVersion == "2024-11-05"
        assert result.serverInfo == ServerInfo(name="test-server", version="1.0.0")
        assert result.instructions is None

    def test_missing_server_info(self):
        with pytest.raises(ValidationError):
            InitializeResult.model_validate({"protocolVersion": "2024-11-05", "capabilities": {}})

    def test_server_version_optional(self):
        info = ServerInfo.model_validate({"name": "bare"})
        assert info.version == ""


class TestServerCapabilities:
    """Test capability flag decoding."""

    def test_tools_only(self):
        capabilities = ServerCapabilities.from_wire({"tools": {}})
        assert capabilities.tools
        assert not capabilities.tools_list_changed
        assert not capabilities.resources
        assert not capabilities.prompts

    def test_sub_flags(self):
        capabilities = ServerCapabilities.from_wire({
            "tools": {"listChanged": True},
            "resources": {"subscribe": True, "listChanged": False},
            "prompts": {"listChanged": True},
            "logging": {}
        })
        assert capabilities.tools_list_changed
        assert capabilities.resources
        assert capabilities.resources_subscribe
        assert not capabilities.resources_list_changed
        assert capabilities.prompts_list_changed
        assert capabilities.logging

    def test_absent_or_false(self):
        capabilities = ServerCapabilities.from_wire({"tools": None, "prompts": False})
        assert not capabilities.tools
        assert not capabilities.prompts
        assert ServerCapabilities.from_wire(None) == ServerCapabilities()

    def test_frozen(self):
        capabilities = ServerCapabilities()
        with pytest.raises(ValidationError):
            capabilities.tools = True


class TestCatalogModels:
    """Test tool, resource and prompt models."""

    def test_tool(self, sample_tool_definition):
        tool = Tool.model_validate(sample_tool_definition)
        assert tool.name == "test_tool"
        assert tool.inputSchema["required"] == ["param1"]

    def test_tool_default_schema_and_extra_fields(self):
        tool = Tool.model_validate({"name": "bare", "annotations": {"readOnlyHint": True}})
        assert tool.inputSchema == {"type": "object"}
        assert tool.model_dump()["annotations"] == {"readOnlyHint": True}

    def test_resource_requires_uri(self):
        with pytest.raises(ValidationError):
            Resource.model_validate({"name": "no-uri"})

    def test_prompt_arguments(self):
        prompt = Prompt.model_validate({"name": "p", "arguments": [{"name": "topic", "required": True}]})
        assert prompt.arguments[0].required

    def test_list_tools_cursor(self, sample_tool_definition):
        result = ListToolsResult.model_validate({"tools": [sample_tool_definition], "nextCursor": "page-2"})
        assert len(result.tools) == 1
        assert result.nextCursor == "page-2"


class TestOperationalResults:
    """Test call/read/get result models."""

    def test_call_tool_result(self):
        result = CallToolResult.model_validate({
            "content": [{"type": "text", "text": "hello"}, {"type": "image", "data": "AAAA", "mimeType": "image/png"}],
            "isError": True
        })
        assert result.isError
        assert result.content[0].text == "hello"
        assert result.content[1].mimeType == "image/png"

    def test_call_tool_result_defaults(self):
        result = CallToolResult.model_validate({})
        assert result.content == []
        assert result.isError is False

    def test_read_resource_result(self):
        result = ReadResourceResult.model_validate({"contents": [{"uri": "memo://a", "blob": "AA=="}]})
        assert result.contents[0].blob == "AA=="

    def test_get_prompt_result(self):
        result = GetPromptResult.model_validate({
            "messages": [{"role": "assistant", "content": {"type": "text", "text": "hi"}}]
        })
        assert result.messages[0].role == "assistant"

    def test_get_prompt_result_invalid_message(self):
        with pytest.raises(ValidationError):
            GetPromptResult.model_validate({"messages": [{"content": {"type": "text"}}]})


class TestManagerModels:
    """Test request and status models used by the server manager."""

    def test_tool_call_request_defaults(self):
        request = ToolCallRequest(server_id="fs", tool_name="read_file")
        assert request.arguments == {}

    def test_server_status_defaults(self):
        status = ServerStatus(server_id="fs", name="Files", transport="stdio")
        assert status.status == "disconnected"
        assert status.tool_count == 0
