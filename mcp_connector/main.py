"""Command line entry point for the MCP connector."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .config import load_config
from .errors import MCPClientError
from .logging_config import setup_mcp_logging
from .models import PromptGetRequest, ResourceReadRequest, ToolCallRequest
from .server_manager import MCPServerManager


logger = logging.getLogger("mcp_connector")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-connector",
        description="Connect to Model Context Protocol servers and use their tools, resources and prompts"
    )
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--log-level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("servers", help="Connect enabled servers and show their status")

    for name, help_text in (("tools", "List tools"), ("resources", "List resources"), ("prompts", "List prompts")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--server", default=None, help="Only this server (default: every enabled server)")

    call = subparsers.add_parser("call", help="Call a tool")
    call.add_argument("server")
    call.add_argument("tool")
    call.add_argument("--arguments", default="{}", help="Tool arguments as a JSON object")

    read = subparsers.add_parser("read", help="Read a resource")
    read.add_argument("server")
    read.add_argument("uri")

    prompt = subparsers.add_parser("prompt", help="Render a prompt")
    prompt.add_argument("server")
    prompt.add_argument("name")
    prompt.add_argument("--arguments", default=None, help="Prompt arguments as a JSON object")

    return parser


def _parse_arguments(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("--arguments must be a JSON object")
    return value


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def _connect_targets(manager: MCPServerManager, server_id: Optional[str]) -> None:
    if server_id:
        await manager.connect(server_id)
    else:
        await manager.connect_enabled()


async def run(args: argparse.Namespace, manager: MCPServerManager) -> int:
    """Execute one command; returns the process exit status."""
    try:
        if args.command == "servers":
            await manager.connect_enabled()
            _print_json(manager.list_servers())
            return 0

        if args.command in ("tools", "resources", "prompts"):
            await _connect_targets(manager, args.server)
            if args.command == "tools":
                entries: List[Any] = manager.get_all_tools()
            elif args.command == "resources":
                entries = manager.get_all_resources()
            else:
                entries = manager.get_all_prompts()
            if args.server:
                entries = [entry for entry in entries if entry.server_id == args.server]
            _print_json([entry.model_dump(exclude_none=True) for entry in entries])
            return 0

        if args.command == "call":
            request = ToolCallRequest(
                server_id=args.server,
                tool_name=args.tool,
                arguments=_parse_arguments(args.arguments) or {}
            )
            await manager.connect(request.server_id)
            result = await manager.call_tool(request)
            _print_json(result.model_dump(exclude_none=True))
            return 1 if result.isError else 0

        if args.command == "read":
            request = ResourceReadRequest(server_id=args.server, uri=args.uri)
            await manager.connect(request.server_id)
            result = await manager.read_resource(request)
            _print_json(result.model_dump(exclude_none=True))
            return 0

        if args.command == "prompt":
            request = PromptGetRequest(
                server_id=args.server,
                prompt_name=args.name,
                arguments=_parse_arguments(args.arguments)
            )
            await manager.connect(request.server_id)
            result = await manager.get_prompt(request)
            _print_json(result.model_dump(exclude_none=True))
            return 0

        logger.error(f"Unknown command: {args.command}")
        return 1
    except (MCPClientError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        await manager.disconnect_all()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        config.client.log_level = args.log_level
    setup_mcp_logging(config.to_dict())

    manager = MCPServerManager(config)
    return asyncio.run(run(args, manager))


if __name__ == "__main__":
    sys.exit(main())
