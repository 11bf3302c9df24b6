"""Capability cache filled in by the handshake."""

from typing import Iterable, Optional, Tuple

from .models import InitializeResult, Prompt, Resource, ServerCapabilities, ServerInfo, Tool


class CapabilityCache:
    """Negotiated session data plus the latest tool/resource/prompt catalogs.

    Catalogs are replaced wholesale, never merged, and ``clear`` resets
    everything in a single step.
    """

    def __init__(self):
        self.clear()

    def clear(self) -> None:
        self.protocol_version: Optional[str] = None
        self.server_info: Optional[ServerInfo] = None
        self.capabilities = ServerCapabilities()
        self.instructions: Optional[str] = None
        self.tools: Tuple[Tool, ...] = ()
        self.resources: Tuple[Resource, ...] = ()
        self.prompts: Tuple[Prompt, ...] = ()

    def store_initialize(self, result: InitializeResult) -> None:
        self.protocol_version = result.protocolVersion
        self.server_info = result.serverInfo
        self.capabilities = ServerCapabilities.from_wire(result.capabilities)
        self.instructions = result.instructions

    def replace_tools(self, tools: Iterable[Tool]) -> None:
        self.tools = tuple(tools)

    def replace_resources(self, resources: Iterable[Resource]) -> None:
        self.resources = tuple(resources)

    def replace_prompts(self, prompts: Iterable[Prompt]) -> None:
        self.prompts = tuple(prompts)
