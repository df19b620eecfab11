"""MCP invoker: reaches a Graphiti MCP server through a FastMCP client."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from ..observability import log_debug, log_warning
from . import (
    ADD_MEMORY,
    REQUIRED_TOOLS,
    BackendError,
    ConfigError,
    ToolInvoker,
    TransientError,
)

if TYPE_CHECKING:
    from ..config_schema import McpServerConfig


class McpToolInvoker(ToolInvoker):
    """
    Tool invoker backed by ``fastmcp.Client``.

    The client target can be anything FastMCP accepts: an http(s) URL for a
    running server, a path to a server script, or an in-process ``FastMCP``
    instance. A session is opened per call, so the invoker holds no
    connection between operations.

    Graphiti reports tool-level failures as ``{"error": "..."}`` payloads
    rather than MCP errors; both are raised as BackendError here.
    """

    def __init__(
        self,
        target: Any,
        *,
        required_tools: Sequence[str] = (ADD_MEMORY,),
        server_name: str = "graphiti",
    ) -> None:
        try:
            from fastmcp import Client
        except ImportError as e:
            raise ConfigError(
                f"MCP client dependencies not installed: {e}. "
                "Run: pip install fastmcp"
            ) from e

        self._target = target
        self._client = Client(target)
        self._required_tools = tuple(required_tools)
        self._server_name = server_name

    @classmethod
    def from_config(cls, config: "McpServerConfig") -> "McpToolInvoker":
        """Create an invoker for the configured MCP server.

        Raises:
            ConfigError: If no server URL is configured
        """
        if not config.url:
            raise ConfigError(
                "No MCP server configured. "
                "Set [mcp].url in config.toml or GRAPH_MEMORY_MCP_URL."
            )
        return cls(
            config.url,
            required_tools=config.required_tools,
            server_name=config.server_name,
        )

    @property
    def required_tools(self) -> tuple[str, ...]:
        return self._required_tools

    @property
    def server_name(self) -> str:
        return self._server_name

    async def available(self) -> bool:
        try:
            async with self._client:
                tools = await self._client.list_tools()
        except Exception as e:
            raise TransientError(f"MCP server '{self._server_name}' unreachable: {e}") from e

        names = {tool.name for tool in tools}
        missing = [name for name in self._required_tools if name not in names]
        if missing:
            log_debug(
                f"MCP: server '{self._server_name}' is missing required tools: {', '.join(missing)}"
            )
            return False

        unsupported = [name for name in REQUIRED_TOOLS if name not in names]
        if unsupported:
            log_warning(
                f"MCP: server '{self._server_name}' lacks tools the adapter calls; "
                f"those operations will degrade: {', '.join(unsupported)}"
            )
        return True

    async def invoke(self, tool_name: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        try:
            async with self._client:
                result = await self._client.call_tool_mcp(tool_name, dict(params))
        except Exception as e:
            raise TransientError(f"MCP call '{tool_name}' failed: {e}") from e

        if getattr(result, "isError", False):
            raise BackendError(
                f"Tool '{tool_name}' reported an error: {_text_of(result) or 'no details'}"
            )

        data = _result_to_mapping(result)
        error = data.get("error")
        if isinstance(error, str) and error:
            raise BackendError(f"Tool '{tool_name}' reported an error: {error}")
        return data


def _text_of(result: Any) -> str:
    """Concatenate the text content blocks of an MCP tool result."""
    parts = []
    for item in getattr(result, "content", None) or []:
        text = getattr(item, "text", None)
        if text:
            parts.append(text)
    return "\n".join(parts)


def _result_to_mapping(result: Any) -> dict[str, Any]:
    """Normalize an MCP CallToolResult into a dict.

    Structured content wins; otherwise the text content is parsed as JSON.
    Non-object payloads are wrapped as ``{"result": value}``.
    """
    structured: Optional[Any] = getattr(result, "structuredContent", None)
    if isinstance(structured, dict):
        return dict(structured)

    text = _text_of(result)
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"result": text}
    if isinstance(parsed, dict):
        return parsed
    return {"result": parsed}
