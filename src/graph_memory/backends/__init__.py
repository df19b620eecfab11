"""Tool-invocation contract for reaching the remote knowledge graph."""

from __future__ import annotations

from typing import Any, Literal, Mapping, Protocol, runtime_checkable


class BackendError(Exception):
    """Base exception for remote service failures."""


class ConfigError(BackendError):
    """Raised when invoker configuration is invalid."""


class TransientError(BackendError):
    """Raised for retryable errors (connection drops, timeouts)."""


class RemoteTimeoutError(TransientError):
    """Raised when a remote tool call exceeds its deadline."""

    def __init__(self, tool_name: str, timeout: float) -> None:
        super().__init__(f"Remote call '{tool_name}' timed out after {timeout:g}s")
        self.tool_name = tool_name
        self.timeout = timeout


class UnsupportedOperationError(BackendError):
    """Raised when the invoker cannot perform the requested tool call."""


# Tool names exposed by the Graphiti MCP server
ToolName = Literal[
    "add_memory",
    "search_memory_nodes",
    "search_memory_facts",
    "get_episodes",
    "clear_graph",
]

ADD_MEMORY: ToolName = "add_memory"
SEARCH_MEMORY_NODES: ToolName = "search_memory_nodes"
SEARCH_MEMORY_FACTS: ToolName = "search_memory_facts"
GET_EPISODES: ToolName = "get_episodes"
CLEAR_GRAPH: ToolName = "clear_graph"

REQUIRED_TOOLS: tuple[str, ...] = (
    ADD_MEMORY,
    SEARCH_MEMORY_NODES,
    SEARCH_MEMORY_FACTS,
    GET_EPISODES,
    CLEAR_GRAPH,
)


@runtime_checkable
class ToolInvoker(Protocol):
    """Capability the adapter uses to talk to the knowledge graph."""

    async def available(self) -> bool:
        """Check whether the remote tools are registered and reachable.

        Called once, when the adapter initializes.

        Returns:
            True if the adapter may run connected.

        Raises:
            BackendError: If the check itself fails. The adapter treats this
                like an unavailable service and additionally reports the error.
        """

    async def invoke(self, tool_name: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        """Call a remote tool.

        Args:
            tool_name: One of the ``ToolName`` values
            params: JSON-serializable arguments

        Returns:
            The tool's result as a mapping

        Raises:
            TransientError: For retryable failures
            BackendError: For other failures
        """


__all__ = [
    # Exceptions
    "BackendError",
    "ConfigError",
    "TransientError",
    "RemoteTimeoutError",
    "UnsupportedOperationError",
    # Tool names
    "ToolName",
    "ADD_MEMORY",
    "SEARCH_MEMORY_NODES",
    "SEARCH_MEMORY_FACTS",
    "GET_EPISODES",
    "CLEAR_GRAPH",
    "REQUIRED_TOOLS",
    # Protocol
    "ToolInvoker",
    # Registry helpers
    "register_invoker",
    "get_invoker",
    "list_invokers",
    "resolve_invoker",
    # Implementations
    "McpToolInvoker",
    "NullInvoker",
]

# Registry re-exports
from .registry import (  # noqa: E402
    get_invoker,
    list_invokers,
    register_invoker,
    resolve_invoker,
)

# Invoker re-exports
from .mcp import McpToolInvoker  # noqa: E402
from .null import NullInvoker  # noqa: E402
