"""Invoker registry helpers."""

from __future__ import annotations

import os
from typing import Callable

from . import BackendError, ToolInvoker
from .null import NullInvoker

InvokerFactory = Callable[[], ToolInvoker]


def _mcp_from_config() -> ToolInvoker:
    from ..config_loader import get_config
    from .mcp import McpToolInvoker

    return McpToolInvoker.from_config(get_config().mcp)


_REGISTRY: dict[str, InvokerFactory] = {
    "null": lambda: NullInvoker(),
    "mcp": _mcp_from_config,
}


def register_invoker(name: str, factory: InvokerFactory) -> None:
    """Register an invoker factory."""
    _REGISTRY[name] = factory


def get_invoker(name: str) -> ToolInvoker:
    """Instantiate an invoker by name."""
    try:
        factory = _REGISTRY[name]
    except KeyError as exc:
        raise BackendError(f"Invoker '{name}' is not registered") from exc
    return factory()


def list_invokers() -> list[str]:
    """List registered invoker names."""
    return sorted(_REGISTRY)


def resolve_invoker(name: str | None = None) -> ToolInvoker:
    """Resolve invoker by explicit name or GRAPH_MEMORY_INVOKER env (default: null)."""
    invoker_name = name or os.environ.get("GRAPH_MEMORY_INVOKER", "null")
    return get_invoker(invoker_name)
