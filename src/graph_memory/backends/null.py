"""Null invoker: no remote service, the adapter always runs in fallback."""

from __future__ import annotations

from typing import Any, Mapping

from . import ToolInvoker, UnsupportedOperationError


class NullInvoker(ToolInvoker):
    """Invoker that reports the remote graph as absent."""

    async def available(self) -> bool:
        return False

    async def invoke(self, tool_name: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        raise UnsupportedOperationError(
            f"Invoker 'null' cannot call remote tool '{tool_name}'"
        )
