from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional

import pytest

# Keep test runs from writing session logs under ~/.graph-memory
os.environ.setdefault("GRAPH_MEMORY_LOG_DISABLE_FILE", "1")


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use asyncio backend only.

    The adapter and its scheduler are written against asyncio directly.
    """
    return "asyncio"


class FakeInvoker:
    """Scriptable ToolInvoker that records every call.

    ``responses`` maps tool names to the mapping returned by ``invoke``.
    ``fail`` may return an exception to raise for a given call. ``hook`` is
    awaited before answering, which lets a test hold a call in flight.
    """

    def __init__(
        self,
        available: bool = True,
        responses: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> None:
        self.is_available = available
        self.available_error: Optional[Exception] = None
        self.responses: dict[str, Mapping[str, Any]] = dict(responses or {})
        self.fail: Optional[Callable[[str, dict], Optional[Exception]]] = None
        self.hook: Optional[Callable[[str, dict], Awaitable[None]]] = None
        self.calls: list[tuple[str, dict]] = []
        self.probes = 0

    async def available(self) -> bool:
        self.probes += 1
        if self.available_error is not None:
            raise self.available_error
        return self.is_available

    async def invoke(self, tool_name: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        args = dict(params)
        self.calls.append((tool_name, args))
        if self.hook is not None:
            await self.hook(tool_name, args)
        if self.fail is not None:
            error = self.fail(tool_name, args)
            if error is not None:
                raise error
        return self.responses.get(tool_name, {})

    def calls_for(self, tool_name: str) -> list[dict]:
        return [params for name, params in self.calls if name == tool_name]


class SlowInvoker(FakeInvoker):
    """Invoker whose calls never finish within a short deadline."""

    async def available(self) -> bool:
        await asyncio.sleep(3600)
        return True

    async def invoke(self, tool_name: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        self.calls.append((tool_name, dict(params)))
        await asyncio.sleep(3600)
        return {}


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def slow_invoker() -> SlowInvoker:
    return SlowInvoker()


@pytest.fixture
def recorded_events():
    """Collect (event value, payload) pairs published on a bus."""

    def attach(bus):
        seen: list[tuple[str, Any]] = []
        bus.subscribe("*", lambda event: seen.append((event.event_type.value, event.payload)))
        return seen

    return attach
