"""Resilient facade over a Graphiti knowledge graph.

The adapter buffers writes per group, drains them to the remote service on a
timer, keeps a local cache of nodes and edges for degraded-mode reads, and
tracks the temporal validity of cached facts. The remote service is only
reached through an injected ``ToolInvoker``; when it is absent or fails the
startup probe, the adapter keeps working in fallback mode.

Usage:
    async with GraphMemoryAdapter(config, invoker) as adapter:
        episode_uuid = await adapter.add_memory("standup", "Alice owns the API")
        result = await adapter.search_nodes("Alice")

Connectivity is decided once, at ``initialize()``. There is no re-probing:
an adapter that started in fallback stays in fallback until it is destroyed.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from .backends import (
    ADD_MEMORY,
    CLEAR_GRAPH,
    GET_EPISODES,
    SEARCH_MEMORY_FACTS,
    SEARCH_MEMORY_NODES,
    RemoteTimeoutError,
    ToolInvoker,
    UnsupportedOperationError,
)
from .buffer import EpisodeBuffer
from .cache import FALLBACK_RELEVANCE, EntityCache, FallbackSearchEngine
from .config_schema import AdapterConfig
from .entries import MemoryEntry, format_memory_content, source_description_for
from .events import AdapterEvent, EventBus, EventCallback, EventKey
from .models import (
    AdapterStatistics,
    Edge,
    Episode,
    EpisodeSource,
    Node,
    SearchResult,
)
from .observability import log_debug, log_error, log_info, log_warning, timeit
from .scheduler import SyncReport, SyncScheduler
from .sharing import HiveMindNotifier
from .temporal import TemporalValidityTracker


class ConnectionState(str, Enum):
    """Lifecycle state of the adapter."""

    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    FALLBACK = "fallback"
    DESTROYED = "destroyed"


class AdapterDisposedError(RuntimeError):
    """Raised when an operation is attempted on a destroyed adapter."""


def _default_id() -> str:
    return str(uuid.uuid4())


class GraphMemoryAdapter:
    """Client-side adapter between the application's memory and Graphiti."""

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        invoker: Optional[ToolInvoker] = None,
        *,
        id_factory: Optional[Callable[[], str]] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.config = config or AdapterConfig()
        self._invoker = invoker
        self._id_factory = id_factory or _default_id
        self._events = events or EventBus()

        self._cache = EntityCache()
        self._buffer = EpisodeBuffer()
        self._fallback = FallbackSearchEngine(self._cache, self.config.fallback_max_results)
        self._temporal = TemporalValidityTracker(
            self._cache, self._events, enabled=self.config.enable_temporal_tracking
        )
        self._sharing = HiveMindNotifier(self._cache, self._events)
        self._scheduler = SyncScheduler(
            self._buffer,
            self._deliver,
            interval=self.config.sync_interval,
            mode=self.config.sync_mode,
            on_tick=self._on_sync_tick,
        )

        self._state = ConnectionState.UNINITIALIZED
        self._init_lock = asyncio.Lock()
        self._closing = False

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def scheduler(self) -> SyncScheduler:
        return self._scheduler

    def _ensure_alive(self) -> None:
        if self._state is ConnectionState.DESTROYED:
            raise AdapterDisposedError("Graph memory adapter has been destroyed")

    async def __aenter__(self) -> "GraphMemoryAdapter":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()

    def subscribe(self, event_type: EventKey, callback: EventCallback) -> None:
        self._ensure_alive()
        self._events.subscribe(event_type, callback)

    def unsubscribe(self, event_type: EventKey, callback: EventCallback) -> bool:
        self._ensure_alive()
        return self._events.unsubscribe(event_type, callback)

    # ------------------------------------------------------------------ #
    # Startup
    # ------------------------------------------------------------------ #

    async def initialize(self) -> ConnectionState:
        """Probe the remote service once and settle on CONNECTED or FALLBACK.

        Never raises for an unavailable service. Repeated calls return the
        state decided by the first one.
        """
        self._ensure_alive()
        async with self._init_lock:
            if self._state is not ConnectionState.UNINITIALIZED:
                return self._state

            if not self.config.enabled:
                log_info("Graph memory disabled by configuration, running in fallback mode")
                return self._enter_fallback()

            try:
                available = await self._probe()
            except Exception as exc:
                log_error(f"Failed to initialize graph memory adapter: {exc}")
                if self._state is ConnectionState.DESTROYED:
                    return self._state
                self._events.publish(AdapterEvent.ERROR, exc)
                return self._enter_fallback()

            if self._state is ConnectionState.DESTROYED:
                return self._state

            if not available:
                log_warning("Graphiti MCP server not available, running in fallback mode")
                return self._enter_fallback()

            self._state = ConnectionState.CONNECTED
            self._events.publish(AdapterEvent.CONNECTED)
            log_info("Graph memory adapter connected")

            if self.config.enable_auto_sync:
                self._scheduler.start()
            return self._state

    async def _probe(self) -> bool:
        if self._invoker is None:
            return False
        with timeit("probe") as info:
            try:
                available = await asyncio.wait_for(
                    self._invoker.available(), timeout=self.config.call_timeout
                )
            except asyncio.TimeoutError:
                info["outcome"] = "timeout"
                raise RemoteTimeoutError("available", self.config.call_timeout) from None
            info["available"] = bool(available)
        return bool(available)

    def _enter_fallback(self) -> ConnectionState:
        self._state = ConnectionState.FALLBACK
        self._events.publish(AdapterEvent.FALLBACK)
        return self._state

    # ------------------------------------------------------------------ #
    # Remote calls
    # ------------------------------------------------------------------ #

    async def _call_tool(self, tool_name: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        """Invoke a remote tool under the configured deadline.

        Parameters that are None are omitted from the call.
        """
        if self._invoker is None:
            raise UnsupportedOperationError(f"No invoker configured for tool '{tool_name}'")

        args = {key: value for key, value in params.items() if value is not None}
        log_debug(f"Calling Graphiti tool: {tool_name}", params=args)
        with timeit("remote_call", tool_name=tool_name) as info:
            try:
                result = await asyncio.wait_for(
                    self._invoker.invoke(tool_name, args), timeout=self.config.call_timeout
                )
            except asyncio.TimeoutError:
                info["outcome"] = "timeout"
                raise RemoteTimeoutError(tool_name, self.config.call_timeout) from None
        return result if result is not None else {}

    async def _deliver(self, episode: Episode) -> None:
        try:
            await self._call_tool(ADD_MEMORY, episode.to_tool_params())
        except Exception as exc:
            log_error(
                f"Failed to flush episode to Graphiti: {exc}",
                episode=episode.uuid,
                group_id=episode.group_id,
            )
            raise

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def add_memory(
        self,
        name: str,
        content: str,
        *,
        source: Union[EpisodeSource, str] = EpisodeSource.TEXT,
        source_description: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> str:
        """Buffer an episode and, when connected, deliver it right away.

        The episode stays queued whatever the immediate delivery does, so the
        next sync retries it.

        Returns:
            The new episode's uuid

        Raises:
            BackendError: If the immediate delivery fails
        """
        self._ensure_alive()
        episode = Episode(
            uuid=self._id_factory(),
            name=name,
            content=content,
            source=EpisodeSource(source),
            source_description=source_description,
            group_id=group_id or self.config.default_group_id,
        )
        self._buffer.enqueue(episode)
        self._events.publish(AdapterEvent.MEMORY_ADDED, episode)

        if self._state is ConnectionState.CONNECTED:
            await self._deliver(episode)
        return episode.uuid

    async def from_memory_entry(self, entry: MemoryEntry) -> str:
        """Ingest a host memory entry as a JSON episode in its namespace."""
        return await self.add_memory(
            entry.key,
            format_memory_content(entry),
            source=EpisodeSource.JSON,
            source_description=source_description_for(entry),
            group_id=entry.namespace,
        )

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def search_nodes(
        self,
        query: str,
        *,
        group_ids: Optional[Sequence[str]] = None,
        max_nodes: Optional[int] = None,
        entity: Optional[str] = None,
        center_node_uuid: Optional[str] = None,
    ) -> SearchResult:
        """Search entities remotely, or in the local cache when disconnected.

        Never raises for remote failures; those yield an empty result with
        zero relevance.
        """
        self._ensure_alive()
        if self._state is not ConnectionState.CONNECTED:
            return self._fallback.search(query, max_nodes)

        try:
            data = await self._call_tool(
                SEARCH_MEMORY_NODES,
                {
                    "query": query,
                    "group_ids": list(group_ids) if group_ids is not None else None,
                    "max_nodes": max_nodes or self.config.max_nodes,
                    "entity": entity,
                    "center_node_uuid": center_node_uuid,
                },
            )
            return SearchResult(
                nodes=_coerce_nodes(data.get("nodes")),
                relevance_score=_relevance(data),
            )
        except Exception as exc:
            log_error(f"Failed to search nodes: {exc}", query=query)
            return SearchResult.empty()

    async def search_facts(
        self,
        query: str,
        *,
        group_ids: Optional[Sequence[str]] = None,
        max_facts: Optional[int] = None,
        center_node_uuid: Optional[str] = None,
    ) -> SearchResult:
        """Search facts remotely, or fall back to a cached node search.

        The fallback has no fact index: it returns matching nodes and an
        empty ``facts`` list.
        """
        self._ensure_alive()
        if self._state is not ConnectionState.CONNECTED:
            return self._fallback.search(query)

        try:
            data = await self._call_tool(
                SEARCH_MEMORY_FACTS,
                {
                    "query": query,
                    "group_ids": list(group_ids) if group_ids is not None else None,
                    "max_facts": max_facts or self.config.max_facts,
                    "center_node_uuid": center_node_uuid,
                },
            )
            return SearchResult(
                facts=_coerce_facts(data.get("facts")),
                relevance_score=_relevance(data),
            )
        except Exception as exc:
            log_error(f"Failed to search facts: {exc}", query=query)
            return SearchResult.empty()

    async def get_recent_episodes(
        self,
        group_id: Optional[str] = None,
        limit: int = 10,
    ) -> list[Union[Episode, dict]]:
        """Most recent episodes of a group.

        Disconnected, this is the tail of the local buffer. Connected, the
        remote ``get_episodes`` tool answers. Errors yield an empty list.
        """
        self._ensure_alive()
        group = group_id or self.config.default_group_id
        if self._state is not ConnectionState.CONNECTED:
            return list(self._buffer.recent(group, limit))

        try:
            data = await self._call_tool(GET_EPISODES, {"group_id": group, "last_n": limit})
        except Exception as exc:
            log_error(f"Failed to get recent episodes: {exc}", group_id=group)
            return []

        episodes = data.get("episodes")
        if episodes is None:
            episodes = data.get("result")
        if not isinstance(episodes, list):
            return []
        return list(episodes)

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #

    def cache_node(self, node: Node) -> None:
        """Record a node in the local cache, replacing any with the same uuid."""
        self._ensure_alive()
        self._cache.put_node(node)

    def cache_edge(self, edge: Edge) -> None:
        """Record an edge in the local cache, replacing any with the same uuid."""
        self._ensure_alive()
        self._cache.put_edge(edge)

    def get_node(self, node_uuid: str) -> Optional[Node]:
        self._ensure_alive()
        return self._cache.get_node(node_uuid)

    def get_edge(self, edge_uuid: str) -> Optional[Edge]:
        self._ensure_alive()
        return self._cache.get_edge(edge_uuid)

    # ------------------------------------------------------------------ #
    # Temporal validity and sharing
    # ------------------------------------------------------------------ #

    async def update_fact_validity(
        self,
        edge_uuid: str,
        is_valid: bool,
        valid_until: Optional[datetime] = None,
    ) -> bool:
        """Mark a cached fact current or historical. Local only.

        Returns:
            True if a cached edge was updated
        """
        self._ensure_alive()
        return self._temporal.update(edge_uuid, is_valid, valid_until)

    def current_facts(
        self, group_id: Optional[str] = None, at: Optional[datetime] = None
    ) -> list[Edge]:
        self._ensure_alive()
        return self._temporal.current(group_id, at)

    def historical_facts(
        self, group_id: Optional[str] = None, at: Optional[datetime] = None
    ) -> list[Edge]:
        self._ensure_alive()
        return self._temporal.historical(group_id, at)

    async def share_with_hive_mind(
        self,
        node_uuids: Sequence[str],
        target_swarms: Sequence[str],
    ) -> list[Node]:
        """Announce cached nodes to other swarms via ``hivemind:share``."""
        self._ensure_alive()
        return self._sharing.share(node_uuids, target_swarms)

    # ------------------------------------------------------------------ #
    # Sync
    # ------------------------------------------------------------------ #

    async def sync_now(self) -> SyncReport:
        """Run one sync tick immediately.

        Does nothing (empty report, no event) unless connected.
        """
        self._ensure_alive()
        if self._state is not ConnectionState.CONNECTED:
            return SyncReport()
        return await self._scheduler.run_once()

    def _on_sync_tick(self, report: SyncReport) -> None:
        self._events.publish(AdapterEvent.SYNC_COMPLETED, report.completed_at)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def clear_graph(self) -> None:
        """Clear the remote graph (when connected), then local state.

        Raises:
            BackendError: If the remote clear fails. Local state is kept.
        """
        self._ensure_alive()
        if self._state is ConnectionState.CONNECTED:
            try:
                await self._call_tool(CLEAR_GRAPH, {})
            except Exception as exc:
                log_error(f"Failed to clear graph: {exc}")
                raise

        self._cache.clear()
        self._buffer.clear()
        self._events.publish(AdapterEvent.GRAPH_CLEARED)
        log_info("Graphiti knowledge graph cleared")

    def get_statistics(self) -> AdapterStatistics:
        """Counters for the cache and buffer. Safe to call after destroy()."""
        cache_stats = self._cache.stats()
        return AdapterStatistics(
            total_nodes=cache_stats["nodes"],
            total_edges=cache_stats["edges"],
            queued_episodes=self._buffer.total(),
            cache_size=cache_stats["size"],
            is_connected=self.is_connected,
        )

    async def destroy(self) -> None:
        """Stop syncing, flush what can be flushed, and release local state.

        Emits ``sync:completed`` then ``destroyed`` whether or not a remote was
        reached. Idempotent. After this, most operations raise
        AdapterDisposedError.
        """
        if self._closing or self._state is ConnectionState.DESTROYED:
            return
        self._closing = True

        try:
            await self._scheduler.stop()
            if self._state is ConnectionState.CONNECTED:
                await self._scheduler.run_once()
            else:
                dropped = self._buffer.total()
                if dropped:
                    log_warning(
                        f"Dropping {dropped} buffered episodes: no remote graph to deliver to"
                    )
                self._on_sync_tick(SyncReport(completed_at=datetime.now(timezone.utc)))
        finally:
            self._cache.clear()
            self._buffer.clear()
            self._state = ConnectionState.DESTROYED
            self._events.publish(AdapterEvent.DESTROYED)
            log_info("Graph memory adapter destroyed")


def _relevance(data: Mapping[str, Any]) -> float:
    score = data.get("relevanceScore")
    if score is None:
        return FALLBACK_RELEVANCE
    return float(score)


def _coerce_nodes(raw: Any) -> list[Node]:
    nodes: list[Node] = []
    for item in raw or []:
        if isinstance(item, Node):
            nodes.append(item)
        elif isinstance(item, Mapping) and item.get("uuid"):
            nodes.append(Node.from_payload(item))
    return nodes


def _coerce_facts(raw: Any) -> list[str]:
    facts: list[str] = []
    for item in raw or []:
        if isinstance(item, Mapping):
            fact = item.get("fact")
            facts.append(str(fact) if fact is not None else str(dict(item)))
        else:
            facts.append(str(item))
    return facts
