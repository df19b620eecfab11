"""Tests for the GraphMemoryAdapter facade."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from datetime import datetime, timezone

import pytest

from graph_memory.adapter import AdapterDisposedError, ConnectionState, GraphMemoryAdapter
from graph_memory.backends import BackendError, RemoteTimeoutError, TransientError
from graph_memory.config_schema import AdapterConfig
from graph_memory.entries import MemoryEntry
from graph_memory.models import Edge, Episode, EpisodeSource, Node
from graph_memory.scheduler import SyncReport


def _config(**overrides) -> AdapterConfig:
    overrides.setdefault("enable_auto_sync", False)
    return AdapterConfig(**overrides)


async def _started(invoker, **overrides) -> GraphMemoryAdapter:
    adapter = GraphMemoryAdapter(_config(**overrides), invoker)
    await adapter.initialize()
    return adapter


def _names(seen) -> list[str]:
    return [name for name, _ in seen]


class TestInitialize:
    @pytest.mark.anyio
    async def test_available_service_connects(self, fake_invoker, recorded_events):
        adapter = GraphMemoryAdapter(_config(), fake_invoker)
        seen = recorded_events(adapter.events)

        state = await adapter.initialize()

        assert state is ConnectionState.CONNECTED
        assert adapter.is_connected
        assert _names(seen) == ["connected"]
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_unavailable_service_falls_back(self, fake_invoker, recorded_events):
        fake_invoker.is_available = False
        adapter = GraphMemoryAdapter(_config(), fake_invoker)
        seen = recorded_events(adapter.events)

        assert await adapter.initialize() is ConnectionState.FALLBACK
        assert _names(seen) == ["fallback"]

    @pytest.mark.anyio
    async def test_no_invoker_falls_back(self, recorded_events):
        adapter = GraphMemoryAdapter(_config())
        seen = recorded_events(adapter.events)

        assert await adapter.initialize() is ConnectionState.FALLBACK
        assert _names(seen) == ["fallback"]

    @pytest.mark.anyio
    async def test_probe_error_reports_then_falls_back(self, fake_invoker, recorded_events):
        probe_error = TransientError("server unreachable")
        fake_invoker.available_error = probe_error
        adapter = GraphMemoryAdapter(_config(), fake_invoker)
        seen = recorded_events(adapter.events)

        assert await adapter.initialize() is ConnectionState.FALLBACK
        assert seen == [("error", probe_error), ("fallback", None)]

    @pytest.mark.anyio
    async def test_disabled_config_skips_probe(self, fake_invoker, recorded_events):
        adapter = GraphMemoryAdapter(_config(enabled=False), fake_invoker)
        seen = recorded_events(adapter.events)

        assert await adapter.initialize() is ConnectionState.FALLBACK
        assert fake_invoker.probes == 0
        assert _names(seen) == ["fallback"]

    @pytest.mark.anyio
    async def test_probe_runs_once(self, fake_invoker):
        adapter = GraphMemoryAdapter(_config(), fake_invoker)

        await asyncio.gather(adapter.initialize(), adapter.initialize())
        await adapter.initialize()

        assert fake_invoker.probes == 1
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_auto_sync_starts_only_when_connected(self, fake_invoker):
        connected = await _started(fake_invoker, enable_auto_sync=True)
        assert connected.scheduler.running
        await connected.destroy()
        assert not connected.scheduler.running

        fake_invoker.is_available = False
        fallback = await _started(fake_invoker, enable_auto_sync=True)
        assert not fallback.scheduler.running

    @pytest.mark.anyio
    async def test_probe_timeout_is_an_error(self, slow_invoker, recorded_events):
        adapter = GraphMemoryAdapter(_config(call_timeout=0.05), slow_invoker)
        seen = recorded_events(adapter.events)

        assert await adapter.initialize() is ConnectionState.FALLBACK
        assert _names(seen) == ["error", "fallback"]
        assert isinstance(seen[0][1], RemoteTimeoutError)

    @pytest.mark.anyio
    async def test_context_manager(self, fake_invoker, recorded_events):
        adapter = GraphMemoryAdapter(_config(), fake_invoker)
        seen = recorded_events(adapter.events)

        async with adapter as entered:
            assert entered is adapter
            assert adapter.state is ConnectionState.CONNECTED

        assert adapter.state is ConnectionState.DESTROYED
        assert _names(seen)[-1] == "destroyed"


class TestAddMemory:
    @pytest.mark.anyio
    async def test_fallback_buffers_without_remote_call(self, fake_invoker):
        fake_invoker.is_available = False
        adapter = await _started(fake_invoker)

        episode_uuid = await adapter.add_memory("n1", "c1")

        assert fake_invoker.calls == []
        assert adapter.get_statistics().queued_episodes == 1
        [episode] = await adapter.get_recent_episodes()
        assert episode.uuid == episode_uuid
        assert episode.source is EpisodeSource.TEXT
        assert episode.group_id == "default"

    @pytest.mark.anyio
    async def test_connected_delivers_immediately_and_keeps_queued(self, fake_invoker):
        adapter = await _started(fake_invoker)

        episode_uuid = await adapter.add_memory(
            "standup", "Alice owns the API", source="message", group_id="team"
        )

        assert fake_invoker.calls_for("add_memory") == [
            {
                "name": "standup",
                "episode_body": "Alice owns the API",
                "source": "message",
                "group_id": "team",
                "uuid": episode_uuid,
            }
        ]
        assert adapter.get_statistics().queued_episodes == 1
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_immediate_failure_propagates_and_event_still_fires(
        self, fake_invoker, recorded_events
    ):
        adapter = await _started(fake_invoker)
        seen = recorded_events(adapter.events)
        fake_invoker.fail = lambda tool, params: BackendError("rejected")

        with pytest.raises(BackendError, match="rejected"):
            await adapter.add_memory("n", "c")

        assert _names(seen) == ["memory:added"]
        assert isinstance(seen[0][1], Episode)
        assert adapter.get_statistics().queued_episodes == 1
        fake_invoker.fail = None
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_memory_added_carries_episode(self, recorded_events):
        adapter = await _started(None, default_group_id="project-x")
        seen = recorded_events(adapter.events)

        episode_uuid = await adapter.add_memory("n", "c", source_description="chat")

        [(name, episode)] = seen
        assert name == "memory:added"
        assert episode.uuid == episode_uuid
        assert episode.group_id == "project-x"
        assert episode.source_description == "chat"

    @pytest.mark.anyio
    async def test_uuids_unique(self):
        adapter = await _started(None)
        uuids = [await adapter.add_memory(f"n{i}", "c") for i in range(200)]
        assert len(set(uuids)) == 200

    @pytest.mark.anyio
    async def test_injected_id_factory(self):
        counter = itertools.count(1)
        adapter = GraphMemoryAdapter(_config(), id_factory=lambda: f"ep-{next(counter)}")
        await adapter.initialize()

        assert await adapter.add_memory("a", "1") == "ep-1"
        assert await adapter.add_memory("b", "2") == "ep-2"

    @pytest.mark.anyio
    async def test_unknown_source_rejected(self):
        adapter = await _started(None)
        with pytest.raises(ValueError):
            await adapter.add_memory("n", "c", source="video")

    @pytest.mark.anyio
    async def test_queued_count_is_sum_of_groups(self):
        adapter = await _started(None)
        for group_id, count in (("g1", 3), ("g2", 2), (None, 1)):
            for i in range(count):
                await adapter.add_memory(f"n{i}", "c", group_id=group_id)

        assert adapter.get_statistics().queued_episodes == 6


class TestMemoryEntry:
    @pytest.mark.anyio
    async def test_entry_becomes_json_episode_in_namespace(self):
        adapter = await _started(None)
        entry = MemoryEntry(
            key="auth-decision",
            value={"choice": "oauth"},
            namespace="architecture",
            tags=["auth"],
            metadata={"author": "alice"},
        )

        episode_uuid = await adapter.from_memory_entry(entry)

        [episode] = await adapter.get_recent_episodes("architecture")
        assert episode.uuid == episode_uuid
        assert episode.name == "auth-decision"
        assert episode.source is EpisodeSource.JSON
        assert episode.source_description == "Memory entry from architecture"
        body = json.loads(episode.content)
        assert body["value"] == {"choice": "oauth"}
        assert body["metadata"] == {"author": "alice"}
        assert "namespace" not in body


class TestSearch:
    @pytest.mark.anyio
    async def test_fallback_never_sees_writes(self):
        adapter = await _started(None)
        await adapter.add_memory("n1", "c1")

        result = await adapter.search_nodes("c1")

        assert result.nodes == []
        assert result.relevance_score == 0

    @pytest.mark.anyio
    async def test_fallback_uses_cache(self):
        adapter = await _started(None, fallback_max_results=2)
        for i in range(3):
            adapter.cache_node(Node(uuid=f"n{i}", name=f"Service {i}"))

        nodes = await adapter.search_nodes("service")
        limited = await adapter.search_nodes("service", max_nodes=1)
        facts = await adapter.search_facts("SERVICE")

        assert [n.uuid for n in nodes.nodes] == ["n0", "n1"]
        assert nodes.relevance_score == 0.5
        assert len(limited.nodes) == 1
        assert [n.uuid for n in facts.nodes] == ["n0", "n1"]
        assert facts.facts == []

    @pytest.mark.anyio
    async def test_connected_node_search(self, fake_invoker):
        fake_invoker.responses["search_memory_nodes"] = {
            "message": "Nodes retrieved successfully",
            "nodes": [
                {"uuid": "n1", "name": "Alice", "labels": ["Person"], "group_id": "team"},
                {"name": "no uuid, skipped"},
            ],
            "relevanceScore": 0.8,
        }
        adapter = await _started(fake_invoker)

        result = await adapter.search_nodes("alice", group_ids=["team"], entity="Person")

        assert [n.uuid for n in result.nodes] == ["n1"]
        assert result.nodes[0].entity_type == "Person"
        assert result.relevance_score == 0.8
        assert fake_invoker.calls_for("search_memory_nodes") == [
            {"query": "alice", "group_ids": ["team"], "max_nodes": 10000, "entity": "Person"}
        ]
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_connected_fact_search(self, fake_invoker):
        fake_invoker.responses["search_memory_facts"] = {
            "facts": [{"uuid": "e1", "fact": "Alice owns the API"}, "Bob reviews"],
        }
        adapter = await _started(fake_invoker, max_facts=25)

        result = await adapter.search_facts("owner", center_node_uuid="n1")

        assert result.facts == ["Alice owns the API", "Bob reviews"]
        assert result.relevance_score == 0.5
        assert fake_invoker.calls_for("search_memory_facts") == [
            {"query": "owner", "max_facts": 25, "center_node_uuid": "n1"}
        ]
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_remote_errors_become_empty_results(self, fake_invoker, caplog):
        adapter = await _started(fake_invoker)
        adapter.cache_node(Node(uuid="n1", name="Alice"))
        fake_invoker.fail = lambda tool, params: TransientError("connection reset")

        with caplog.at_level(logging.ERROR, logger="graph_memory"):
            nodes = await adapter.search_nodes("alice")
            facts = await adapter.search_facts("alice")

        assert nodes.nodes == [] and nodes.relevance_score == 0
        assert facts.facts == [] and facts.relevance_score == 0
        assert any("Failed to search nodes" in r.message for r in caplog.records)
        fake_invoker.fail = None
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_search_timeout_becomes_empty_result(self, fake_invoker):
        adapter = await _started(fake_invoker, call_timeout=0.05)

        async def stall(tool, params):
            if tool == "search_memory_nodes":
                await asyncio.sleep(3600)

        fake_invoker.hook = stall
        result = await adapter.search_nodes("anything")

        assert result.nodes == []
        assert result.relevance_score == 0
        fake_invoker.hook = None
        await adapter.destroy()


class TestRecentEpisodes:
    @pytest.mark.anyio
    async def test_fallback_returns_buffer_tail(self):
        adapter = await _started(None)
        for i in range(5):
            await adapter.add_memory(f"n{i}", "c", group_id="g")

        recent = await adapter.get_recent_episodes("g", limit=2)

        assert [e.name for e in recent] == ["n3", "n4"]
        assert await adapter.get_recent_episodes("empty") == []

    @pytest.mark.anyio
    async def test_connected_queries_remote(self, fake_invoker):
        fake_invoker.responses["get_episodes"] = {"episodes": [{"uuid": "remote-1"}]}
        adapter = await _started(fake_invoker)

        recent = await adapter.get_recent_episodes(limit=5)

        assert recent == [{"uuid": "remote-1"}]
        assert fake_invoker.calls_for("get_episodes") == [{"group_id": "default", "last_n": 5}]
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_connected_error_returns_empty(self, fake_invoker):
        adapter = await _started(fake_invoker)
        fake_invoker.fail = lambda tool, params: BackendError("boom")

        assert await adapter.get_recent_episodes() == []
        fake_invoker.fail = None
        await adapter.destroy()


class TestSync:
    @pytest.mark.anyio
    async def test_sync_now_in_fallback_does_nothing(self, recorded_events):
        adapter = await _started(None)
        await adapter.add_memory("n", "c")
        seen = recorded_events(adapter.events)

        report = await adapter.sync_now()

        assert report == SyncReport()
        assert seen == []
        assert adapter.get_statistics().queued_episodes == 1

    @pytest.mark.anyio
    async def test_sync_redelivers_in_order_and_empties(self, fake_invoker, recorded_events):
        adapter = await _started(fake_invoker)
        uuids = [await adapter.add_memory(f"n{i}", "c", group_id="g") for i in range(3)]
        seen = recorded_events(adapter.events)

        report = await adapter.sync_now()

        delivered = [p["uuid"] for p in fake_invoker.calls_for("add_memory")]
        assert delivered == uuids + uuids
        assert report.attempted == 3 and report.delivered == 3
        assert adapter.get_statistics().queued_episodes == 0
        [(name, completed_at)] = seen
        assert name == "sync:completed"
        assert isinstance(completed_at, datetime)
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_best_effort_discards_failures(self, fake_invoker, caplog):
        adapter = await _started(fake_invoker)
        await adapter.add_memory("keep", "c")
        await adapter.add_memory("drop", "c")
        fake_invoker.fail = lambda tool, params: (
            BackendError("rejected") if params.get("name") == "drop" else None
        )

        with caplog.at_level(logging.WARNING, logger="graph_memory"):
            report = await adapter.sync_now()

        assert report.failed == 1
        assert adapter.get_statistics().queued_episodes == 0
        assert any("failed to deliver episode" in r.message for r in caplog.records)
        fake_invoker.fail = None
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_requeue_mode_keeps_failures(self, fake_invoker):
        adapter = await _started(fake_invoker, sync_mode="requeue")
        fake_invoker.fail = lambda tool, params: TransientError("down")
        for name in ("a", "b"):
            with pytest.raises(TransientError):
                await adapter.add_memory(name, "c")

        report = await adapter.sync_now()

        assert report.requeued == 2
        assert adapter.get_statistics().queued_episodes == 2
        fake_invoker.fail = None
        fake_invoker.calls.clear()
        await adapter.sync_now()
        assert [p["name"] for p in fake_invoker.calls_for("add_memory")] == ["a", "b"]
        assert adapter.get_statistics().queued_episodes == 0
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_requeue_destroy_during_tick_delivers_everything(self, fake_invoker):
        adapter = await _started(fake_invoker, sync_mode="requeue", sync_interval=0.01)
        fake_invoker.fail = lambda tool, params: TransientError("down")
        for name in ("e0", "e1", "e2"):
            with pytest.raises(TransientError):
                await adapter.add_memory(name, "c")
        fake_invoker.fail = None
        fake_invoker.calls.clear()

        in_flight = asyncio.Event()

        async def hold_first_delivery(tool, params):
            if params["name"] == "e0" and not in_flight.is_set():
                in_flight.set()
                await asyncio.sleep(3600)

        fake_invoker.hook = hold_first_delivery
        adapter.scheduler.start()
        await asyncio.wait_for(in_flight.wait(), timeout=5)

        await adapter.destroy()

        delivered = [p["name"] for p in fake_invoker.calls_for("add_memory")]
        assert delivered == ["e0", "e0", "e1", "e2"]

    @pytest.mark.anyio
    async def test_background_sync_emits_completion(self, fake_invoker):
        adapter = await _started(fake_invoker, enable_auto_sync=True, sync_interval=0.01)
        completed = asyncio.Event()
        adapter.subscribe("sync:completed", lambda event: completed.set())
        await adapter.add_memory("n", "c")

        await asyncio.wait_for(completed.wait(), timeout=5)

        assert adapter.get_statistics().queued_episodes == 0
        await adapter.destroy()


class TestTemporalAndSharing:
    @pytest.mark.anyio
    async def test_unknown_edge_update_is_silent(self, fake_invoker, recorded_events):
        adapter = await _started(fake_invoker)
        seen = recorded_events(adapter.events)

        assert await adapter.update_fact_validity("unknown", False) is False
        assert seen == []
        assert fake_invoker.calls == []
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_tracking_disabled_leaves_edge_unchanged(self, recorded_events):
        adapter = await _started(None, enable_temporal_tracking=False)
        adapter.cache_edge(Edge(uuid="e1", source_node_uuid="a", target_node_uuid="b", relation_type="R"))
        seen = recorded_events(adapter.events)

        await adapter.update_fact_validity("e1", False)

        assert adapter.get_edge("e1").invalid is False
        assert seen == []

    @pytest.mark.anyio
    async def test_invalidated_fact_moves_to_history(self, recorded_events):
        adapter = await _started(None)
        adapter.cache_edge(Edge(uuid="e1", source_node_uuid="a", target_node_uuid="b", relation_type="R"))
        seen = recorded_events(adapter.events)
        until = datetime(2030, 1, 1, tzinfo=timezone.utc)

        assert await adapter.update_fact_validity("e1", False, until) is True

        assert [e.uuid for e in adapter.historical_facts()] == ["e1"]
        assert adapter.current_facts() == []
        assert seen == [("fact:updated", {"edge_uuid": "e1", "is_valid": False, "valid_until": until})]

    @pytest.mark.anyio
    async def test_naive_validity_window_keeps_queries_working(self):
        adapter = await _started(None)
        adapter.cache_edge(Edge(uuid="x", source_node_uuid="a", target_node_uuid="b", relation_type="R"))

        assert await adapter.update_fact_validity("x", True, datetime(2030, 1, 1)) is True

        assert [e.uuid for e in adapter.current_facts()] == ["x"]
        assert adapter.historical_facts() == []

    @pytest.mark.anyio
    async def test_share_emits_only_resolved_nodes(self, recorded_events):
        adapter = await _started(None)
        known = Node(uuid="known", name="Alice")
        adapter.cache_node(known)
        seen = recorded_events(adapter.events)

        shared = await adapter.share_with_hive_mind(["known", "unknown"], ["swarmA"])

        assert shared == [known]
        [(name, payload)] = seen
        assert name == "hivemind:share"
        assert payload["nodes"] == [known]
        assert payload["target_swarms"] == ["swarmA"]


class TestLifecycle:
    @pytest.mark.anyio
    async def test_clear_graph_connected(self, fake_invoker, recorded_events):
        adapter = await _started(fake_invoker)
        adapter.cache_node(Node(uuid="n1", name="A"))
        await adapter.add_memory("n", "c")
        seen = recorded_events(adapter.events)

        await adapter.clear_graph()

        assert fake_invoker.calls_for("clear_graph") == [{}]
        stats = adapter.get_statistics()
        assert stats.cache_size == 0 and stats.queued_episodes == 0
        assert _names(seen) == ["graph:cleared"]
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_clear_graph_failure_keeps_local_state(self, fake_invoker, recorded_events):
        adapter = await _started(fake_invoker)
        adapter.cache_node(Node(uuid="n1", name="A"))
        seen = recorded_events(adapter.events)
        fake_invoker.fail = lambda tool, params: BackendError("clear refused") if tool == "clear_graph" else None

        with pytest.raises(BackendError, match="clear refused"):
            await adapter.clear_graph()

        assert adapter.get_node("n1") is not None
        assert seen == []
        fake_invoker.fail = None
        await adapter.destroy()

    @pytest.mark.anyio
    async def test_clear_graph_fallback_is_local(self, fake_invoker):
        fake_invoker.is_available = False
        adapter = await _started(fake_invoker)
        adapter.cache_node(Node(uuid="n1", name="A"))

        await adapter.clear_graph()

        assert fake_invoker.calls == []
        assert adapter.get_statistics().total_nodes == 0

    @pytest.mark.anyio
    async def test_statistics(self):
        adapter = await _started(None)
        adapter.cache_node(Node(uuid="n1", name="A"))
        adapter.cache_node(Node(uuid="n2", name="B"))
        adapter.cache_edge(Edge(uuid="e1", source_node_uuid="n1", target_node_uuid="n2", relation_type="R"))
        await adapter.add_memory("n", "c")

        stats = adapter.get_statistics()

        assert stats.total_nodes == 2
        assert stats.total_edges == 1
        assert stats.cache_size == 3
        assert stats.queued_episodes == 1
        assert stats.is_connected is False

    @pytest.mark.anyio
    async def test_destroy_flushes_when_connected(self, fake_invoker, recorded_events):
        adapter = await _started(fake_invoker)
        episode_uuid = await adapter.add_memory("n", "c")
        adapter.cache_node(Node(uuid="n1", name="A"))
        seen = recorded_events(adapter.events)

        await adapter.destroy()

        assert [p["uuid"] for p in fake_invoker.calls_for("add_memory")] == [episode_uuid, episode_uuid]
        assert _names(seen) == ["sync:completed", "destroyed"]
        stats = adapter.get_statistics()
        assert stats.to_dict() == {
            "total_nodes": 0,
            "total_edges": 0,
            "queued_episodes": 0,
            "cache_size": 0,
            "is_connected": False,
        }

    @pytest.mark.anyio
    async def test_destroy_in_fallback_drops_buffer(self, caplog, recorded_events):
        adapter = await _started(None)
        await adapter.add_memory("n", "c")
        seen = recorded_events(adapter.events)

        with caplog.at_level(logging.WARNING, logger="graph_memory"):
            await adapter.destroy()

        assert _names(seen) == ["sync:completed", "destroyed"]
        assert any("Dropping 1 buffered episodes" in r.message for r in caplog.records)
        assert adapter.get_statistics().queued_episodes == 0

    @pytest.mark.anyio
    async def test_destroy_is_idempotent(self, recorded_events):
        adapter = await _started(None)
        seen = recorded_events(adapter.events)

        await adapter.destroy()
        await adapter.destroy()

        assert _names(seen) == ["sync:completed", "destroyed"]
        assert adapter.state is ConnectionState.DESTROYED

    @pytest.mark.anyio
    async def test_operations_after_destroy_raise(self):
        adapter = await _started(None)
        await adapter.destroy()

        with pytest.raises(AdapterDisposedError):
            await adapter.add_memory("n", "c")
        with pytest.raises(AdapterDisposedError):
            await adapter.search_nodes("q")
        with pytest.raises(AdapterDisposedError):
            await adapter.initialize()
        with pytest.raises(AdapterDisposedError):
            adapter.cache_node(Node(uuid="n", name="n"))
        with pytest.raises(AdapterDisposedError):
            adapter.subscribe("connected", lambda event: None)

        assert adapter.get_statistics().is_connected is False
        assert adapter.is_connected is False

    @pytest.mark.anyio
    async def test_destroy_before_initialize(self):
        adapter = GraphMemoryAdapter(_config())
        await adapter.destroy()
        assert adapter.state is ConnectionState.DESTROYED
