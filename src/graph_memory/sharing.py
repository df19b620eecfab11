"""Broadcast of cached nodes to a collective-intelligence (hive-mind) layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from .cache import EntityCache
from .events import AdapterEvent, EventBus
from .models import Node
from .observability import log_info


class HiveMindNotifier:
    """Announces cached nodes to swarms through the event bus.

    Purely local: no remote call is made. Consumers of ``hivemind:share``
    are responsible for delivering the nodes to the target swarms.
    """

    def __init__(self, cache: EntityCache, events: EventBus) -> None:
        self._cache = cache
        self._events = events

    def share(self, node_uuids: Sequence[str], target_swarms: Sequence[str]) -> list[Node]:
        """Resolve uuids against the cache and announce the hits.

        Unknown uuids are dropped silently. Nothing is emitted when no uuid
        resolves.

        Returns:
            The nodes that were shared
        """
        nodes = [
            node
            for node in (self._cache.get_node(node_uuid) for node_uuid in node_uuids)
            if node is not None
        ]
        if nodes:
            self._events.publish(
                AdapterEvent.HIVEMIND_SHARE,
                {
                    "nodes": nodes,
                    "target_swarms": list(target_swarms),
                    "timestamp": datetime.now(timezone.utc),
                },
            )
            log_info(f"Shared {len(nodes)} nodes with hive-mind", swarms=list(target_swarms))
        return nodes
