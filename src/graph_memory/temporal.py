"""Temporal validity of cached facts.

Validity changes are local: they adjust the cache's view of an edge and
notify subscribers, but never reach the remote service.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .cache import EntityCache
from .events import AdapterEvent, EventBus
from .models import Edge, _parse_timestamp


class TemporalValidityTracker:
    """Marks cached edges current or historical."""

    def __init__(self, cache: EntityCache, events: EventBus, *, enabled: bool = True) -> None:
        self._cache = cache
        self._events = events
        self.enabled = enabled

    def update(
        self,
        edge_uuid: str,
        is_valid: bool,
        valid_until: Optional[datetime] = None,
    ) -> bool:
        """Set an edge's validity window.

        A naive ``valid_until`` is taken as UTC. No-op when tracking is
        disabled or the edge is not cached.

        Returns:
            True if an edge was updated (and ``fact:updated`` emitted)
        """
        if not self.enabled:
            return False

        edge = self._cache.get_edge(edge_uuid)
        if edge is None:
            return False

        valid_until = _parse_timestamp(valid_until)
        edge.invalid = not is_valid
        edge.valid_until = valid_until
        self._cache.put_edge(edge)

        self._events.publish(
            AdapterEvent.FACT_UPDATED,
            {"edge_uuid": edge_uuid, "is_valid": is_valid, "valid_until": valid_until},
        )
        return True

    def current(self, group_id: Optional[str] = None, at: Optional[datetime] = None) -> list[Edge]:
        """Cached edges that hold at ``at`` (default: now)."""
        return [
            edge for edge in self._scoped(group_id) if edge.is_valid_at(at)
        ]

    def historical(self, group_id: Optional[str] = None, at: Optional[datetime] = None) -> list[Edge]:
        """Cached edges invalidated or expired as of ``at``."""
        return [
            edge for edge in self._scoped(group_id) if not edge.is_valid_at(at)
        ]

    def _scoped(self, group_id: Optional[str]) -> list[Edge]:
        edges = self._cache.iter_edges()
        if group_id is None:
            return list(edges)
        return [edge for edge in edges if edge.group_id == group_id]
