"""Data model for cached graph entities and pending episodes.

Nodes and edges mirror what the remote knowledge graph returns; episodes are
the unit of work the adapter buffers before delivery. All timestamps are
timezone-aware UTC datetimes.

Design principles:
- uuid is the only identity key for nodes, edges and episodes
- Episodes are immutable once created (frozen dataclass)
- Edges are never deleted for being stale, only marked historical
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional


def _utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    """Generate a UUID for node/edge/episode identification."""
    return str(uuid.uuid4())


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce an ISO 8601 string or datetime into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class EpisodeSource(str, Enum):
    """How the remote service should interpret an episode body."""

    TEXT = "text"
    JSON = "json"
    MESSAGE = "message"


@dataclass
class Node:
    """Graph entity as last seen by the adapter.

    Attributes:
        uuid: Unique, immutable identifier
        name: Entity name
        entity_type: Entity label (e.g., "Person", "Project")
        observations: Ordered statements recorded about the entity
        group_id: Namespace partition the node belongs to
        created_at: When the entity was first created
        updated_at: When the entity last changed
        summary: Optional condensed description
    """

    uuid: str
    name: str
    entity_type: str = "Entity"
    observations: list[str] = field(default_factory=list)
    group_id: str = "default"
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    summary: Optional[str] = None

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match against name and observations."""
        needle = query.lower()
        if needle in self.name.lower():
            return True
        return any(needle in obs.lower() for obs in self.observations)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Node":
        """Build a node from a remote search payload.

        Accepts both the Graphiti shape (``labels``, ``created_at``) and the
        adapter's own field names.
        """
        labels = payload.get("labels") or []
        entity_type = payload.get("entity_type") or (labels[0] if labels else "Entity")
        created_at = _parse_timestamp(payload.get("created_at")) or _utc_now()
        return cls(
            uuid=str(payload["uuid"]),
            name=str(payload.get("name") or ""),
            entity_type=str(entity_type),
            observations=[str(obs) for obs in payload.get("observations") or []],
            group_id=str(payload.get("group_id") or "default"),
            created_at=created_at,
            updated_at=_parse_timestamp(payload.get("updated_at")) or created_at,
            summary=payload.get("summary"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "entity_type": self.entity_type,
            "observations": list(self.observations),
            "group_id": self.group_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "summary": self.summary,
        }


@dataclass
class Edge:
    """Directed, possibly time-bounded fact between two nodes.

    An edge with ``invalid=True`` or a ``valid_until`` in the past is
    historical, not deleted.
    """

    uuid: str
    source_node_uuid: str
    target_node_uuid: str
    relation_type: str
    group_id: str = "default"
    created_at: datetime = field(default_factory=_utc_now)
    invalid: bool = False
    valid_until: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.created_at = _parse_timestamp(self.created_at) or _utc_now()
        self.valid_until = _parse_timestamp(self.valid_until)

    def is_valid_at(self, when: Optional[datetime] = None) -> bool:
        """Return True if the fact holds at ``when`` (default: now)."""
        if self.invalid:
            return False
        valid_until = _parse_timestamp(self.valid_until)
        if valid_until is None:
            return True
        moment = _parse_timestamp(when) or _utc_now()
        return valid_until > moment

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "source_node_uuid": self.source_node_uuid,
            "target_node_uuid": self.target_node_uuid,
            "relation_type": self.relation_type,
            "group_id": self.group_id,
            "created_at": self.created_at.isoformat(),
            "invalid": self.invalid,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }


@dataclass(frozen=True)
class Episode:
    """One pending unit of knowledge awaiting ingestion by the remote graph."""

    uuid: str
    name: str
    content: str
    source: EpisodeSource = EpisodeSource.TEXT
    source_description: Optional[str] = None
    group_id: str = "default"
    created_at: datetime = field(default_factory=_utc_now)

    def to_tool_params(self) -> dict[str, Any]:
        """Parameters for the remote ``add_memory`` tool."""
        return {
            "name": self.name,
            "episode_body": self.content,
            "source": self.source.value,
            "source_description": self.source_description,
            "group_id": self.group_id,
            "uuid": self.uuid,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "content": self.content,
            "source": self.source.value,
            "source_description": self.source_description,
            "group_id": self.group_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SearchResult:
    """Transient result of a node or fact search.

    ``relevance_score`` is in [0, 1]. Fallback searches only ever report 0.0
    or 0.5; remote searches pass through the service's score.
    """

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    facts: list[str] = field(default_factory=list)
    relevance_score: float = 0.0

    @classmethod
    def empty(cls) -> "SearchResult":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "facts": list(self.facts),
            "relevance_score": self.relevance_score,
        }


@dataclass(frozen=True)
class AdapterStatistics:
    """Point-in-time counters reported by ``get_statistics()``."""

    total_nodes: int
    total_edges: int
    queued_episodes: int
    cache_size: int
    is_connected: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "total_edges": self.total_edges,
            "queued_episodes": self.queued_episodes,
            "cache_size": self.cache_size,
            "is_connected": self.is_connected,
        }
