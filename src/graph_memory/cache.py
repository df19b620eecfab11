"""In-memory entity cache and the degraded-mode search that runs over it.

The cache holds the last-known representation of each node and edge the
adapter has been handed. It is only populated through explicit paths; writes
and remote search results never land here on their own.
"""

from __future__ import annotations

from typing import Iterator, Optional

from .models import Edge, Node, SearchResult


# Default cap on fallback search results
DEFAULT_FALLBACK_LIMIT = 10

# Confidence reported by the fallback search when anything matched
FALLBACK_RELEVANCE = 0.5


class EntityCache:
    """uuid -> Node and uuid -> Edge maps, last write wins."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}

    def put_node(self, node: Node) -> None:
        self._nodes[node.uuid] = node

    def put_edge(self, edge: Edge) -> None:
        self._edges[edge.uuid] = edge

    def get_node(self, node_uuid: str) -> Optional[Node]:
        return self._nodes.get(node_uuid)

    def get_edge(self, edge_uuid: str) -> Optional[Edge]:
        return self._edges.get(edge_uuid)

    def iter_nodes(self) -> Iterator[Node]:
        """Nodes in insertion order."""
        return iter(list(self._nodes.values()))

    def iter_edges(self) -> Iterator[Edge]:
        return iter(list(self._edges.values()))

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def __len__(self) -> int:
        return len(self._nodes) + len(self._edges)

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()

    def stats(self) -> dict:
        """Return cache statistics."""
        return {
            "nodes": self.node_count,
            "edges": self.edge_count,
            "size": len(self),
        }


class FallbackSearchEngine:
    """Substring search over cached nodes, used when the remote is unavailable.

    Matching is case-insensitive against a node's name and each of its
    observations. Results keep cache insertion order; there is no ranking.
    """

    def __init__(self, cache: EntityCache, default_limit: int = DEFAULT_FALLBACK_LIMIT) -> None:
        self._cache = cache
        self._default_limit = default_limit

    def search(self, query: str, max_results: Optional[int] = None) -> SearchResult:
        """Return matching nodes truncated to ``max_results``.

        Args:
            query: Text to look for
            max_results: Cap on returned nodes (default: configured limit)

        Returns:
            SearchResult with relevance 0.5 if anything matched, else 0.0
        """
        limit = max_results or self._default_limit
        matches = [node for node in self._cache.iter_nodes() if node.matches(query)]
        return SearchResult(
            nodes=matches[:limit],
            relevance_score=FALLBACK_RELEVANCE if matches else 0.0,
        )
