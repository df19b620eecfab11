"""graph_memory: resilient client adapter for a Graphiti knowledge graph."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("graph-memory-adapter")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .adapter import AdapterDisposedError, ConnectionState, GraphMemoryAdapter  # noqa: F401
from .backends import BackendError, ToolInvoker, TransientError  # noqa: F401
from .config_schema import AdapterConfig, GraphMemoryConfig  # noqa: F401
from .entries import MemoryEntry  # noqa: F401
from .events import AdapterEvent, Event, EventBus  # noqa: F401
from .models import Edge, Episode, EpisodeSource, Node, SearchResult  # noqa: F401
from .scheduler import SyncReport  # noqa: F401

__all__ = [
    "GraphMemoryAdapter",
    "ConnectionState",
    "AdapterDisposedError",
    "AdapterConfig",
    "GraphMemoryConfig",
    "ToolInvoker",
    "BackendError",
    "TransientError",
    "AdapterEvent",
    "Event",
    "EventBus",
    "Node",
    "Edge",
    "Episode",
    "EpisodeSource",
    "SearchResult",
    "MemoryEntry",
    "SyncReport",
    "__version__",
]
