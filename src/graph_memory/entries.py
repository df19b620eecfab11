"""Host memory entries and their conversion into episode bodies.

A memory entry is the host application's own record (a keyed value in a
namespace). The adapter ingests one as a JSON episode in the group named
after the entry's namespace.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class MemoryEntry:
    """A keyed value stored by the host application."""

    key: str
    value: Any
    namespace: str = "default"
    type: str = "knowledge"
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    references: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        return cls(
            key=data["key"],
            value=data.get("value"),
            namespace=data.get("namespace") or "default",
            type=data.get("type") or "knowledge",
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
            references=list(data.get("references") or []),
            dependencies=list(data.get("dependencies") or []),
        )


def format_memory_content(entry: MemoryEntry) -> str:
    """Render an entry as the pretty-printed JSON episode body.

    The namespace is omitted; it becomes the episode's group instead.
    """
    content = {
        "key": entry.key,
        "value": entry.value,
        "type": entry.type,
        "tags": entry.tags,
        "metadata": entry.metadata,
        "references": entry.references,
        "dependencies": entry.dependencies,
    }
    return json.dumps(content, indent=2, default=str)


def source_description_for(entry: MemoryEntry) -> str:
    return f"Memory entry from {entry.namespace}"
