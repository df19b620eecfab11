"""Configuration schema for the graph memory adapter.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator


class AdapterConfig(BaseModel):
    """Behaviour of the adapter facade."""

    enabled: bool = Field(
        default=True,
        description="Use the remote graph at all (false = always run in fallback)",
    )
    default_group_id: str = Field(
        default="default",
        min_length=1,
        description="Group used when an operation does not name one",
    )

    # Advisory result sizes forwarded to remote searches
    max_nodes: int = Field(
        default=10000,
        ge=1,
        description="Default max_nodes for remote node searches",
    )
    max_facts: int = Field(
        default=50000,
        ge=1,
        description="Default max_facts for remote fact searches",
    )

    # Background sync
    enable_auto_sync: bool = Field(
        default=True,
        description="Drain buffered episodes periodically while connected",
    )
    sync_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between sync ticks",
    )
    sync_mode: Literal["best_effort", "requeue"] = Field(
        default="best_effort",
        description="best_effort drops episodes whose scheduled delivery fails; "
        "requeue puts them back at the front of their group",
    )

    enable_temporal_tracking: bool = Field(
        default=True,
        description="Allow fact validity updates on cached edges",
    )
    knowledge_retention_days: int = Field(
        default=90,
        ge=0,
        description="Advisory retention window for remote knowledge (not enforced locally)",
    )
    fallback_max_results: int = Field(
        default=10,
        ge=1,
        description="Result cap for cache searches while disconnected",
    )
    call_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Deadline in seconds for each remote tool call",
    )


class McpServerConfig(BaseModel):
    """Where the Graphiti MCP server lives."""

    url: str = Field(
        default="",
        description="Server URL (http/https) or path to a server script (empty = none)",
    )
    server_name: str = Field(
        default="graphiti",
        description="Display name for the server",
    )
    required_tools: List[str] = Field(
        default_factory=lambda: ["add_memory"],
        description="Tools that must be registered for the adapter to connect",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Warn if a script path is configured but missing."""
        v = v.strip()
        if v and "://" not in v:
            path = Path(v).expanduser()
            if not path.exists():
                warnings.warn(
                    f"MCP server script does not exist: {v}",
                    UserWarning,
                )
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.graph-memory/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log directory doesn't exist (will be created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class GraphMemoryConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    adapter: AdapterConfig = Field(default_factory=AdapterConfig)
    mcp: McpServerConfig = Field(default_factory=McpServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "GraphMemoryConfig":
        """Create config with all defaults."""
        return cls()
