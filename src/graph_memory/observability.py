"""Logging for the graph memory adapter.

Every adapter component logs through the ``graph_memory`` logger. Human
messages go through ``log_info``/``log_warning``/... with optional key=value
context appended as compact JSON; machine-readable timings of remote calls go
through ``log_action`` and ``timeit`` as one JSON object per line.

Handlers are installed on first use from ``GRAPH_MEMORY_LOG_*`` environment
variables: a size-rotated session file under ``~/.graph-memory/logs`` plus
stderr for warnings and above.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional


LOGGER_NAME = "graph_memory"

ENV_LOG_DIR = "GRAPH_MEMORY_LOG_DIR"
ENV_LOG_LEVEL = "GRAPH_MEMORY_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "GRAPH_MEMORY_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "GRAPH_MEMORY_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "GRAPH_MEMORY_LOG_DISABLE_FILE"

DEFAULT_LOG_DIR = Path.home() / ".graph-memory" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_LINE_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_logger_initialized = False
_session_start = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")


@dataclass(frozen=True)
class LogSettings:
    """Snapshot of the logging environment at handler setup time."""

    level: int
    file_path: Optional[Path]
    max_bytes: int
    backup_count: int

    @classmethod
    def from_env(cls) -> "LogSettings":
        return cls(
            level=_get_log_level(),
            file_path=_get_log_file_path(),
            max_bytes=int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES)),
            backup_count=int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT)),
        )


def _get_log_level() -> int:
    level = logging.getLevelName(os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def _get_log_file_path() -> Optional[Path]:
    """Session log file, or None when file logging is switched off.

    The directory is created on demand.
    """
    if os.getenv(ENV_LOG_DISABLE_FILE, "").strip().lower() in _TRUTHY:
        return None

    log_dir = Path(os.getenv(ENV_LOG_DIR) or DEFAULT_LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"graph_memory_{_session_start}.log"


def _install_handlers(logger: logging.Logger, settings: LogSettings) -> None:
    formatter = logging.Formatter(_LINE_FORMAT, datefmt=_DATE_FORMAT)
    logger.handlers.clear()
    logger.setLevel(settings.level)

    if settings.file_path is not None:
        file_handler = RotatingFileHandler(
            str(settings.file_path),
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
        )
        file_handler.setLevel(settings.level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # stderr only carries warnings, even at DEBUG
    console = logging.StreamHandler()
    console.setLevel(max(settings.level, logging.WARNING))
    console.setFormatter(formatter)
    logger.addHandler(console)


def get_logger() -> logging.Logger:
    """The adapter logger, with handlers installed on first call."""
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)
    if not _logger_initialized:
        _logger_initialized = True
        _install_handlers(logger, LogSettings.from_env())
    return logger


def _compact(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True, default=str)


def _emit(level: int, message: str, fields: Dict[str, Any]) -> None:
    logger = get_logger()
    if not logger.isEnabledFor(level):
        return
    logger.log(level, f"{message} {_compact(fields)}" if fields else message)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    tool_name: Optional[str] = None,
    **fields: Any,
) -> None:
    """Write one JSON line describing a finished action.

    Args:
        action: What ran, e.g. ``"remote_call"`` or ``"probe"``
        outcome: ``"ok"``, ``"error"`` or ``"timeout"``
        duration_ms: Wall time of the action
        tool_name: Graphiti tool involved, if any
        **fields: Extra context merged into the record
    """
    record: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "outcome": outcome,
        **fields,
    }
    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 2)
    if tool_name is not None:
        record["tool"] = tool_name
    get_logger().info(_compact(record))


def log_debug(message: str, **fields: Any) -> None:
    _emit(logging.DEBUG, message, fields)


def log_info(message: str, **fields: Any) -> None:
    _emit(logging.INFO, message, fields)


def log_warning(message: str, **fields: Any) -> None:
    _emit(logging.WARNING, message, fields)


def log_error(message: str, **fields: Any) -> None:
    _emit(logging.ERROR, message, fields)


@contextmanager
def timeit(
    action: str,
    *,
    tool_name: Optional[str] = None,
    **fields: Any,
) -> Iterator[Dict[str, Any]]:
    """Time the enclosed block and ``log_action`` it on exit.

    The yielded dict is merged into the record. On an exception the outcome
    is ``"error"`` unless the block stored its own ``"outcome"`` there; the
    exception always propagates.
    """
    info: Dict[str, Any] = {}
    outcome = "ok"
    started = time.perf_counter()
    try:
        yield info
    except Exception:
        outcome = info.pop("outcome", "error")
        raise
    except BaseException:
        outcome = "cancelled"
        raise
    finally:
        info.pop("outcome", None)
        log_action(
            action,
            outcome=outcome,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            tool_name=tool_name,
            **{**fields, **info},
        )
