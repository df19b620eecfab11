#!/usr/bin/env python3
"""graph-memory CLI - inspect and exercise the graph memory adapter."""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"graph-memory requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def _apply_logging_config(logging_config) -> None:
    """Seed logging env vars from config; explicit env vars still win."""
    os.environ.setdefault("GRAPH_MEMORY_LOG_LEVEL", logging_config.level)
    if logging_config.dir:
        os.environ.setdefault("GRAPH_MEMORY_LOG_DIR", str(Path(logging_config.dir).expanduser()))
    os.environ.setdefault("GRAPH_MEMORY_LOG_MAX_BYTES", str(logging_config.max_bytes))
    os.environ.setdefault("GRAPH_MEMORY_LOG_BACKUP_COUNT", str(logging_config.backup_count))
    if logging_config.disable_file:
        os.environ.setdefault("GRAPH_MEMORY_LOG_DISABLE_FILE", "1")


def _build_adapter(args):
    from .adapter import GraphMemoryAdapter
    from .backends import resolve_invoker
    from .config_loader import get_config

    project_path = Path(args.project_path) if getattr(args, "project_path", None) else None
    config = get_config(project_path)
    _apply_logging_config(config.logging)
    return GraphMemoryAdapter(config.adapter, resolve_invoker(args.invoker))


async def _status(args) -> dict:
    adapter = _build_adapter(args)
    async with adapter:
        return {
            "state": adapter.state.value,
            "statistics": adapter.get_statistics().to_dict(),
        }


async def _add(args) -> tuple[str, bool]:
    adapter = _build_adapter(args)
    async with adapter:
        episode_uuid = await adapter.add_memory(
            args.name,
            args.content,
            source=args.source,
            group_id=args.group,
        )
        return episode_uuid, adapter.is_connected


async def _search(args) -> dict:
    adapter = _build_adapter(args)
    group_ids = [args.group] if args.group else None
    async with adapter:
        if args.facts:
            result = await adapter.search_facts(args.query, group_ids=group_ids, max_facts=args.limit)
        else:
            result = await adapter.search_nodes(args.query, group_ids=group_ids, max_nodes=args.limit)
        return result.to_dict()


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="graph-memory",
        description="Resilient client for a Graphiti knowledge graph",
    )
    ap.add_argument(
        "--invoker",
        help="Tool invoker to use: null or mcp (default: $GRAPH_MEMORY_INVOKER or null)",
    )
    ap.add_argument("--project-path", help="Project directory for config discovery")

    sub = ap.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Probe the remote graph and show adapter statistics")
    p_status.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")

    p_add = sub.add_parser("add", help="Add one episode")
    p_add.add_argument("name", help="Episode name")
    p_add.add_argument("content", help="Episode body")
    p_add.add_argument("--group", help="Group id (default: configured default group)")
    p_add.add_argument("--source", choices=["text", "json", "message"], default="text",
                       help="How the body should be interpreted (default: text)")

    p_search = sub.add_parser("search", help="Search nodes (or facts)")
    p_search.add_argument("query")
    p_search.add_argument("--facts", action="store_true", help="Search facts instead of nodes")
    p_search.add_argument("--group", help="Restrict to one group id")
    p_search.add_argument("--limit", type=int, help="Maximum results")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")

    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    from .backends import BackendError

    if args.cmd == "status":
        try:
            info = asyncio.run(_status(args))
        except BackendError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        if args.as_json:
            print(json.dumps(info, indent=2))
        else:
            print(f"State: {info['state']}")
            for key, value in info["statistics"].items():
                print(f"  {key}: {value}")
        sys.exit(0)

    if args.cmd == "add":
        try:
            episode_uuid, delivered = asyncio.run(_add(args))
        except BackendError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        print(episode_uuid)
        if not delivered:
            print("Remote graph unavailable: episode was not delivered", file=sys.stderr)
        sys.exit(0)

    if args.cmd == "search":
        try:
            result = asyncio.run(_search(args))
        except BackendError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(result, indent=2))
        sys.exit(0)

    if args.cmd == "config":
        if args.config_cmd != "show":
            print("Usage: graph-memory config show [--json] [--sources]")
            sys.exit(0)

        from .config_loader import ConfigError, get_config_paths, load_config

        project_path = Path(args.project_path) if args.project_path else None

        if args.sources:
            paths = get_config_paths(project_path)
            print("Config sources (in priority order):")
            print()
            for name, path in paths.items():
                if path and path.exists():
                    print(f"  ✓ {name}: {path}")
                elif path:
                    print(f"  ✗ {name}: {path} (not found)")
                else:
                    print(f"  - {name}: (not applicable)")
            print()
            print("Environment variables override all file configs.")
            sys.exit(0)

        try:
            config = load_config(project_path)
        except ConfigError as e:
            print(f"❌ Config error: {e}", file=sys.stderr)
            sys.exit(1)

        if args.as_json:
            print(json.dumps(config.model_dump(), indent=2))
        else:
            import tomlkit

            doc = tomlkit.document()
            doc.add(tomlkit.comment(" graph-memory configuration (resolved)"))
            doc.add(tomlkit.nl())
            for section, values in config.model_dump().items():
                if isinstance(values, dict):
                    table = tomlkit.table()
                    for key, val in values.items():
                        table.add(key, val)
                    doc.add(section, table)
                else:
                    doc.add(section, values)
            print(tomlkit.dumps(doc))
        sys.exit(0)


if __name__ == "__main__":
    main()
