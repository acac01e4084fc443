#!/usr/bin/env python3
"""Launch the ArrangementMirror MCP server from any working directory."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Sequence

EXPECTED_TOOLS = (
    "get_binding",
    "get_arrangement_projection",
    "get_clip_notes",
    "rebuild_arrangement",
    "rebind_track",
    "replace_clip_notes",
)


def _repo_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _bootstrap_repo_path(repo_root: Path) -> None:
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


def _smoke_check() -> int:
    from MCP_Server import server

    async def _list_tool_names() -> list:
        tools = await server.mcp.list_tools()
        return [tool.name for tool in tools]

    try:
        tool_names = asyncio.run(_list_tool_names())
    except Exception as exc:
        print(f"SMOKE_CHECK_FAILED: {exc}", file=sys.stderr)
        return 1

    missing = [name for name in EXPECTED_TOOLS if name not in tool_names]
    if missing:
        print(f"SMOKE_CHECK_FAILED: missing tools {', '.join(missing)}", file=sys.stderr)
        return 1

    print(f"SMOKE_CHECK_OK: {len(tool_names)} tools registered")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the ArrangementMirror MCP server.")
    parser.add_argument(
        "--smoke",
        action="store_true",
        help="Validate imports and tool registration without starting the server loop.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Remote Script port (overrides ARRANGEMENT_MIRROR_PORT and the config file).",
    )
    args = parser.parse_args(argv)

    _bootstrap_repo_path(_repo_root())
    if args.port is not None:
        os.environ["ARRANGEMENT_MIRROR_PORT"] = str(args.port)

    if args.smoke:
        return _smoke_check()

    from MCP_Server.server import main as server_main

    server_main()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
