"""Search and discovery tools."""

import os
import subprocess
import logging
from typing import Any

from backend import Backend
from errors import ToolError
from tools._common import ToolResult
from tools.gitignore import load_gitignore, is_ignored

logger = logging.getLogger(__name__)

MAX_SEARCH_LINES = 100


def search_repo(query: str, backend: Backend, **kw: Any) -> ToolResult:
    """Fixed-string search across the workspace (ripgrep, or grep fallback)."""
    if not (query or "").strip():
        return ToolResult(success=False, output="", error="query is required")
    try:
        result = backend.search(query)
    except subprocess.TimeoutExpired:
        return ToolResult(success=False, output="", error="Search timed out")
    except (RuntimeError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))

    if not result:
        return ToolResult(success=True, output="No results found.")

    lines = result.split("\n")
    if len(lines) > MAX_SEARCH_LINES:
        result = "\n".join(lines[:MAX_SEARCH_LINES]) + f"\n\n... [{len(lines) - MAX_SEARCH_LINES} more matches truncated]"
    return ToolResult(success=True, output=result)


def list_directory(path: str = ".", backend: Backend = None, **kw: Any) -> ToolResult:
    """List files and directories at a path, respecting .gitignore."""
    target = path or "."
    try:
        if not backend.file_exists(target):
            return ToolResult(success=False, output="", error=f"Directory not found: {target}")
        if not backend.is_dir(target):
            return ToolResult(success=False, output="", error=f"Not a directory: {target}")
        entries = backend.list_dir(target)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))

    gi = load_gitignore(backend.working_directory)
    lines = []
    for e in entries:
        name = e["name"]
        is_dir = e["type"] == "directory"
        rel = os.path.normpath(os.path.join(target, name))
        if is_ignored(rel, name, is_dir, gi):
            continue
        if is_dir:
            lines.append(f"  {name}/")
        else:
            lines.append(f"  {name} ({_format_size(e.get('size', 0))})")

    display = target.rstrip("/") or "."
    output = f"{display}/\n" + "\n".join(lines) if lines else f"{display}/ (empty)"
    return ToolResult(success=True, output=output)


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"
