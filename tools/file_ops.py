"""File operation tools: read, write, delete, move, patch, outline."""

import os
import re
import ast
import logging
from typing import Any, Dict, List, Optional, Tuple

from backend import Backend
from errors import ToolError
from tools._common import ToolResult

logger = logging.getLogger(__name__)


def read_file(path: str, backend: Backend, **kw: Any) -> ToolResult:
    """Read the contents of a file. Returns line-numbered content."""
    try:
        if not backend.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        if backend.is_dir(path):
            return ToolResult(success=False, output="", error=f"Is a directory: {path}")
        content = backend.read_file(path)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))

    lines = content.splitlines()
    numbered = [f"{i+1:6}|{line}" for i, line in enumerate(lines)]
    return ToolResult(success=True, output=f"[{len(lines)} lines total]\n" + "\n".join(numbered))


def write_file(path: str, content: str, backend: Backend, **kw: Any) -> ToolResult:
    """Create a new file or completely overwrite an existing file."""
    if not isinstance(content, str):
        return ToolResult(success=False, output="", error="content must be a string")
    try:
        backend.write_file(path, content)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))
    return ToolResult(success=True, output=f"Success: Wrote to {path}")


def delete_file(path: str, backend: Backend, **kw: Any) -> ToolResult:
    try:
        if not backend.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        if backend.is_dir(path):
            return ToolResult(success=False, output="", error=f"Refusing to delete directory: {path}")
        backend.remove_file(path)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))
    return ToolResult(success=True, output=f"Success: Deleted {path}")


def move_file(source: str, destination: str, backend: Backend, **kw: Any) -> ToolResult:
    try:
        if not backend.file_exists(source):
            return ToolResult(success=False, output="", error=f"File not found: {source}")
        # Resolve the destination before anything moves
        backend.resolve_path(destination)
        backend.move_file(source, destination)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))
    return ToolResult(success=True, output=f"Success: Moved {source} to {destination}")


def apply_patches(content: str, patches: List[Dict[str, str]], path: str = "file") -> str:
    """Apply search/replace blocks to an in-memory copy, in order.

    Each search block must match exactly once in the text as it stands after
    the previous blocks were applied. Raises ToolError on the first block that
    is missing or ambiguous, so callers never write a partial result.
    """
    if not patches:
        raise ToolError("patches must contain at least one {search, replace} block")
    updated = content
    for i, patch in enumerate(patches, start=1):
        if not isinstance(patch, dict):
            raise ToolError(f"Patch {i}: expected an object with search and replace")
        search = patch.get("search")
        replace = patch.get("replace", "")
        if not isinstance(search, str) or search == "":
            raise ToolError(f"Patch {i}: search must be a non-empty string")
        if not isinstance(replace, str):
            raise ToolError(f"Patch {i}: replace must be a string")
        count = updated.count(search)
        if count == 0:
            raise ToolError(
                f"Patch {i}: search block not found in {path}. Ensure it matches exactly, "
                "including whitespace and indentation. Re-read the file to see current content.")
        if count > 1:
            raise ToolError(
                f"Patch {i}: found {count} occurrences of the search block in {path}. "
                "Add more surrounding context to make it unique.")
        updated = updated.replace(search, replace, 1)
    return updated


def patch_file(path: str, patches: List[Dict[str, str]], backend: Backend, **kw: Any) -> ToolResult:
    """Apply exact-match search/replace blocks to a file. All or nothing."""
    if not isinstance(patches, list):
        return ToolResult(success=False, output="", error="patches must be a list of {search, replace} objects")
    try:
        if not backend.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        content = backend.read_file(path)
        updated = apply_patches(content, patches, path)
        backend.write_file(path, updated)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))
    n = len(patches)
    return ToolResult(success=True, output=f"Success: Applied {n} patch{'es' if n != 1 else ''} to {path}")


# ── Outline ──────────────────────────────────────────────────

_REGEX_OUTLINE_LANGS = {
    ".js": "js", ".jsx": "js", ".mjs": "js", ".cjs": "js",
    ".ts": "js", ".tsx": "js",
    ".go": "go", ".rs": "rust", ".java": "java", ".kt": "java",
}

_OUTLINE_PATTERNS: Dict[str, List[Tuple[str, str]]] = {
    "js": [
        ("class", r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)"),
        ("function", r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*(\w+)\s*\("),
        ("function", r"^\s*(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?(?:\([^)]*\)|\w+)\s*=>"),
        ("interface", r"^\s*(?:export\s+)?interface\s+(\w+)"),
        ("type", r"^\s*(?:export\s+)?type\s+(\w+)\s*="),
        ("enum", r"^\s*(?:export\s+)?(?:const\s+)?enum\s+(\w+)"),
    ],
    "go": [
        ("func", r"^func\s+(?:\([^)]*\)\s*)?(\w+)\s*\("),
        ("type", r"^type\s+(\w+)\s+"),
    ],
    "rust": [
        ("fn", r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?fn\s+(\w+)"),
        ("struct", r"^\s*(?:pub(?:\([^)]*\))?\s+)?struct\s+(\w+)"),
        ("enum", r"^\s*(?:pub(?:\([^)]*\))?\s+)?enum\s+(\w+)"),
        ("trait", r"^\s*(?:pub(?:\([^)]*\))?\s+)?trait\s+(\w+)"),
        ("impl", r"^\s*impl(?:<[^>]*>)?\s+([\w:<>, ]+?)\s*\{"),
    ],
    "java": [
        ("class", r"^\s*(?:public\s+|private\s+|protected\s+)?(?:abstract\s+|final\s+|data\s+|open\s+)*(?:class|interface|enum|object)\s+(\w+)"),
        ("method", r"^\s+(?:public|private|protected|internal)\s+(?:static\s+)?(?:[\w<>\[\], ]+\s+)?(\w+)\s*\([^;]*$"),
        ("fun", r"^\s*(?:(?:public|private|internal|override|suspend)\s+)*fun\s+(?:<[^>]*>\s*)?(\w+)\s*\("),
    ],
}


def _python_outline(content: str) -> List[str]:
    tree = ast.parse(content)
    lines: List[str] = []

    def visit(nodes, depth: int) -> None:
        for node in nodes:
            if isinstance(node, ast.ClassDef):
                kind = "class"
            elif isinstance(node, ast.AsyncFunctionDef):
                kind = "async def"
            elif isinstance(node, ast.FunctionDef):
                kind = "def"
            else:
                continue
            start = node.lineno
            end = getattr(node, "end_lineno", None) or start
            lines.append(f"{'  ' * depth}{kind} {node.name}  (lines {start}-{end})")
            if isinstance(node, ast.ClassDef):
                visit(node.body, depth + 1)

    visit(tree.body, 0)
    return lines


def _regex_outline(content: str, lang: str) -> List[str]:
    patterns = [(kind, re.compile(p)) for kind, p in _OUTLINE_PATTERNS[lang]]
    out: List[str] = []
    for i, line in enumerate(content.splitlines()):
        for kind, pat in patterns:
            m = pat.search(line)
            if m:
                indent = (len(line) - len(line.lstrip(" \t"))) // 2
                out.append(f"{'  ' * min(indent, 4)}{kind} {m.group(1).strip()}  (line {i + 1})")
                break
    return out


def get_file_outline(path: str, backend: Backend, **kw: Any) -> ToolResult:
    """List the classes and functions of a source file with their line numbers."""
    ext = os.path.splitext(path)[1].lower()
    if ext != ".py" and ext not in _REGEX_OUTLINE_LANGS:
        return ToolResult(success=False, output="", error=f"Unsupported language: {ext or path}")
    try:
        if not backend.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        content = backend.read_file(path)
    except (ToolError, OSError) as e:
        return ToolResult(success=False, output="", error=str(e))

    if ext == ".py":
        try:
            outline = _python_outline(content)
        except SyntaxError as e:
            return ToolResult(success=False, output="", error=f"Could not parse {path}: {e}")
    else:
        outline = _regex_outline(content, _REGEX_OUTLINE_LANGS[ext])

    if not outline:
        return ToolResult(success=True, output=f"{path}: no top-level definitions found.")
    return ToolResult(success=True, output=f"{path}\n" + "\n".join(outline))
