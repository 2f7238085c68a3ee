""".gitignore-aware filtering for directory listings."""

import os
import logging
from typing import Dict, Optional, Set

import pathspec

logger = logging.getLogger(__name__)

_ALWAYS_SKIP_DIRS: Set[str] = {
    ".git", "node_modules", "__pycache__", ".venv", "venv",
    ".mypy_cache", ".pytest_cache", ".tox", ".eggs",
    "dist", "build", ".next", ".cache", "htmlcov",
}

_ALWAYS_SKIP_EXTENSIONS: Set[str] = {".pyc", ".pyo", ".so", ".o", ".class"}

# Keyed by workspace root; the value is the .gitignore mtime and the parsed spec
_gitignore_cache: Dict[str, tuple] = {}


def load_gitignore(working_directory: str) -> Optional[pathspec.PathSpec]:
    """Load .gitignore patterns for a workspace root, re-parsing when the file changes.

    Returns a PathSpec matcher or None if no .gitignore exists.
    """
    gitignore_path = os.path.join(working_directory, ".gitignore")
    try:
        mtime = os.path.getmtime(gitignore_path)
    except OSError:
        _gitignore_cache.pop(working_directory, None)
        return None

    cached = _gitignore_cache.get(working_directory)
    if cached and cached[0] == mtime:
        return cached[1]

    spec = None
    try:
        with open(gitignore_path, "r", encoding="utf-8", errors="replace") as f:
            spec = pathspec.PathSpec.from_lines("gitwildmatch", f)
    except (OSError, ValueError) as e:
        logger.debug(f"Failed to parse .gitignore: {e}")

    _gitignore_cache[working_directory] = (mtime, spec)
    return spec


def is_ignored(rel_path: str, name: str, is_dir: bool,
               gitignore_spec: Optional[pathspec.PathSpec]) -> bool:
    """Check if a path should be hidden based on .gitignore + hardcoded skips."""
    if is_dir and name in _ALWAYS_SKIP_DIRS:
        return True
    if not is_dir:
        _, ext = os.path.splitext(name)
        if ext in _ALWAYS_SKIP_EXTENSIONS:
            return True
    if gitignore_spec:
        check_path = rel_path + "/" if is_dir else rel_path
        if gitignore_spec.match_file(check_path):
            return True
    return False
