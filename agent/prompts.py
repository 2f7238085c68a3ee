"""
System prompt composition for the relay agent.
The preamble is rebuilt for every request from the workspace's current state.
"""

import os
from typing import List, Optional

from tools import TOOL_DEFINITIONS
from tools.gitignore import _ALWAYS_SKIP_DIRS

# Tool names for the system prompt so the agent always knows what it can call
AVAILABLE_TOOL_NAMES = ", ".join(t["name"] for t in TOOL_DEFINITIONS)

MANIFEST_FILES = ("pyproject.toml", "package.json")
MAX_MANIFEST_CHARS = 4000
MAX_LISTING_ENTRIES = 300

_MOD_IDENTITY = """You are Bedrock Relay, a senior software engineer working in a real repository on the user's behalf. The user talks to you through a chat app: they cannot see your tool calls, only the text you write and the short progress notices. Keep replies concise and written for a phone screen."""

_MOD_RULES = """<rules>
1. FOCUS: Work only on the latest user request.
2. CONTEXT: Earlier messages contain previous tasks. If a task is already done (its tool results say "Success"), do not repeat it.
3. EFFICIENCY: Finish the task in {max_turns} actions or fewer.
4. IDENTITY: Do not search the repository for your own name or model version unless asked.
5. NO REPETITION: Do not repeat a tool call that already succeeded with the same arguments unless you need a different outcome.
</rules>"""

_MOD_TOOL_POLICY = """<tool_policy>
- Read a file before editing it. Use patch_file for targeted edits and write_file for new files or full rewrites.
- Paths are relative to the repository root. Paths outside it, secrets (.env, keys, credentials), .git internals, dependency folders and lockfiles are off limits.
- Destructive shell commands are refused. If a tool returns an error, read it and correct your call.
- Your changes are committed and pushed automatically when you finish. Do not commit or push yourself unless the user asks.
- End with a short summary of what you changed.
</tool_policy>"""


def shallow_listing(root: str, max_depth: int = 2) -> str:
    """Depth-limited file listing, hidden entries and dependency dirs skipped."""
    entries: List[str] = []
    root = os.path.abspath(root)
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        depth = 0 if rel_dir == "." else rel_dir.count(os.sep) + 1
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in _ALWAYS_SKIP_DIRS
        )
        for d in dirnames:
            entries.append(os.path.join(".", rel_dir, d + "/") if rel_dir != "." else f"./{d}/")
        for f in sorted(filenames):
            if not f.startswith("."):
                entries.append(os.path.join(".", rel_dir, f) if rel_dir != "." else f"./{f}")
        if depth + 1 >= max_depth:
            dirnames[:] = []
        if len(entries) > MAX_LISTING_ENTRIES:
            break
    entries = sorted(entries)
    if len(entries) > MAX_LISTING_ENTRIES:
        extra = len(entries) - MAX_LISTING_ENTRIES
        entries = entries[:MAX_LISTING_ENTRIES] + [f"... ({extra} more)"]
    return "\n".join(entries) or "(empty)"


def read_manifest(root: str) -> Optional[str]:
    """Return 'name:\\ncontent' for the first project manifest found."""
    for name in MANIFEST_FILES:
        path = os.path.join(root, name)
        if os.path.isfile(path):
            try:
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    content = f.read(MAX_MANIFEST_CHARS + 1)
            except OSError:
                continue
            if len(content) > MAX_MANIFEST_CHARS:
                content = content[:MAX_MANIFEST_CHARS] + "\n... (truncated)"
            return f"{name}:\n{content}"
    return None


def build_preamble(workspace_root: str, max_turns: int = 10) -> str:
    """Assemble the system prompt for one request."""
    parts = [
        _MOD_IDENTITY,
        _MOD_RULES.format(max_turns=max_turns),
        _MOD_TOOL_POLICY,
        f"<working_directory>{workspace_root}</working_directory>",
        f"<structure>\n{shallow_listing(workspace_root)}\n</structure>",
    ]
    manifest = read_manifest(workspace_root)
    parts.append(f"<manifest>\n{manifest or 'Not found'}\n</manifest>")
    parts.append(f"<tools_available>{AVAILABLE_TOOL_NAMES}</tools_available>")
    return "\n\n".join(parts)
