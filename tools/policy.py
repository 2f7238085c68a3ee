"""
Safety policy shared by every tool call.

Three checks, all lifted by the process-wide unsafe mode:
- path sandbox: paths resolve inside the workspace root
- protected files: secrets, VCS internals, dependency dirs, lockfiles, credentials
- shell denylist: destructive or exfiltration-prone commands

This is a policy layer, not a security boundary against a hostile model.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern

from errors import ToolError

logger = logging.getLogger(__name__)

# Basenames that are never touched
PROTECTED_BASENAMES = frozenset({
    ".env", ".env.local", ".env.production", ".env.development",
    ".npmrc", ".pypirc", ".netrc", ".git-credentials",
    "id_rsa", "id_dsa", "id_ecdsa", "id_ed25519",
    "credentials", "credentials.json", "service-account.json",
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock",
    "Pipfile.lock", "uv.lock", "Cargo.lock", "composer.lock",
    ".relay.lock",
})

# Path segments that mark a protected subtree
PROTECTED_SEGMENTS = frozenset({
    ".git", "node_modules", ".venv", "venv", ".ssh", ".aws", ".gnupg",
})

# Substrings of a basename that mark secrets
PROTECTED_FRAGMENTS = ("secret", ".pem", ".key", "firebase-adminsdk")

SHELL_DENYLIST: List[Pattern[str]] = [
    re.compile(r"\brm\s+(-[-\w]*\s+)*-[a-zA-Z]*[rR][a-zA-Z]*\s+(-[-\w]*\s+)*([^\s;&|]+\s+)*(/|~|\$HOME)"),
    re.compile(r"\bmkfs(\.\w+)?\b"),
    re.compile(r"\bdd\s+if="),
    re.compile(r">\s*/dev/(sd|hd|nvme|xvd|disk)"),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
    re.compile(r"\b(shutdown|reboot|halt|poweroff)\b"),
    re.compile(r"\binit\s+[06]\b"),
    re.compile(r"\bmv\s+([^\s;&|]+\s+)+(/|~|\$HOME)"),
    re.compile(r"\bchmod\s+(-[a-zA-Z]+\s+)*([0-7]?[0-7]{2}[2367]|[ugo]*[ao][ugoa]*[+=][rwxXst]*w[rwxXst]*)(\s|,|$)"),
    re.compile(r"^\s*(env|printenv|set|export\s+-p)\s*($|[|>;&])"),
    re.compile(r"[;&|]\s*(env|printenv)\s*($|[|>;&])"),
    re.compile(r"/proc/(self|\d+)/environ"),
    re.compile(r"\b(cat|less|more|head|tail|base64|xxd)\s+[^|;&]*\.env\b"),
    re.compile(r"\b(curl|wget)\b[^|;&]*\|\s*(ba|z)?sh\b"),
    re.compile(r"\b(curl|wget)\b.*(--data|-d|--upload-file|-T|-F)\s*@"),
    re.compile(r"\b(nc|ncat|netcat)\b.*-e\s"),
]


@dataclass
class SafetyPolicy:
    """Sandbox, denylist and unsafe-mode override for one process."""
    workspace_root: str
    unsafe: bool = False

    def __post_init__(self):
        self.workspace_root = os.path.realpath(os.path.abspath(self.workspace_root))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> str:
        """Resolve a path argument against the workspace root.

        Raises ToolError if the result escapes the root or names a protected
        file. Nothing touches the filesystem before this returns.
        """
        if not (path or "").strip():
            raise ToolError("path is required")
        expanded = os.path.expanduser(path) if self.unsafe else path
        full = os.path.realpath(os.path.join(self.workspace_root, expanded))
        if self.unsafe:
            return full
        if not self.is_inside(full):
            raise ToolError(f"Access denied: path {path!r} is outside of the repository root.")
        if self.is_protected(full):
            raise ToolError(f"Access denied: {path!r} is a protected file.")
        return full

    def is_inside(self, full_path: str) -> bool:
        root = self.workspace_root
        return full_path == root or full_path.startswith(root + os.sep)

    def is_protected(self, full_path: str) -> bool:
        rel = os.path.relpath(full_path, self.workspace_root)
        if rel == ".":
            return False
        parts = rel.split(os.sep)
        if any(p in PROTECTED_SEGMENTS for p in parts):
            return True
        name = parts[-1]
        if name in PROTECTED_BASENAMES:
            return True
        lower = name.lower()
        if lower.startswith(".env."):
            return True
        return any(frag in lower for frag in PROTECTED_FRAGMENTS)

    # ------------------------------------------------------------------
    # Shell
    # ------------------------------------------------------------------

    def denied_pattern(self, command: str) -> Optional[str]:
        """Return the matching denylist pattern, or None if the command is allowed."""
        if self.unsafe:
            return None
        for pattern in SHELL_DENYLIST:
            if pattern.search(command):
                return pattern.pattern
        return None

    def check_command(self, command: str) -> None:
        if not (command or "").strip():
            raise ToolError("command is required")
        hit = self.denied_pattern(command)
        if hit:
            logger.warning(f"Shell command blocked by denylist ({hit}): {command[:120]}")
            raise ToolError("Access denied: dangerous shell command detected.")
