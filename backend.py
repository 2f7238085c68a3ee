"""
Backend abstraction for file and command operations.
Every path goes through the SafetyPolicy before the filesystem is touched.
"""

import logging
import os
import shutil
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Dict, Any, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from tools.policy import SafetyPolicy

logger = logging.getLogger(__name__)

# Directories search_repo never descends into
SEARCH_EXCLUDE_DIRS = (
    ".git", "node_modules", "dist", "build", "__pycache__",
    ".venv", "venv", ".mypy_cache", ".pytest_cache", ".tox",
)


class Backend(ABC):
    """Abstract backend for file system and command operations."""

    policy: "SafetyPolicy"

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def resolve_path(self, path: str) -> str:
        """Resolve a path argument to an absolute path, or raise ToolError."""

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """List entries in a directory. Returns list of {name, type, size?}."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file (create dirs as needed)."""

    @abstractmethod
    def remove_file(self, path: str) -> None:
        """Delete a file."""

    @abstractmethod
    def move_file(self, source: str, destination: str) -> None:
        """Move or rename a file (create destination dirs as needed)."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a path exists."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Check if a path is a directory."""

    @abstractmethod
    def run_command(self, command: str, timeout: int = 120) -> Tuple[str, str, int]:
        """Run a shell command in the working directory. Returns (stdout, stderr, returncode)."""

    @abstractmethod
    def run_argv(self, argv: Sequence[str], timeout: int = 120) -> Tuple[str, str, int]:
        """Run a program without a shell. Returns (stdout, stderr, returncode)."""

    @abstractmethod
    def search(self, query: str) -> str:
        """Fixed-string recursive search. Returns matching lines."""


# ============================================================
# Local Backend
# ============================================================

# Cache ripgrep availability
_HAS_RIPGREP: Optional[bool] = None


def _has_ripgrep() -> bool:
    global _HAS_RIPGREP
    if _HAS_RIPGREP is None:
        _HAS_RIPGREP = shutil.which("rg") is not None
    return _HAS_RIPGREP


class LocalBackend(Backend):
    """Backend that operates on the local filesystem."""

    def __init__(self, policy: "SafetyPolicy"):
        self.policy = policy
        self._working_directory = policy.workspace_root

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def resolve_path(self, path: str) -> str:
        return self.policy.resolve(path)

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        full = self.resolve_path(path or ".")
        entries = []
        for name in sorted(os.listdir(full)):
            child = os.path.join(full, name)
            if os.path.isdir(child):
                entries.append({"name": name, "type": "directory"})
            elif os.path.isfile(child):
                entries.append({"name": name, "type": "file", "size": os.path.getsize(child)})
        return entries

    def read_file(self, path: str) -> str:
        full = self.resolve_path(path)
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self.resolve_path(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def remove_file(self, path: str) -> None:
        full = self.resolve_path(path)
        os.remove(full)

    def move_file(self, source: str, destination: str) -> None:
        src = self.resolve_path(source)
        dst = self.resolve_path(destination)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        os.replace(src, dst)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self.resolve_path(path))

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(self.resolve_path(path))

    def run_command(self, command: str, timeout: int = 120) -> Tuple[str, str, int]:
        proc = subprocess.Popen(
            command, shell=True, cwd=self._working_directory,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            start_new_session=True,  # own process group for clean kill
        )
        return self._communicate(proc, timeout)

    def run_argv(self, argv: Sequence[str], timeout: int = 120) -> Tuple[str, str, int]:
        proc = subprocess.Popen(
            list(argv), cwd=self._working_directory,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            start_new_session=True,
        )
        return self._communicate(proc, timeout)

    def _communicate(self, proc: subprocess.Popen, timeout: int) -> Tuple[str, str, int]:
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill_process(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        return stdout or "", stderr or "", proc.returncode

    @staticmethod
    def _kill_process(proc: subprocess.Popen) -> None:
        """Kill a process and its entire process group."""
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError):
            pass
        try:
            proc.kill()
        except (ProcessLookupError, OSError):
            pass

    def search(self, query: str) -> str:
        if _has_ripgrep():
            cmd = ["rg", "--line-number", "--no-heading", "--color=never", "--fixed-strings"]
            for d in SEARCH_EXCLUDE_DIRS:
                cmd.extend(["--glob", f"!{d}/"])
            cmd.extend(["--", query, "."])
        else:
            cmd = ["grep", "-rnF", "--color=never", "-I"]
            for d in SEARCH_EXCLUDE_DIRS:
                cmd.append(f"--exclude-dir={d}")
            cmd.extend(["--exclude=.env", "--exclude=.env.*", "--exclude=*.pem", "--exclude=*.key"])
            cmd.extend(["--", query, "."])

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=30, cwd=self._working_directory)
        # Both tools exit 1 on "no matches"
        if result.returncode not in (0, 1):
            raise RuntimeError(result.stderr.strip() or f"search exited with code {result.returncode}")
        return result.stdout.strip() if result.stdout else ""
