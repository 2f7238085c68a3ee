"""Shell tools: run_shell, pre_flight_check, and the reply tool."""

import logging
from typing import Any, Optional

from backend import Backend
from errors import ToolError
from tools._common import ToolResult, ToolContext

logger = logging.getLogger(__name__)

MAX_SHELL_TIMEOUT = 600

_PYTHON_MARKERS = ("pyproject.toml", "setup.py", "setup.cfg", "pytest.ini", "tox.ini")


def _format_process_output(stdout: str, stderr: str, rc: int) -> str:
    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    output = "\n".join(parts) if parts else "(no output)"
    if rc != 0:
        output = f"[exit code: {rc}]\n{output}"
    return output


def run_shell(command: str, timeout: Optional[int] = None, backend: Backend = None,
              context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Execute a shell command in the workspace root after the denylist check."""
    if timeout is None:
        timeout = context.shell_timeout if context else 120
    try:
        timeout = max(1, min(int(timeout), MAX_SHELL_TIMEOUT))
    except (TypeError, ValueError):
        return ToolResult(success=False, output="", error="timeout must be an integer number of seconds")
    try:
        backend.policy.check_command(command)
        stdout, stderr, rc = backend.run_command(command, timeout=timeout)
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))
    except OSError as e:
        return ToolResult(success=False, output="", error=f"Failed to start command: {e}")

    output = _format_process_output(stdout, stderr, rc)
    return ToolResult(
        success=rc == 0, output=output,
        error=None if rc == 0 else f"Command exited with code {rc}\n{output}",
    )


def detect_test_command(backend: Backend) -> Optional[str]:
    """Pick the project's test command from the files at the workspace root."""
    if any(backend.file_exists(m) for m in _PYTHON_MARKERS):
        return "python -m pytest -q"
    if backend.file_exists("package.json"):
        return "npm test"
    return None


def pre_flight_check(command: str = "", backend: Backend = None,
                     context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Run the project's test suite and report pass/fail."""
    cmd = (command or "").strip() or detect_test_command(backend)
    if not cmd:
        return ToolResult(success=False, output="",
                          error="No test command detected (no pyproject.toml, setup.py or package.json).")
    timeout = context.shell_timeout if context else 120
    try:
        backend.policy.check_command(cmd)
        stdout, stderr, rc = backend.run_command(cmd, timeout=timeout)
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))
    except OSError as e:
        return ToolResult(success=False, output="", error=f"Failed to start command: {e}")

    output = _format_process_output(stdout, stderr, rc)
    if rc == 0:
        return ToolResult(success=True, output=f"✅ Pre-flight check passed:\n\n{output}")
    return ToolResult(success=False, output="", error=f"❌ Pre-flight check failed:\n\n{output}")


def reply(text: str, context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Send an intermediate chat message to the user."""
    if not (text or "").strip():
        return ToolResult(success=False, output="", error="text is required")
    if context is None or context.reply is None:
        return ToolResult(success=False, output="", error="No chat channel available")
    context.reply(text)
    return ToolResult(success=True, output="Sent.")
