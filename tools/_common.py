"""Shared types for the tools package."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from backend import Backend
from tools.policy import SafetyPolicy

MAX_TOOL_OUTPUT = 20000


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        """Shape handed back to the model: {"result": ...} or {"error": ...}."""
        if self.success:
            return {"result": self.output}
        return {"error": self.error or self.output or "Tool failed"}


@dataclass
class ToolContext:
    """Per-call handles a tool may need beyond its own arguments."""
    conversation_id: str
    backend: Backend
    policy: SafetyPolicy
    # Sends a chat message on behalf of the model (reply tool). Blocking.
    reply: Optional[Callable[[str], None]] = None
    shell_timeout: int = 120


def cap_output(output: str, limit: int = MAX_TOOL_OUTPUT) -> str:
    """Keep the head and tail of oversized output."""
    if len(output) <= limit:
        return output
    lines_out = output.split("\n")
    if len(lines_out) > 200:
        capped = "\n".join(lines_out[:100]) + f"\n\n... [{len(lines_out) - 150} lines truncated] ...\n\n" + "\n".join(lines_out[-50:])
        if len(capped) <= limit:
            return capped
    head = limit // 2
    tail = limit // 4
    return output[:head] + "\n\n... [truncated] ...\n\n" + output[-tail:]
