"""Tool execution dispatch."""

import logging
from typing import Any, Dict

from tools._common import ToolResult, ToolContext, cap_output
from tools.schemas import TOOL_IMPLEMENTATIONS, TOOL_SCHEMAS, TOOL_CATEGORIES

logger = logging.getLogger(__name__)


def key_argument(name: str, inputs: Dict[str, Any]) -> str:
    """Short human summary of the argument that matters for a tool call."""
    if not isinstance(inputs, dict):
        return ""
    if name == "move_file":
        return f"{inputs.get('source', '')} → {inputs.get('destination', '')}"
    for key in ("command", "path", "query", "target", "message", "name", "text"):
        value = inputs.get(key)
        if isinstance(value, str) and value:
            value = value.replace("\n", " ")
            return value if len(value) <= 80 else value[:77] + "..."
    if name == "git_add":
        return " ".join(inputs.get("paths") or ["."])
    return ""


def _validate(name: str, inputs: Any) -> str:
    """Return an error message for a malformed argument set, or ''."""
    if not isinstance(inputs, dict):
        return f"Invalid arguments for {name}: expected an object"
    schema = TOOL_SCHEMAS[name]
    allowed = set(schema.get("properties", {}))
    unknown = sorted(set(inputs) - allowed)
    if unknown:
        return f"Invalid arguments for {name}: unexpected {', '.join(unknown)}"
    missing = [k for k in schema.get("required", []) if k not in inputs]
    if missing:
        return f"Invalid arguments for {name}: missing {', '.join(missing)}"
    return ""


def execute_tool(name: str, inputs: Dict[str, Any], context: ToolContext) -> ToolResult:
    """Execute a tool by name. Never raises; failures come back as ToolResult errors."""
    category = TOOL_CATEGORIES.get(name, "GIT" if name.startswith("git_") else "TOOL")
    logger.info(f"[chat {context.conversation_id}] {category} {name} {key_argument(name, inputs)}".rstrip())

    impl = TOOL_IMPLEMENTATIONS.get(name)
    if not impl:
        return ToolResult(success=False, output="", error=f"Unknown tool: {name}")
    problem = _validate(name, inputs)
    if problem:
        return ToolResult(success=False, output="", error=problem)

    kwargs = dict(inputs, backend=context.backend, context=context)
    try:
        result = impl(**kwargs)
    except TypeError as e:
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: {e}")
    except Exception as e:
        logger.exception(f"[chat {context.conversation_id}] ERROR tool {name} failed")
        return ToolResult(success=False, output="", error=f"Tool error: {e}")

    if not result.success:
        logger.info(f"[chat {context.conversation_id}] {category} {name} failed: {(result.error or '')[:200]}")
    result.output = cap_output(result.output)
    if result.error:
        result.error = cap_output(result.error)
    return result
