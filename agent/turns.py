"""
Turn and part types for the conversation log.

A Turn is one exchange unit (role user, model or tool) made of ordered parts.
Turns are append-only; each is persisted as one JSON object per line.
"""

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

ROLE_USER = "user"
ROLE_MODEL = "model"
ROLE_TOOL = "tool"
ROLES = (ROLE_USER, ROLE_MODEL, ROLE_TOOL)


@dataclass
class TextPart:
    text: str
    # Opaque value that must be echoed verbatim on later calls
    continuation_token: Any = None


@dataclass
class ToolCallPart:
    name: str
    args: Dict[str, Any]
    call_id: str
    continuation_token: Any = None


@dataclass
class ToolResultPart:
    name: str
    call_id: str
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def response(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"result": self.result if self.result is not None else ""}


@dataclass
class InlineMediaPart:
    data: bytes
    mime_type: str


Part = Union[TextPart, ToolCallPart, ToolResultPart, InlineMediaPart]


@dataclass
class Turn:
    conversation_id: str
    role: str
    parts: List[Part] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def tool_calls(self) -> List[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> List[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


# ------------------------------------------------------------------
# Serialization
# ------------------------------------------------------------------

def part_to_dict(part: Part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        d: Dict[str, Any] = {"type": "text", "text": part.text}
    elif isinstance(part, ToolCallPart):
        d = {"type": "tool_call", "name": part.name, "args": part.args, "call_id": part.call_id}
    elif isinstance(part, ToolResultPart):
        d = {"type": "tool_result", "name": part.name, "call_id": part.call_id}
        if part.error is not None:
            d["error"] = part.error
        else:
            d["result"] = part.result
        return d
    elif isinstance(part, InlineMediaPart):
        return {
            "type": "media",
            "mime_type": part.mime_type,
            "data": base64.b64encode(part.data).decode("ascii"),
        }
    else:
        raise TypeError(f"Unknown part type: {type(part).__name__}")
    if part.continuation_token is not None:
        d["continuation_token"] = part.continuation_token
    return d


def part_from_dict(d: Dict[str, Any]) -> Part:
    kind = d.get("type")
    if kind == "text":
        return TextPart(text=d.get("text", ""), continuation_token=d.get("continuation_token"))
    if kind == "tool_call":
        return ToolCallPart(
            name=d.get("name", ""),
            args=d.get("args") or {},
            call_id=d.get("call_id", ""),
            continuation_token=d.get("continuation_token"),
        )
    if kind == "tool_result":
        return ToolResultPart(
            name=d.get("name", ""),
            call_id=d.get("call_id", ""),
            result=d.get("result"),
            error=d.get("error"),
        )
    if kind == "media":
        return InlineMediaPart(data=base64.b64decode(d.get("data", "")), mime_type=d.get("mime_type", ""))
    raise ValueError(f"Unknown part type: {kind!r}")


def turn_to_dict(turn: Turn) -> Dict[str, Any]:
    return {
        "conversation_id": turn.conversation_id,
        "role": turn.role,
        "parts": [part_to_dict(p) for p in turn.parts],
        "timestamp": turn.timestamp,
    }


def turn_from_dict(d: Dict[str, Any]) -> Turn:
    return Turn(
        conversation_id=str(d.get("conversation_id", "")),
        role=d.get("role", ROLE_USER),
        parts=[part_from_dict(p) for p in d.get("parts", [])],
        timestamp=float(d.get("timestamp", 0.0)),
    )
