"""
History reconstruction: turns the append-only turn log into a submission list.

The result always opens with a user turn, never has two adjacent turns with
the same role, and never ends with a model turn holding an unresolved tool
call. Tool calls and results are paired by call_id; a call without a result
(crash mid-dispatch) or a result without its call (trimmed by the recency
window) is dropped.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Set

from agent.turns import (
    Turn, TextPart, ToolCallPart, ToolResultPart, InlineMediaPart,
    ROLE_USER, ROLE_MODEL, ROLE_TOOL,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20

GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream", "application/unknown"}


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Identify common media formats from their magic bytes."""
    if not data:
        return None
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "audio/wav"
    if data.startswith(b"%PDF-"):
        return "application/pdf"
    if data.startswith(b"OggS"):
        return "audio/ogg"
    if data.startswith(b"ID3") or (len(data) > 1 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0):
        return "audio/mpeg"
    if data[4:8] == b"ftyp":
        return "video/mp4"
    if data.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm"
    return None


def effective_role(turn: Turn) -> str:
    if any(isinstance(p, ToolResultPart) for p in turn.parts):
        return ROLE_TOOL
    if turn.role == ROLE_MODEL or any(isinstance(p, ToolCallPart) for p in turn.parts):
        return ROLE_MODEL
    return ROLE_USER


def normalize_media(part: InlineMediaPart):
    """Give media with a generic type a concrete one, or replace it with a note."""
    if (part.mime_type or "").lower() not in GENERIC_MIME_TYPES:
        return part
    sniffed = sniff_mime_type(part.data)
    if sniffed:
        return InlineMediaPart(data=part.data, mime_type=sniffed)
    logger.info(f"Dropping attachment of unknown type ({len(part.data)} bytes)")
    return TextPart(text="[An attachment of an unrecognized file type was omitted.]")


def merge_adjacent(turns: List[Turn]) -> List[Turn]:
    """Concatenate the parts of consecutive turns that share a role."""
    merged: List[Turn] = []
    for turn in turns:
        if merged and merged[-1].role == turn.role:
            prev = merged[-1]
            merged[-1] = replace(prev, parts=prev.parts + turn.parts)
        else:
            merged.append(turn)
    return merged


def _drop_leading_non_user(turns: List[Turn]) -> List[Turn]:
    i = 0
    while i < len(turns) and turns[i].role != ROLE_USER:
        i += 1
    if i:
        logger.debug(f"Dropped {i} leading non-user turn(s)")
    return turns[i:]


def _pair_tool_turns(turns: List[Turn]) -> List[Turn]:
    """Keep only tool calls that have a result in the next turn, and vice versa."""
    out: List[Turn] = []
    for i, turn in enumerate(turns):
        if turn.role == ROLE_MODEL and turn.tool_calls:
            nxt = turns[i + 1] if i + 1 < len(turns) else None
            if nxt is None:
                # Trailing calls are handled by _trim_unresolved_tail
                out.append(turn)
                continue
            answered: Set[str] = set()
            if nxt.role == ROLE_TOOL:
                answered = {r.call_id for r in nxt.tool_results}
            parts = [p for p in turn.parts
                     if not isinstance(p, ToolCallPart) or p.call_id in answered]
            if len(parts) != len(turn.parts):
                logger.warning(f"Dropped {len(turn.parts) - len(parts)} unanswered tool call(s) from history")
            if any(not isinstance(p, TextPart) or p.text.strip() for p in parts):
                out.append(replace(turn, parts=parts))
        elif turn.role == ROLE_TOOL:
            prev = turns[i - 1] if i > 0 else None
            asked: Set[str] = set()
            if prev is not None and prev.role == ROLE_MODEL:
                asked = {c.call_id for c in prev.tool_calls}
            parts = [p for p in turn.parts
                     if not isinstance(p, ToolResultPart) or p.call_id in asked]
            if len(parts) != len(turn.parts):
                logger.warning(f"Dropped {len(turn.parts) - len(parts)} orphaned tool result(s) from history")
            if parts:
                out.append(replace(turn, parts=parts,
                                   role=ROLE_TOOL if any(isinstance(p, ToolResultPart) for p in parts) else ROLE_USER))
        else:
            out.append(turn)
    return out


def _trim_unresolved_tail(turns: List[Turn]) -> List[Turn]:
    turns = list(turns)
    while turns and turns[-1].role == ROLE_MODEL and turns[-1].tool_calls:
        logger.warning("Dropped trailing model turn with unresolved tool call(s)")
        turns.pop()
    return turns


def repair(turns: List[Turn]) -> List[Turn]:
    """Apply the role and pairing rules to a chronological list of turns."""
    # Reasoning-only responses are stored with no parts
    classified = [replace(t, role=effective_role(t)) for t in turns if t.parts]
    result = _drop_leading_non_user(merge_adjacent(classified))
    # Dropping calls or results can make new neighbours share a role
    while True:
        before = [(t.role, len(t.parts)) for t in result]
        result = _pair_tool_turns(result)
        result = _trim_unresolved_tail(result)
        result = _drop_leading_non_user(merge_adjacent(result))
        if [(t.role, len(t.parts)) for t in result] == before:
            return result


def reconstruct_history(turn_log, conversation_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Turn]:
    """Build the ordered, role-consistent history for a conversation.

    turn_log.recent() returns newest first; the result is chronological.
    """
    raw = list(reversed(turn_log.recent(conversation_id, limit)))
    history = repair(raw)
    normalized: List[Turn] = []
    for turn in history:
        parts = [normalize_media(p) if isinstance(p, InlineMediaPart) else p for p in turn.parts]
        normalized.append(replace(turn, parts=parts))
    logger.debug(f"[chat {conversation_id}] history: {len(raw)} raw turn(s) -> {len(normalized)}")
    return normalized
