"""
Message REST API endpoints.

POST /api/messages accepts a user message and runs it as a background task;
replies land in the WebChannel outbox, read back through
GET /api/conversations/{conversation_id}/messages.
"""

import asyncio
import base64
import binascii
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from agent.events import MessageRequest
from agent.execution import process_one_message
import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


def _on_task_done(task: asyncio.Task) -> None:
    _state._tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Message task failed: {exc!r}")


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": error}, status_code=400)


@router.post("/api/messages")
async def post_message(request: Request):
    """Queue one inbound message for processing. Returns 202 immediately."""
    try:
        body = await request.json()
    except ValueError:
        return _bad_request("invalid JSON body")
    if not isinstance(body, dict):
        return _bad_request("JSON object expected")

    conversation_id = str(body.get("conversation_id") or "").strip()
    if not conversation_id:
        return _bad_request("conversation_id required")
    text = body.get("text") or ""
    if not isinstance(text, str):
        return _bad_request("text must be a string")

    media = None
    if body.get("media_base64"):
        try:
            media = base64.b64decode(body["media_base64"], validate=True)
        except (binascii.Error, ValueError, TypeError):
            return _bad_request("media_base64 is not valid base64")

    deps = _state.get_deps()
    message = MessageRequest(
        conversation_id=conversation_id,
        text=text,
        media=media,
        mime_type=body.get("mime_type") or None,
    )
    task = asyncio.create_task(process_one_message(message, deps))
    _state._tasks.add(task)
    task.add_done_callback(_on_task_done)
    logger.info(f"[chat {conversation_id}] Accepted message ({len(text)} chars, media={media is not None})")
    return JSONResponse({"ok": True, "conversation_id": conversation_id}, status_code=202)


@router.get("/api/conversations/{conversation_id}/messages")
async def get_messages(conversation_id: str):
    """Outbound messages the relay has sent to this conversation."""
    channel = _state.get_deps().channel
    if not hasattr(channel, "messages"):
        return JSONResponse({"ok": False, "error": "channel keeps no outbox"}, status_code=404)
    return {"conversation_id": conversation_id, "messages": channel.messages(conversation_id)}
