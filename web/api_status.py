"""
Queue and health REST API endpoints.
"""

import asyncio
import logging
import time

from fastapi import APIRouter

import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/queue")
async def api_queue():
    """Retry queue contents, oldest first. Media is reported, not returned."""
    store = _state.get_deps().store
    items = await asyncio.to_thread(store.queue.list)
    return {
        "items": [
            {
                "id": item.id,
                "conversation_id": item.conversation_id,
                "user_message": item.user_message,
                "has_media": item.media is not None,
                "status": item.status,
                "created_at": item.created_at,
                "last_attempt": item.last_attempt,
                "attempts": item.attempts,
            }
            for item in items
        ]
    }


@router.get("/api/health")
async def api_health():
    deps = _state.get_deps()
    pending = await asyncio.to_thread(deps.store.queue.has_pending)
    return {
        "ok": True,
        "uptime": round(time.time() - _state._BOOT_TS, 1),
        "workspace": deps.workspace_root,
        "in_flight": len(_state._tasks),
        "queue_pending": pending,
        "worker_running": _state._worker_task is not None and not _state._worker_task.done(),
    }
