"""
Bedrock Relay HTTP surface for listen mode.
FastAPI app that feeds inbound messages to the turn loop.

Run:  python main.py listen [--host 127.0.0.1] [--port 8765]
"""

import asyncio
import logging

from fastapi import FastAPI

from agent.execution import process_one_message
import web.state as _state
from web import api_status, chat

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title="Bedrock Relay")


@app.on_event("startup")
async def _on_startup():
    """Start the retry queue worker alongside the server."""
    if _state._deps is None or _state._queue_manager is None or not _state._run_worker:
        return
    deps = _state._deps

    async def runner(request):
        return await process_one_message(request, deps)

    _state._stop_event = asyncio.Event()
    _state._worker_task = asyncio.create_task(
        _state._queue_manager.run_worker(runner, deps.config.queue_poll_interval, _state._stop_event)
    )


@app.on_event("shutdown")
async def _on_shutdown():
    """Stop the worker and let in-flight messages finish."""
    if _state._stop_event is not None:
        _state._stop_event.set()
    if _state._worker_task is not None:
        await _state._worker_task
        _state._worker_task = None
    if _state._tasks:
        logger.info(f"Shutdown: waiting for {len(_state._tasks)} in-flight message(s)")
        await asyncio.gather(*list(_state._tasks), return_exceptions=True)


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(chat.router)
app.include_router(api_status.router)
