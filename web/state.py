"""
Shared mutable state for the web server.

main.py fills these in before uvicorn starts; route modules read them.
"""

import asyncio
import logging
import time
from typing import Any, Optional, Set

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_deps: Optional[Any] = None             # agent.execution.OrchestratorDeps
_queue_manager: Optional[Any] = None    # agent.retry_queue.RetryQueueManager
_run_worker: bool = True

# In-flight process_one_message tasks; held so they are not garbage collected
_tasks: Set[asyncio.Task] = set()

_worker_task: Optional[asyncio.Task] = None
_stop_event: Optional[asyncio.Event] = None

_BOOT_TS = time.time()


def configure(deps: Any, queue_manager: Any = None, run_worker: bool = True) -> None:
    """Install the orchestrator handles the routes use."""
    global _deps, _queue_manager, _run_worker
    _deps = deps
    _queue_manager = queue_manager
    _run_worker = run_worker


def get_deps() -> Any:
    if _deps is None:
        raise RuntimeError("web.state.configure() has not been called")
    return _deps
