"""
Bedrock Relay - chat-driven coding agent on Amazon Bedrock.

Entry point with two modes:
  listen  serve the HTTP API and run the retry queue worker
  batch   drain the retry queue, optionally process one message, exit
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Tuple

from agent.events import MessageRequest, RunOutcome, STATUS_FAILED
from agent.execution import OrchestratorDeps, process_one_message
from agent.retry_queue import RetryQueueManager
from bedrock_service import BedrockService
from channels import ChatChannel, ConsoleChannel, WebChannel
from config import AppConfig, load_app_config, get_credentials_info
from store import FileStore
from tools import SafetyPolicy

logger = logging.getLogger(__name__)

LOCK_FILE = ".relay.lock"
BATCH_DRAIN_LIMIT = 10
FINAL_RETRY_LIMIT = 5


def configure_logging(cfg: AppConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# ============================================================
# Instance election
# ============================================================

def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_lock_pid(path: str = LOCK_FILE) -> Optional[int]:
    try:
        with open(path) as f:
            return int(f.read().strip() or 0)
    except (OSError, ValueError):
        return None


def acquire_instance_lock(path: str = LOCK_FILE) -> bool:
    """Write our PID to the lock file unless a live process already holds it.

    Advisory only: two processes starting together can both succeed.
    """
    pid = read_lock_pid(path)
    if pid is not None and pid != os.getpid() and _pid_alive(pid):
        logger.warning(f"Another instance (pid {pid}) holds {path}")
        return False
    with open(path, "w") as f:
        f.write(str(os.getpid()))
    return True


def release_instance_lock(path: str = LOCK_FILE) -> None:
    if read_lock_pid(path) == os.getpid():
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")


# ============================================================
# Wiring
# ============================================================

def build_runtime(cfg: AppConfig, channel: ChatChannel, mode: str) -> Tuple[OrchestratorDeps, RetryQueueManager]:
    workspace = cfg.resolve_workspace()
    policy = SafetyPolicy(workspace, unsafe=cfg.unsafe_mode)
    store = FileStore(cfg.store_dir)
    queue_manager = RetryQueueManager(store, channel)
    deps = OrchestratorDeps(
        store=store,
        channel=channel,
        service=BedrockService(),
        policy=policy,
        config=cfg,
        queue_manager=queue_manager,
        mode=mode,
    )
    if cfg.unsafe_mode:
        logger.warning("UNSAFE_MODE is on: path sandbox and command denylist are disabled")
    logger.info(f"Workspace: {workspace} | Store: {store.base_dir} | {get_credentials_info()}")
    return deps, queue_manager


# ============================================================
# Modes
# ============================================================

async def run_batch(deps: OrchestratorDeps, queue_manager: RetryQueueManager,
                    conversation_id: Optional[str], message: Optional[str],
                    final_retry_delay: float = 60.0) -> Optional[RunOutcome]:
    """Drain the queue, process one message if given, then one late retry pass."""
    async def runner(request: MessageRequest) -> RunOutcome:
        return await process_one_message(request, deps)

    drained = await queue_manager.drain(runner, limit=BATCH_DRAIN_LIMIT)
    if drained:
        logger.info(f"Batch: replayed {drained} queued request(s)")

    outcome = None
    if message:
        request = MessageRequest(conversation_id=conversation_id or "local", text=message)
        outcome = await process_one_message(request, deps)
        logger.info(f"Batch: message finished with status {outcome.status} after {outcome.turns} turn(s)")

    if deps.store.queue.has_pending():
        logger.info(f"Batch: items still pending, final retry in {final_retry_delay:.0f}s")
        await asyncio.sleep(final_retry_delay)
        await queue_manager.drain(runner, limit=FINAL_RETRY_LIMIT)
    return outcome


def run_listen(deps: OrchestratorDeps, queue_manager: RetryQueueManager, host: str, port: int) -> None:
    import uvicorn

    import web.state as _state
    from web import app

    _state.configure(deps, queue_manager)
    print("\n  Bedrock Relay: listening")
    print(f"  http://{host}:{port}")
    print(f"  Workspace: {deps.workspace_root}\n")
    uvicorn.run(app, host=host, port=port, log_level="warning")


# ============================================================
# Entry Point
# ============================================================

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Bedrock Relay - chat-driven coding agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py listen --port 8765
  python main.py batch
  python main.py batch --conversation 42 --message "add a README"
        """,
    )
    sub = parser.add_subparsers(dest="mode", required=True)

    listen = sub.add_parser("listen", help="Serve the HTTP API and the retry worker")
    listen.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    listen.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")

    batch = sub.add_parser("batch", help="Drain the retry queue and exit")
    batch.add_argument("--conversation", default=None, help="Conversation id for --message")
    batch.add_argument("--message", default=None, help="Process this message before exiting")
    batch.add_argument("--final-retry-delay", type=float, default=60.0,
                       help="Seconds to wait before the last queue pass (default: 60)")

    args = parser.parse_args(argv)

    cfg = load_app_config()
    configure_logging(cfg)

    workspace = cfg.resolve_workspace()
    if not os.path.isdir(workspace):
        print(f"Error: {workspace} is not a directory")
        return 1

    if not acquire_instance_lock():
        if args.mode == "listen":
            print("Error: another relay instance is running")
            return 1
        logger.info("Batch: another instance is running, skipping")
        return 0

    try:
        if args.mode == "listen":
            deps, queue_manager = build_runtime(cfg, WebChannel(), "listen")
            run_listen(deps, queue_manager, args.host, args.port)
            return 0

        deps, queue_manager = build_runtime(cfg, ConsoleChannel(), "batch")
        if deps.store.liveness.is_fresh(cfg.heartbeat_stale_seconds):
            logger.info("Batch: a listening instance is alive, skipping")
            return 0
        outcome = asyncio.run(run_batch(
            deps, queue_manager, args.conversation, args.message, args.final_retry_delay,
        ))
        if outcome is not None and outcome.status == STATUS_FAILED:
            return 1
        return 0
    finally:
        release_instance_lock()


if __name__ == "__main__":
    sys.exit(main())
