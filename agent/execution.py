"""
Turn loop orchestrator.

process_one_message() drives one user request through

    AUTHORIZING -> LOADING_HISTORY -> STREAMING_TURN <-> TOOL_DISPATCH
    -> FINALIZING -> RECONCILING -> DONE

with error exits to the retry queue. The Bedrock stream runs in a producer
thread feeding a queue.Queue that the event loop drains; tool calls run one
at a time in a worker thread, in the order the model asked for them.
"""

import asyncio
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agent.commands import CommandContext, handle_command
from agent.events import (
    MessageRequest, RunOutcome,
    STATUS_DONE, STATUS_DENIED, STATUS_COMMAND, STATUS_FAILED, STATUS_IGNORED,
)
from agent.history import merge_adjacent, normalize_media, reconstruct_history
from agent.prompts import build_preamble
from agent.reconcile import ReconcileResult, reconcile_workspace
from agent.turns import (
    Turn, TextPart, ToolCallPart, ToolResultPart, InlineMediaPart,
    ROLE_USER, ROLE_MODEL, ROLE_TOOL,
)
from backend import Backend, LocalBackend
from bedrock_service import GenerationConfig, StreamAssembler, turns_to_messages
from config import AppConfig
from errors import AuthorizationError
from tools import TOOL_DEFINITIONS, SafetyPolicy, ToolContext, execute_tool, key_argument

logger = logging.getLogger(__name__)

ACCESS_DENIED = "🛡️ Access Denied."


class WorkspaceLocks:
    """One asyncio.Lock per workspace root; runs on the same root never overlap."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, root: str) -> asyncio.Lock:
        key = os.path.realpath(root)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


@dataclass
class OrchestratorDeps:
    """Explicit handles for one orchestrator instance."""
    store: Any                      # store.FileStore
    channel: Any                    # channels.ChatChannel
    service: Any                    # bedrock_service.BedrockService
    policy: SafetyPolicy
    config: AppConfig
    queue_manager: Any = None       # agent.retry_queue.RetryQueueManager
    locks: WorkspaceLocks = field(default_factory=WorkspaceLocks)
    backend: Optional[Backend] = None
    tools: List[Dict[str, Any]] = field(default_factory=lambda: TOOL_DEFINITIONS)
    generation_config: Optional[GenerationConfig] = None
    mode: str = "listen"
    reconcile: bool = True

    def __post_init__(self):
        if self.backend is None:
            self.backend = LocalBackend(self.policy)

    @property
    def workspace_root(self) -> str:
        return self.policy.workspace_root


class StreamFlusher:
    """Debounced delivery of streamed text.

    The first flush sends a message and later flushes edit it, so the number
    of channel calls depends on elapsed time rather than on token count.
    """

    def __init__(self, channel, conversation_id: str, interval: float = 1.0):
        self.channel = channel
        self.conversation_id = conversation_id
        self.interval = interval
        self.text = ""
        self.handle: Any = None
        self._sent = ""
        self._timer: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    def append(self, delta: str) -> None:
        if not delta:
            return
        self.text += delta
        if self._timer is None:
            self._timer = asyncio.ensure_future(self._flush_later())

    def new_block(self) -> None:
        if self.text and not self.text.endswith("\n\n"):
            self.text += "\n\n"

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.interval)
        # Cleared before flushing so close() only ever cancels a sleeping timer
        self._timer = None
        await self.flush()

    async def flush(self) -> None:
        async with self._lock:
            text = self.text.strip()
            if not text or text == self._sent:
                return
            if self.handle is None:
                self.handle = await self.channel.send(self.conversation_id, text)
            else:
                await self.channel.edit(self.conversation_id, self.handle, text)
            self._sent = text

    async def close(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        await self.flush()


def authorize(conversation_id: str, config: AppConfig) -> None:
    if not config.is_allowed(conversation_id):
        raise AuthorizationError(f"conversation {conversation_id} is not allow-listed")


def build_user_turn(request: MessageRequest) -> Turn:
    parts: List[Any] = []
    if request.text:
        parts.append(TextPart(text=request.text))
    if request.media:
        parts.append(normalize_media(InlineMediaPart(data=request.media, mime_type=request.mime_type or "")))
    return Turn(conversation_id=str(request.conversation_id), role=ROLE_USER, parts=parts)


def progress_notice(call: ToolCallPart) -> str:
    notice = f"🛠️ *Executing:* `{call.name}`"
    arg = key_argument(call.name, call.args)
    if arg:
        notice += f"\n`{arg}`"
    return notice


async def _stream_turn(deps: OrchestratorDeps, cid: str, system_prompt: str,
                       context: List[Turn]) -> List[Any]:
    """Submit the context, deliver text as it arrives, return the finalized parts."""
    messages = turns_to_messages(context)
    chunk_queue: queue.Queue = queue.Queue()

    def _stream_producer():
        """Run the sync generator in a background thread, forwarding chunks to the queue."""
        try:
            for c in deps.service.generate_response_stream(
                messages,
                system_prompt=system_prompt,
                tools=deps.tools,
                config=deps.generation_config,
            ):
                chunk_queue.put(c)
            chunk_queue.put(None)  # sentinel: stream complete
        except Exception as exc:
            chunk_queue.put(exc)

    producer_thread = threading.Thread(target=_stream_producer, daemon=True)
    producer_thread.start()

    loop = asyncio.get_running_loop()
    assembler = StreamAssembler()
    flusher = StreamFlusher(deps.channel, cid, deps.config.stream_flush_interval)
    try:
        while True:
            chunk = await loop.run_in_executor(None, chunk_queue.get)
            if chunk is None:
                break
            if isinstance(chunk, Exception):
                raise chunk
            assembler.feed(chunk)
            chunk_type = chunk.get("type", "")
            if chunk_type == "text_start":
                flusher.new_block()
            elif chunk_type == "text":
                flusher.append(chunk.get("content", ""))
    finally:
        await flusher.close()
    return assembler.finish()


async def _dispatch_tools(deps: OrchestratorDeps, cid: str, tool_ctx: ToolContext,
                          calls: List[ToolCallPart]) -> List[ToolResultPart]:
    """Run tool calls sequentially; a failing call becomes an error result."""
    results: List[ToolResultPart] = []
    for call in calls:
        await deps.channel.send(cid, progress_notice(call))
        try:
            result = await asyncio.to_thread(execute_tool, call.name, call.args, tool_ctx)
            response = result.to_response()
        except Exception as e:
            logger.exception(f"[chat {cid}] ERROR tool {call.name} raised")
            response = {"error": f"Tool error: {e}"}
        results.append(ToolResultPart(
            name=call.name,
            call_id=call.call_id,
            result=response.get("result"),
            error=response.get("error"),
        ))
    return results


def _make_reply(deps: OrchestratorDeps, cid: str, loop: asyncio.AbstractEventLoop):
    def reply(text: str) -> None:
        # Called from the tool worker thread
        future = asyncio.run_coroutine_threadsafe(deps.channel.send(cid, text), loop)
        future.result(timeout=60)
    return reply


async def _report_reconciliation(deps: OrchestratorDeps, cid: str, result: ReconcileResult) -> None:
    if not result.error:
        return
    if result.committed:
        await deps.channel.send(cid, f"⚠️ Committed locally (`{result.message}`) but push failed: {result.error}")
    else:
        await deps.channel.send(cid, f"⚠️ Git sync failed: {result.error}")


async def _run_locked(request: MessageRequest, deps: OrchestratorDeps) -> RunOutcome:
    cid = str(request.conversation_id)
    cfg = deps.config
    submissions = 0
    try:
        history = reconstruct_history(deps.store.turns, cid, cfg.history_limit)
        user_turn = build_user_turn(request)
        if (request.is_retry and history and history[-1].role == ROLE_USER
                and history[-1].text == (request.text or "")):
            # Persisted by the first attempt
            context = list(history)
        else:
            deps.store.turns.append(user_turn)
            context = merge_adjacent(history + [user_turn])

        system_prompt = build_preamble(deps.workspace_root, cfg.max_turns)
        tool_ctx = ToolContext(
            conversation_id=cid,
            backend=deps.backend,
            policy=deps.policy,
            reply=_make_reply(deps, cid, asyncio.get_running_loop()),
            shell_timeout=cfg.shell_timeout,
        )

        logger.info(f"[chat {cid}] MODEL Starting interaction ({len(history)} history turn(s))")
        while submissions < cfg.max_turns:
            submissions += 1
            parts = await _stream_turn(deps, cid, system_prompt, context)
            model_turn = Turn(conversation_id=cid, role=ROLE_MODEL, parts=parts)
            deps.store.turns.append(model_turn)
            if parts:
                context.append(model_turn)

            calls = model_turn.tool_calls
            if not calls:
                break

            results = await _dispatch_tools(deps, cid, tool_ctx, calls)
            tool_turn = Turn(conversation_id=cid, role=ROLE_TOOL, parts=results)
            deps.store.turns.append(tool_turn)
            context.append(tool_turn)
            logger.info(f"[chat {cid}] MODEL Turn {submissions}/{cfg.max_turns} completed. Requesting next step...")
        else:
            logger.info(f"[chat {cid}] MODEL Turn budget of {cfg.max_turns} exhausted")
    except Exception as exc:
        if deps.queue_manager is not None:
            status = await deps.queue_manager.handle_failure(exc, request)
        else:
            logger.error(f"[chat {cid}] ERROR {exc}")
            await deps.channel.send(cid, f"❌ Error: {exc}")
            status = STATUS_FAILED
        return RunOutcome(status=status, turns=submissions, error=str(exc))

    logger.info(f"[chat {cid}] MODEL Request sequence finished.")
    reconciliation = None
    if deps.reconcile:
        reconciliation = await asyncio.to_thread(
            reconcile_workspace,
            deps.workspace_root,
            deps.service,
            cid,
            cfg.git_author_name,
            cfg.git_author_email,
        )
        await _report_reconciliation(deps, cid, reconciliation)
    return RunOutcome(status=STATUS_DONE, turns=submissions, reconciliation=reconciliation)


async def process_one_message(request: MessageRequest, deps: OrchestratorDeps) -> RunOutcome:
    """Handle one inbound message end to end."""
    cid = str(request.conversation_id)
    try:
        authorize(cid, deps.config)
    except AuthorizationError as e:
        logger.warning(f"[chat {cid}] AUTH {e}")
        await deps.channel.send(cid, ACCESS_DENIED)
        return RunOutcome(status=STATUS_DENIED)

    text = request.text or ""
    if not text.strip() and not request.media:
        logger.debug(f"[chat {cid}] Ignoring empty message")
        return RunOutcome(status=STATUS_IGNORED)

    if text.startswith("/") and not request.is_retry:
        ctx = CommandContext(
            conversation_id=cid,
            store=deps.store,
            channel=deps.channel,
            workspace_root=deps.workspace_root,
            mode=deps.mode,
            unsafe=deps.policy.unsafe,
        )
        if await handle_command(text, ctx):
            deps.store.turns.append(build_user_turn(request))
            return RunOutcome(status=STATUS_COMMAND)

    async with deps.locks.get(deps.workspace_root):
        return await _run_locked(request, deps)
