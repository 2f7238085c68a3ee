"""
Retry queue manager.

Transient upstream failures park the request in the durable queue; a worker
replays the oldest pending item on an interval. Delivery is at-least-once with
a single claim per tick: a crash between success and deletion can replay a
request.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional

from botocore.exceptions import (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from agent.events import (
    MessageRequest, RunOutcome,
    STATUS_QUEUED, STATUS_FAILED,
)
from errors import TransientUpstreamError, PermanentUpstreamError

logger = logging.getLogger(__name__)

TRANSIENT = "transient"
PERMANENT = "permanent"

QUEUED_NOTICE = "⏳ The model is overloaded. Your request has been queued and will be retried automatically."

TRANSIENT_STATUSES = {429, 503, 504}

TRANSIENT_CODES = {
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailableException",
    "ModelNotReadyException",
    "ModelTimeoutException",
    "ModelStreamErrorException",
    "InternalServerException",
    "RequestTimeout",
    "TimeoutError",
    "ConnectionError",
    "ECONNRESET",
    "ETIMEDOUT",
}

TRANSIENT_EXCEPTIONS = (
    ConnectionError,  # includes ConnectionResetError
    TimeoutError,
    asyncio.TimeoutError,
    ReadTimeoutError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ConnectionClosedError,
    TransientUpstreamError,
)

_TRANSIENT_WORDING = re.compile(
    r"overloaded|unavailable|deadline exceeded|connection reset|econnreset|"
    r"fetch failed|too many requests|throttl|\b(429|503|504)\b",
    re.IGNORECASE,
)

Runner = Callable[[MessageRequest], Awaitable[RunOutcome]]


def classify_error(exc: BaseException) -> str:
    """Return "transient" for failures worth retrying later, else "permanent"."""
    if isinstance(exc, PermanentUpstreamError):
        return PERMANENT

    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    code = getattr(exc, "code", None)

    if status in TRANSIENT_STATUSES:
        return TRANSIENT
    if isinstance(code, int) and code in TRANSIENT_STATUSES:
        return TRANSIENT
    if isinstance(code, str) and code in TRANSIENT_CODES:
        if code == "InternalServerException" and status is not None and status < 500:
            return PERMANENT
        return TRANSIENT
    if status is not None and 400 <= status < 500:
        return PERMANENT
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return TRANSIENT
    if _TRANSIENT_WORDING.search(str(exc)):
        return TRANSIENT
    return PERMANENT


class RetryQueueManager:
    """Queue/notify policy plus the dequeue worker."""

    def __init__(self, store, channel, liveness_enabled: bool = True):
        self.store = store
        self.channel = channel
        self.liveness_enabled = liveness_enabled

    async def handle_failure(self, exc: BaseException, request: MessageRequest) -> str:
        """Decide what a failed run means for the queue. Returns the outcome status."""
        cid = request.conversation_id
        kind = classify_error(exc)
        logger.error(f"[chat {cid}] ERROR {kind} failure: {exc}")

        if kind == TRANSIENT:
            if request.is_retry:
                item = self.store.queue.release(request.queue_item_id)
                attempts = item.attempts if item else "?"
                logger.info(f"[chat {cid}] QUEUE item {request.queue_item_id} back to pending (attempt {attempts})")
            else:
                item = self.store.queue.add(cid, request.text, request.media, request.mime_type)
                logger.info(f"[chat {cid}] QUEUE created item {item.id}")
                await self.channel.send(cid, QUEUED_NOTICE)
            return STATUS_QUEUED

        if request.is_retry:
            self.store.queue.delete(request.queue_item_id)
            logger.info(f"[chat {cid}] QUEUE dropped item {request.queue_item_id} after permanent failure")
        await self.channel.send(cid, f"❌ Error: {exc}")
        return STATUS_FAILED

    async def check_queue(self, runner: Runner) -> Optional[RunOutcome]:
        """One dequeue tick: claim the oldest pending item and replay it."""
        pending = self.store.queue.oldest_pending()
        if pending is None:
            return None
        item = self.store.queue.claim(pending.id)
        if item is None:
            logger.debug(f"Queue item {pending.id} was claimed elsewhere")
            return None

        logger.info(f"[chat {item.conversation_id}] QUEUE replaying item {item.id} (attempt {item.attempts})")
        request = MessageRequest(
            conversation_id=item.conversation_id,
            text=item.user_message,
            media=item.media_bytes(),
            mime_type=item.mime_type,
            queue_item_id=item.id,
        )
        try:
            outcome = await runner(request)
        except Exception as e:
            logger.exception(f"[chat {item.conversation_id}] ERROR replay of {item.id} crashed: {e}")
            self.store.queue.release(item.id)
            return None

        # queued/failed outcomes already released or deleted the item
        if outcome.status not in (STATUS_QUEUED, STATUS_FAILED):
            self.store.queue.delete(item.id)
        return outcome

    async def drain(self, runner: Runner, limit: int = 10) -> int:
        """Replay up to limit items. Returns how many ticks ran."""
        processed = 0
        while processed < limit:
            outcome = await self.check_queue(runner)
            if outcome is None:
                break
            processed += 1
            # Still overloaded: leave the rest for a later tick
            if outcome.status == STATUS_QUEUED:
                break
        return processed

    async def run_worker(self, runner: Runner, interval: float, stop_event: asyncio.Event) -> None:
        """Interval loop: refresh liveness, then run one tick."""
        logger.info(f"Queue worker started (every {interval:.0f}s)")
        while not stop_event.is_set():
            try:
                if self.liveness_enabled:
                    self.store.liveness.touch()
                await self.check_queue(runner)
            except Exception as e:
                logger.exception(f"Queue worker tick failed: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Queue worker stopped")
