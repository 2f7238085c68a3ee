"""Retry queue manager: error classification, queue/notify policy and the dequeue tick."""

import asyncio

from botocore.exceptions import EndpointConnectionError, ReadTimeoutError

from agent.events import MessageRequest, RunOutcome, STATUS_DONE, STATUS_FAILED, STATUS_QUEUED
from agent.retry_queue import PERMANENT, QUEUED_NOTICE, TRANSIENT, RetryQueueManager, classify_error
from bedrock_service import BedrockError
from errors import PermanentUpstreamError, TransientUpstreamError


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def test_classify_by_status():
    assert classify_error(BedrockError("slow down", status=429, code="ThrottlingException")) == TRANSIENT
    assert classify_error(BedrockError("busy", status=503)) == TRANSIENT
    assert classify_error(BedrockError("gateway", status=504)) == TRANSIENT
    assert classify_error(_StatusError("nope", 503)) == TRANSIENT
    assert classify_error(BedrockError("bad input", status=400, code="ValidationException")) == PERMANENT
    assert classify_error(BedrockError("denied", status=403, code="AccessDeniedException")) == PERMANENT
    assert classify_error(_StatusError("bad gateway", 502)) == PERMANENT


def test_classify_by_code():
    assert classify_error(BedrockError("x", code="ModelNotReadyException")) == TRANSIENT
    assert classify_error(BedrockError("x", status=500, code="InternalServerException")) == TRANSIENT
    assert classify_error(BedrockError("x", code="TimeoutError")) == TRANSIENT


def test_classify_by_exception_type():
    assert classify_error(ConnectionResetError("reset by peer")) == TRANSIENT
    assert classify_error(TimeoutError()) == TRANSIENT
    assert classify_error(EndpointConnectionError(endpoint_url="https://bedrock")) == TRANSIENT
    assert classify_error(ReadTimeoutError(endpoint_url="https://bedrock")) == TRANSIENT
    assert classify_error(TransientUpstreamError("try later")) == TRANSIENT
    assert classify_error(PermanentUpstreamError("overloaded but final", status=503)) == PERMANENT


def test_classify_by_wording():
    assert classify_error(RuntimeError("The model is overloaded")) == TRANSIENT
    assert classify_error(RuntimeError("fetch failed: ECONNRESET")) == TRANSIENT
    assert classify_error(RuntimeError("upstream returned 503")) == TRANSIENT
    assert classify_error(ValueError("malformed request")) == PERMANENT


def test_transient_fresh_request_is_queued_with_notice(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    request = MessageRequest("1", "do it", media=b"\x89PNG\r\n\x1a\n...", mime_type="image/png")

    status = asyncio.run(manager.handle_failure(BedrockError("overloaded", status=503), request))

    assert status == STATUS_QUEUED
    [item] = store.queue.list()
    assert item.user_message == "do it"
    assert item.media_bytes() == b"\x89PNG\r\n\x1a\n..."
    assert item.mime_type == "image/png"
    assert channel.texts("1") == [QUEUED_NOTICE]


def test_transient_retry_resets_item_without_duplicate(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    item = store.queue.add("1", "do it")
    store.queue.claim(item.id)

    status = asyncio.run(manager.handle_failure(
        BedrockError("busy", status=503), MessageRequest("1", "do it", queue_item_id=item.id)))

    assert status == STATUS_QUEUED
    [again] = store.queue.list()
    assert again.id == item.id
    assert again.status == "pending"
    assert channel.texts() == []


def test_permanent_failure_on_retry_deletes_item(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    item = store.queue.add("1", "do it")
    store.queue.claim(item.id)

    status = asyncio.run(manager.handle_failure(
        BedrockError("invalid", status=400), MessageRequest("1", "do it", queue_item_id=item.id)))

    assert status == STATUS_FAILED
    assert store.queue.list() == []
    assert channel.texts("1") == ["❌ Error: invalid"]


def test_check_queue_deletes_on_success(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    item = store.queue.add("1", "do it")
    seen = []

    async def runner(request):
        seen.append(request)
        return RunOutcome(status=STATUS_DONE)

    outcome = asyncio.run(manager.check_queue(runner))

    assert outcome.status == STATUS_DONE
    assert seen[0].queue_item_id == item.id
    assert seen[0].is_retry
    assert store.queue.list() == []


def test_check_queue_releases_when_runner_crashes(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    item = store.queue.add("1", "do it")

    async def runner(request):
        raise RuntimeError("boom")

    assert asyncio.run(manager.check_queue(runner)) is None
    again = store.queue.get(item.id)
    assert again.status == "pending"
    assert again.attempts == 2


def test_check_queue_with_empty_queue(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)

    async def runner(request):
        raise AssertionError("should not run")

    assert asyncio.run(manager.check_queue(runner)) is None


def test_drain_processes_oldest_first_and_stops_when_still_overloaded(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=False)
    first = store.queue.add("1", "first")
    store.queue.add("1", "second")
    store.queue.add("1", "third")
    order = []

    async def runner(request):
        order.append(request.text)
        if request.text == "second":
            store.queue.release(request.queue_item_id)
            return RunOutcome(status=STATUS_QUEUED)
        return RunOutcome(status=STATUS_DONE)

    processed = asyncio.run(manager.drain(runner, limit=10))

    assert processed == 2
    assert order == ["first", "second"]
    assert store.queue.get(first.id) is None
    assert [i.user_message for i in store.queue.list()] == ["second", "third"]


def test_worker_ticks_and_refreshes_liveness(store, channel):
    manager = RetryQueueManager(store, channel, liveness_enabled=True)
    store.queue.add("1", "queued work")
    done = []

    async def runner(request):
        done.append(request.text)
        return RunOutcome(status=STATUS_DONE)

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(manager.run_worker(runner, 0.01, stop))
        for _ in range(100):
            if done:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await task

    asyncio.run(scenario())

    assert done == ["queued work"]
    assert store.liveness.read()["last_seen"] > 0
