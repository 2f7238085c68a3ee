"""File store: turn log, queue claims and the liveness record."""

import json
import os
import socket
import threading
import time

from agent.turns import Turn, TextPart, ToolCallPart, ToolResultPart, InlineMediaPart, ROLE_MODEL, ROLE_TOOL, ROLE_USER
from store import FileStore


def test_turn_log_round_trip_and_order(store):
    t0 = time.time()
    store.turns.append(Turn("c1", ROLE_USER, [TextPart("hi"), InlineMediaPart(b"\x00\x01", "image/png")], t0))
    store.turns.append(Turn("c1", ROLE_MODEL, [ToolCallPart("read_file", {"path": "a"}, "t1",
                                                            {"type": "thinking", "thinking": "x", "signature": "s"})], t0 + 1))
    store.turns.append(Turn("c1", ROLE_TOOL, [ToolResultPart("read_file", "t1", error="File not found: a")], t0 + 2))
    store.turns.append(Turn("other", ROLE_USER, [TextPart("elsewhere")], t0 + 3))

    turns = store.turns.all("c1")
    assert [t.role for t in turns] == [ROLE_USER, ROLE_MODEL, ROLE_TOOL]
    assert turns[0].parts[1].data == b"\x00\x01"
    assert turns[1].parts[0].continuation_token["signature"] == "s"
    assert turns[2].parts[0].response == {"error": "File not found: a"}

    recent = store.turns.recent("c1", 2)
    assert [t.role for t in recent] == [ROLE_TOOL, ROLE_MODEL]
    assert store.turns.count_by_role("c1") == {ROLE_USER: 1, ROLE_MODEL: 1, ROLE_TOOL: 1}
    assert store.turns.conversations() == ["c1", "other"]


def test_torn_line_is_skipped(store):
    store.turns.append(Turn("c1", ROLE_USER, [TextPart("kept")]))
    path = os.path.join(store.base_dir, "turns", "c1.jsonl")
    with open(path, "a") as f:
        f.write('{"conversation_id": "c1", "role": "us')

    assert [t.text for t in store.turns.all("c1")] == ["kept"]


def test_claim_is_exclusive(store):
    item = store.queue.add("c1", "retry me")
    results = []

    def claim():
        results.append(store.queue.claim(item.id))

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert winners[0].status == "processing"
    assert store.queue.oldest_pending() is None


def test_release_and_delete(store):
    item = store.queue.add("c1", "retry me")
    store.queue.claim(item.id)
    assert not store.queue.has_pending()

    released = store.queue.release(item.id)
    assert released.status == "pending"
    assert store.queue.has_pending()

    assert store.queue.delete(item.id)
    assert not store.queue.delete(item.id)
    assert store.queue.get(item.id) is None


def test_queue_survives_reopen(tmp_path):
    first = FileStore(str(tmp_path / "s"))
    item = first.queue.add("c1", "persist me", media=b"abc", mime_type="text/plain")

    second = FileStore(str(tmp_path / "s"))
    again = second.queue.get(item.id)
    assert again.user_message == "persist me"
    assert again.media_bytes() == b"abc"


def test_liveness_ignores_own_process(store):
    store.liveness.touch()
    assert not store.liveness.is_fresh(90)


def test_liveness_of_another_instance(store):
    path = store.liveness.path
    with open(path, "w") as f:
        json.dump({"last_seen": time.time(), "pid": os.getpid() + 1, "host": socket.gethostname()}, f)
    assert store.liveness.is_fresh(90)
    assert not store.liveness.is_fresh(90, now=time.time() + 120)
