"""Turn loop orchestrator tests, driven with a scripted completion service."""

import asyncio

from agent.events import (
    MessageRequest,
    STATUS_COMMAND, STATUS_DENIED, STATUS_DONE, STATUS_FAILED, STATUS_IGNORED, STATUS_QUEUED,
)
from agent.execution import OrchestratorDeps, StreamFlusher, process_one_message, progress_notice
from agent.retry_queue import QUEUED_NOTICE, RetryQueueManager
from agent.turns import ToolCallPart, ROLE_MODEL, ROLE_TOOL, ROLE_USER
from bedrock_service import BedrockError
from conftest import RecordingChannel, ScriptedService, text_events, tool_events


def make_deps(store, channel, policy, app_config, script, **kw):
    service = ScriptedService(script)
    deps = OrchestratorDeps(
        store=store,
        channel=channel,
        service=service,
        policy=policy,
        config=app_config,
        queue_manager=RetryQueueManager(store, channel, liveness_enabled=False),
        reconcile=False,
        **kw,
    )
    return deps, service


def run(request, deps):
    return asyncio.run(process_one_message(request, deps))


def test_tool_call_then_answer(store, channel, policy, app_config, workspace):
    script = [
        tool_events("t1", "write_file", {"path": "hello.txt", "content": "hi\n"}),
        text_events("Created hello.txt"),
    ]
    deps, service = make_deps(store, channel, policy, app_config, script)

    outcome = run(MessageRequest("42", "create hello.txt"), deps)

    assert outcome.status == STATUS_DONE
    assert outcome.turns == 2
    assert (workspace / "hello.txt").read_text() == "hi\n"

    # second submission carries the tool result paired with the call
    last = service.calls[1]["messages"][-1]
    assert last["role"] == "user"
    assert last["content"][0]["type"] == "tool_result"
    assert last["content"][0]["tool_use_id"] == "t1"
    assert "Success: Wrote to hello.txt" in last["content"][0]["content"]

    texts = channel.texts("42")
    assert "🛠️ *Executing:* `write_file`\n`hello.txt`" in texts
    assert texts[-1] == "Created hello.txt"

    roles = [t.role for t in store.turns.all("42")]
    assert roles == [ROLE_USER, ROLE_MODEL, ROLE_TOOL, ROLE_MODEL]


def test_continuation_token_round_trips(store, channel, policy, app_config):
    script = [
        tool_events("t1", "list_directory", {"path": "."}, thinking="look around first"),
        text_events("Nothing here."),
    ]
    deps, service = make_deps(store, channel, policy, app_config, script)

    run(MessageRequest("7", "what is in the repo?"), deps)

    assistant = service.calls[1]["messages"][1]
    assert assistant["role"] == "assistant"
    assert assistant["content"][0] == {"type": "thinking", "thinking": "look around first", "signature": "sig-1"}
    assert assistant["content"][1]["type"] == "tool_use"

    # and it survives the turn log
    model_turn = [t for t in store.turns.all("7") if t.role == ROLE_MODEL][0]
    assert model_turn.parts[0].continuation_token["signature"] == "sig-1"


def test_path_escape_is_reported_to_the_model(store, channel, policy, app_config, workspace):
    script = [
        tool_events("t1", "write_file", {"path": "../evil.txt", "content": "x"}),
        text_events("I cannot write there."),
    ]
    deps, service = make_deps(store, channel, policy, app_config, script)

    outcome = run(MessageRequest("1", "write outside"), deps)

    assert outcome.status == STATUS_DONE
    assert not (workspace.parent / "evil.txt").exists()
    result = service.calls[1]["messages"][-1]["content"][0]
    assert result["is_error"] is True
    assert "outside of the repository root" in result["content"]


def test_tool_calls_run_in_order(store, channel, policy, app_config, workspace):
    events = tool_events("a", "write_file", {"path": "f.txt", "content": "one"})[:-1]
    events += tool_events("b", "write_file", {"path": "f.txt", "content": "two"})
    deps, service = make_deps(store, channel, policy, app_config, [events, text_events("ok")])

    run(MessageRequest("1", "write twice"), deps)

    assert (workspace / "f.txt").read_text() == "two"
    results = service.calls[1]["messages"][-1]["content"]
    assert [r["tool_use_id"] for r in results] == ["a", "b"]


def test_turn_budget_bounds_submissions(store, channel, policy, app_config):
    app_config.max_turns = 3
    script = [tool_events(f"t{i}", "list_directory", {}) for i in range(10)]
    deps, service = make_deps(store, channel, policy, app_config, script)

    outcome = run(MessageRequest("1", "loop forever"), deps)

    assert outcome.status == STATUS_DONE
    assert outcome.turns == 3
    assert len(service.calls) == 3


def test_streamed_deltas_are_debounced(store, channel, policy, app_config):
    app_config.stream_flush_interval = 30.0
    deltas = ["word "] * 200
    deps, service = make_deps(store, channel, policy, app_config, [text_events("", deltas=deltas)])

    run(MessageRequest("1", "talk a lot"), deps)

    assert len(channel.sent) == 1
    assert channel.edits == []
    assert channel.sent[0][1] == ("word " * 200).strip()


def test_flusher_sends_then_edits():
    async def scenario():
        ch = RecordingChannel()
        flusher = StreamFlusher(ch, "1", interval=0.01)
        flusher.append("Hello")
        await asyncio.sleep(0.1)
        flusher.append(", world")
        await asyncio.sleep(0.1)
        await flusher.close()
        return ch

    ch = asyncio.run(scenario())
    assert [t for _, t, _ in ch.sent] == ["Hello"]
    assert ch.edits == [("1", 1, "Hello, world")]


def test_reply_tool_sends_intermediate_message(store, channel, policy, app_config):
    script = [
        tool_events("t1", "reply", {"text": "Working on it..."}),
        text_events("All done."),
    ]
    deps, _ = make_deps(store, channel, policy, app_config, script)

    run(MessageRequest("1", "do a thing"), deps)

    assert "Working on it..." in channel.texts("1")


def test_slash_command_skips_the_model(store, channel, policy, app_config):
    deps, service = make_deps(store, channel, policy, app_config, [])

    outcome = run(MessageRequest("1", "/ping"), deps)

    assert outcome.status == STATUS_COMMAND
    assert service.calls == []
    assert channel.texts("1") == ["🏓 Pong!"]
    assert [t.text for t in store.turns.all("1")] == ["/ping"]


def test_unknown_slash_command_goes_to_the_model(store, channel, policy, app_config):
    deps, service = make_deps(store, channel, policy, app_config, [text_events("Not a command.")])

    outcome = run(MessageRequest("1", "/usr/bin is where?"), deps)

    assert outcome.status == STATUS_DONE
    assert len(service.calls) == 1


def test_denied_caller_gets_nothing_persisted(store, channel, policy, app_config):
    app_config.allowed_conversation_ids = ["someone-else"]
    deps, service = make_deps(store, channel, policy, app_config, [])

    outcome = run(MessageRequest("intruder", "rm everything"), deps)

    assert outcome.status == STATUS_DENIED
    assert channel.texts() == ["🛡️ Access Denied."]
    assert store.turns.all("intruder") == []
    assert store.queue.list() == []
    assert service.calls == []


def test_empty_message_is_ignored(store, channel, policy, app_config):
    deps, service = make_deps(store, channel, policy, app_config, [])
    assert run(MessageRequest("1", "   "), deps).status == STATUS_IGNORED
    assert service.calls == []


def test_transient_failure_queues_then_replays_once(store, channel, policy, app_config):
    overloaded = BedrockError("Model is overloaded", status=503, code="ServiceUnavailableException")
    deps, service = make_deps(store, channel, policy, app_config, [overloaded, text_events("Done now.")])

    async def scenario():
        first = await process_one_message(MessageRequest("9", "fix the bug"), deps)
        queued = store.queue.list()
        replay = await deps.queue_manager.check_queue(lambda r: process_one_message(r, deps))
        return first, queued, replay

    first, queued, replay = asyncio.run(scenario())

    assert first.status == STATUS_QUEUED
    assert len(queued) == 1 and queued[0].user_message == "fix the bug"
    assert QUEUED_NOTICE in channel.texts("9")

    assert replay.status == STATUS_DONE
    assert store.queue.list() == []
    user_turns = [t for t in store.turns.all("9") if t.role == ROLE_USER]
    assert [t.text for t in user_turns] == ["fix the bug"]
    # the replayed submission holds the request exactly once
    assert service.calls[1]["messages"][0]["content"] == [{"type": "text", "text": "fix the bug"}]


def test_permanent_failure_reports_and_does_not_queue(store, channel, policy, app_config):
    invalid = BedrockError("Validation failed", status=400, code="ValidationException")
    deps, _ = make_deps(store, channel, policy, app_config, [invalid])

    outcome = run(MessageRequest("3", "hello"), deps)

    assert outcome.status == STATUS_FAILED
    assert store.queue.list() == []
    assert channel.texts("3")[-1] == "❌ Error: Validation failed"


def test_history_feeds_the_next_request(store, channel, policy, app_config):
    deps, service = make_deps(store, channel, policy, app_config, [text_events("First answer."), text_events("Second.")])

    run(MessageRequest("5", "first question"), deps)
    run(MessageRequest("5", "second question"), deps)

    messages = service.calls[1]["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[-1]["content"][-1]["text"] == "second question"


def test_generic_media_type_is_sniffed_on_arrival(store, channel, policy, app_config):
    deps, service = make_deps(store, channel, policy, app_config, [text_events("A logo.")])
    png = b"\x89PNG\r\n\x1a\n0000"

    run(MessageRequest("6", "what is this?", media=png, mime_type="application/octet-stream"), deps)

    blocks = service.calls[0]["messages"][0]["content"]
    assert [b["type"] for b in blocks] == ["text", "image"]
    assert blocks[1]["source"]["media_type"] == "image/png"
    stored = store.turns.all("6")[0]
    assert stored.parts[1].mime_type == "image/png"


def test_reasoning_only_response_is_persisted(store, channel, policy, app_config):
    thinking_only = [
        {"type": "thinking_start", "content": ""},
        {"type": "thinking", "content": "Nothing to say."},
        {"type": "thinking_end", "content": "", "signature": "sig-9"},
        {"type": "message_end", "content": "", "stop_reason": "end_turn"},
    ]
    deps, service = make_deps(store, channel, policy, app_config, [thinking_only, text_events("Now I answer.")])

    outcome = run(MessageRequest("8", "first"), deps)
    assert outcome.status == STATUS_DONE
    model_turns = [t for t in store.turns.all("8") if t.role == ROLE_MODEL]
    assert len(model_turns) == 1 and model_turns[0].parts == []

    run(MessageRequest("8", "second"), deps)
    messages = service.calls[1]["messages"]
    assert [m["role"] for m in messages] == ["user"]
    assert [b["text"] for b in messages[0]["content"]] == ["first", "second"]


def test_progress_notice_for_move():
    call = ToolCallPart(name="move_file", args={"source": "a.py", "destination": "b.py"}, call_id="x")
    assert progress_notice(call) == "🛠️ *Executing:* `move_file`\n`a.py → b.py`"


def test_reconciliation_commits_after_the_loop(store, channel, policy, app_config, git_workspace):
    script = [
        tool_events("t1", "write_file", {"path": "notes.txt", "content": "note\n"}),
        text_events("Saved."),
    ]
    deps, service = make_deps(store, channel, policy, app_config, script)
    deps.reconcile = True
    service.commit_message = "Add notes"

    outcome = run(MessageRequest("1", "save a note"), deps)

    assert outcome.reconciliation.committed
    assert outcome.reconciliation.message == "Add notes"
    # no remote configured, so the push failure is reported
    assert not outcome.reconciliation.pushed
    assert any("push failed" in t for t in channel.texts("1"))
