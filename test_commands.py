"""Slash commands."""

import asyncio

from agent.commands import CommandContext, handle_command
from agent.turns import Turn, TextPart, ROLE_MODEL, ROLE_USER


def _ctx(store, channel, root, cid="1"):
    return CommandContext(conversation_id=cid, store=store, channel=channel, workspace_root=str(root))


def _run(text, ctx):
    return asyncio.run(handle_command(text, ctx))


def test_ping_and_help(store, channel, workspace):
    ctx = _ctx(store, channel, workspace)
    assert _run("/ping", ctx)
    assert _run("/help@relay_bot", ctx)
    texts = channel.texts("1")
    assert texts[0] == "🏓 Pong!"
    assert "/gitlog" in texts[1]


def test_unknown_command_is_not_handled(store, channel, workspace):
    assert not _run("/deploy now", _ctx(store, channel, workspace))
    assert channel.texts() == []


def test_log_shows_only_this_chat(store, channel, workspace):
    store.turns.append(Turn("1", ROLE_USER, [TextPart("add a readme please")], 1000.0))
    store.turns.append(Turn("1", ROLE_MODEL, [TextPart("Done, README added")], 1001.0))
    store.turns.append(Turn("2", ROLE_USER, [TextPart("other chat secret")], 1002.0))

    _run("/log 5", _ctx(store, channel, workspace))

    text = channel.texts("1")[0]
    assert "Last 5" in text
    assert "add a readme please" in text
    assert "other chat secret" not in text
    assert text.index("add a readme") < text.index("Done, README")


def test_log_with_empty_history(store, channel, workspace):
    _run("/log", _ctx(store, channel, workspace))
    assert channel.texts("1") == ["No history found."]


def test_queue_listing(store, channel, workspace):
    ctx = _ctx(store, channel, workspace)
    _run("/queue", ctx)
    store.queue.add("1", "a very long request that needs a retry")
    _run("/queue", ctx)
    texts = channel.texts("1")
    assert texts[0] == "📭 Queue is empty."
    assert "Current Queue (1)" in texts[1]
    assert "a very long request ..." in texts[1]


def test_stats_counts_roles(store, channel, workspace):
    store.turns.append(Turn("1", ROLE_USER, [TextPart("a")]))
    store.turns.append(Turn("1", ROLE_MODEL, [TextPart("b")]))
    store.turns.append(Turn("2", ROLE_USER, [TextPart("c")]))

    _run("/stats", _ctx(store, channel, workspace))

    text = channel.texts("1")[0]
    assert "User Messages: 2" in text
    assert "Model Responses: 1" in text
    assert "Unique Chats: 2" in text


def test_git_commands(store, channel, git_workspace):
    ctx = _ctx(store, channel, git_workspace)
    _run("/gitlog", ctx)
    _run("/git", ctx)
    _run("/status", ctx)
    log, info, status = channel.texts("1")
    assert "initial" in log
    assert "Status:" in info and "Clean" in info
    assert "System Status" in status


def test_git_command_outside_a_repository(store, channel, workspace):
    _run("/gitlog", _ctx(store, channel, workspace))
    assert channel.texts("1")[0].startswith("❌ Failed to fetch git log")
