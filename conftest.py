"""Shared fixtures: temporary workspace, file store and a recording chat channel."""

import copy
import json
import subprocess

import pytest

from channels import ChatChannel
from config import AppConfig
from store import FileStore
from tools import SafetyPolicy


class RecordingChannel(ChatChannel):
    """Keeps every send and edit in memory."""

    def __init__(self):
        self.sent = []      # (conversation_id, text, handle)
        self.edits = []     # (conversation_id, handle, text)
        self._next = 0

    async def _send(self, conversation_id, text, formatted):
        self._next += 1
        self.sent.append((conversation_id, text, self._next))
        return self._next

    async def _edit(self, conversation_id, handle, text, formatted):
        self.edits.append((conversation_id, handle, text))
        return True

    def texts(self, conversation_id=None):
        return [t for cid, t, _ in self.sent if conversation_id is None or cid == conversation_id]


class ScriptedService:
    """Stands in for BedrockService. Each stream call consumes one script entry.

    An entry is a list of stream events, or an exception to raise.
    """

    def __init__(self, script=None, commit_message="Update files"):
        self.script = list(script or [])
        self.calls = []
        self.commit_message = commit_message
        self.text_prompts = []

    def generate_response_stream(self, messages, system_prompt=None, tools=None, config=None, model_id=None):
        self.calls.append({"messages": copy.deepcopy(messages), "system_prompt": system_prompt, "tools": tools})
        entry = self.script.pop(0) if self.script else text_events("Done.")
        if isinstance(entry, BaseException):
            raise entry
        for event in entry:
            yield event

    def generate_text(self, prompt, model_id=None, max_tokens=200):
        self.text_prompts.append(prompt)
        if isinstance(self.commit_message, BaseException):
            raise self.commit_message
        return self.commit_message


def text_events(text, deltas=None):
    chunks = deltas if deltas is not None else [text]
    events = [{"type": "text_start", "content": ""}]
    events += [{"type": "text", "content": c} for c in chunks]
    events += [{"type": "text_end", "content": ""}, {"type": "message_end", "content": "", "stop_reason": "end_turn"}]
    return events


def tool_events(call_id, name, args, thinking=None, signature="sig-1"):
    events = []
    if thinking is not None:
        events += [
            {"type": "thinking_start", "content": ""},
            {"type": "thinking", "content": thinking},
            {"type": "thinking_end", "content": "", "signature": signature},
        ]
    events += [
        {"type": "tool_use_start", "content": "", "data": {"id": call_id, "name": name}},
        {"type": "tool_use_delta", "content": json.dumps(args)},
        {"type": "tool_use_end", "content": ""},
        {"type": "message_end", "content": "", "stop_reason": "tool_use"},
    ]
    return events


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def git_workspace(workspace):
    def git(*args):
        subprocess.run(["git", *args], cwd=workspace, check=True, capture_output=True, text=True)
    git("init", "-q")
    git("config", "user.name", "Test")
    git("config", "user.email", "test@example.com")
    (workspace / "README.md").write_text("hello\n")
    git("add", "-A")
    git("commit", "-q", "-m", "initial")
    return workspace


@pytest.fixture
def store(tmp_path):
    return FileStore(str(tmp_path / "store"))


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def policy(workspace):
    return SafetyPolicy(str(workspace))


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        store_dir=str(tmp_path / "store"),
        allowed_conversation_ids=[],
        max_turns=10,
        history_limit=20,
        stream_flush_interval=0.05,
        shell_timeout=30,
        unsafe_mode=False,
    )
