"""
Slash commands answered without calling the model.
"""

import asyncio
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List

from agent.turns import Turn, TextPart, ToolCallPart, ToolResultPart, InlineMediaPart, ROLE_MODEL, ROLE_USER

logger = logging.getLogger(__name__)

PROCESS_STARTED = time.time()


@dataclass
class CommandContext:
    conversation_id: str
    store: Any
    channel: Any
    workspace_root: str
    mode: str = "listen"
    unsafe: bool = False


HELP_TEXT = (
    "🤖 *Bedrock Relay Help*\n\n"
    "/status - Show system status & disk usage\n"
    "/stats - Show usage statistics\n"
    "/log [n] - Show last n messages of this chat (default 10)\n"
    "/git - Show git branch & status\n"
    "/gitlog - Show last 5 git commits\n"
    "/queue - Show queued tasks\n"
    "/ping - Check if the relay is alive\n"
    "/help - Show this message\n\n"
    "Any other message is handled by the agent."
)


def _git_output(root: str, args: List[str]) -> str:
    proc = subprocess.run(["git"] + args, cwd=root, capture_output=True, text=True, timeout=30)
    if proc.returncode != 0:
        raise RuntimeError((proc.stderr or proc.stdout).strip() or f"git exited with code {proc.returncode}")
    return proc.stdout.strip()


def _turn_summary(turn: Turn) -> str:
    pieces = []
    for p in turn.parts:
        if isinstance(p, TextPart) and p.text:
            pieces.append(p.text)
        elif isinstance(p, ToolCallPart):
            pieces.append(f"[Tool: {p.name}]")
        elif isinstance(p, ToolResultPart):
            pieces.append(f"[Result: {p.name}]")
        elif isinstance(p, InlineMediaPart):
            pieces.append(f"[{p.mime_type or 'media'}]")
    text = " ".join(pieces).replace("\n", " ")
    return text[:30] + "..." if len(text) > 30 else text


def cmd_log(args: List[str], ctx) -> str:
    try:
        limit = int(args[0]) if args else 10
    except ValueError:
        limit = 10
    limit = min(max(limit, 1), 50)
    turns = list(reversed(ctx.store.turns.recent(ctx.conversation_id, limit)))
    if not turns:
        return "No history found."
    lines = [f"📜 *Recent Activity (Last {limit}):*\n"]
    icons = {ROLE_MODEL: "🤖", ROLE_USER: "👤"}
    for t in turns:
        when = datetime.fromtimestamp(t.timestamp).strftime("%H:%M:%S")
        lines.append(f"`[{when}]` {icons.get(t.role, '🛠️')} {_turn_summary(t)}")
    return "\n".join(lines)


def cmd_gitlog(args: List[str], ctx) -> str:
    try:
        log = _git_output(ctx.workspace_root, ["log", "-n", "5", "--pretty=format:%h - %s (%cr)"])
    except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
        return f"❌ Failed to fetch git log: {e}"
    return f"🌳 *Recent Commits:*\n\n```\n{log or '(no commits)'}\n```"


def cmd_git(args: List[str], ctx) -> str:
    try:
        branch = _git_output(ctx.workspace_root, ["rev-parse", "--abbrev-ref", "HEAD"])
        status = _git_output(ctx.workspace_root, ["status", "--short"]) or "Clean"
    except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
        return f"❌ Failed to fetch git info: {e}"
    return f"🎋 *Git Info*\n\n*Branch:* {branch}\n*Status:*\n```\n{status}\n```"


def cmd_status(args: List[str], ctx) -> str:
    uptime = int(time.time() - PROCESS_STARTED)
    hours, rem = divmod(uptime, 3600)
    minutes, seconds = divmod(rem, 60)
    try:
        version = _git_output(ctx.workspace_root, ["rev-parse", "--short", "HEAD"])
    except (RuntimeError, OSError, subprocess.TimeoutExpired):
        version = "unknown"
    try:
        usage = shutil.disk_usage(ctx.workspace_root)
        disk = f"{usage.used * 100 // usage.total}%"
    except OSError:
        disk = "unknown"
    return (
        "✅ *System Status*\n\n"
        f"⏱ *Uptime:* {hours}h {minutes}m {seconds}s\n"
        f"💾 *Disk Usage:* {disk}\n"
        f"📦 *Version:* `{version}`\n"
        f"⚙️ *Mode:* {ctx.mode.capitalize()}\n"
        f"🔓 *Unsafe mode:* {'on' if ctx.unsafe else 'off'}\n"
        f"📂 *Root:* `{ctx.workspace_root}`"
    )


def cmd_stats(args: List[str], ctx) -> str:
    total = user_count = model_count = 0
    per_chat: Dict[str, int] = {}
    for cid in ctx.store.turns.conversations():
        counts = ctx.store.turns.count_by_role(cid)
        total += sum(counts.values())
        model_count += counts.get(ROLE_MODEL, 0)
        users = counts.get(ROLE_USER, 0)
        user_count += users
        if users:
            per_chat[cid] = users
    lines = [
        "📊 *Usage Statistics*\n",
        f"Total Log Entries: {total}",
        f"👤 User Messages: {user_count}",
        f"🤖 Model Responses: {model_count}",
        f"Unique Chats: {len(per_chat)}\n",
        "*Chat Activity:*",
    ]
    lines.extend(f"• `{cid}`: {count}" for cid, count in sorted(per_chat.items()))
    return "\n".join(lines)


def cmd_ping(args: List[str], ctx) -> str:
    return "🏓 Pong!"


def cmd_queue(args: List[str], ctx) -> str:
    items = ctx.store.queue.list()
    if not items:
        return "📭 Queue is empty."
    lines = [f"⏳ *Current Queue ({len(items)}):*\n"]
    for item in items:
        preview = item.user_message[:20] + ("..." if len(item.user_message) > 20 else "")
        lines.append(f"• `{preview}` ({item.status}, attempts: {item.attempts})")
    return "\n".join(lines)


def cmd_help(args: List[str], ctx) -> str:
    return HELP_TEXT


COMMANDS: Dict[str, Callable[..., str]] = {
    "/log": cmd_log,
    "/gitlog": cmd_gitlog,
    "/git": cmd_git,
    "/status": cmd_status,
    "/stats": cmd_stats,
    "/ping": cmd_ping,
    "/queue": cmd_queue,
    "/help": cmd_help,
}


async def handle_command(text: str, ctx: CommandContext) -> bool:
    """Answer a slash command. Returns False if text is not a known command."""
    parts = (text or "").strip().split()
    if not parts:
        return False
    # Telegram-style "/cmd@botname"
    name = parts[0].split("@", 1)[0].lower()
    handler = COMMANDS.get(name)
    if handler is None:
        return False
    logger.info(f"[chat {ctx.conversation_id}] CMD Executing {name}")
    reply = await asyncio.to_thread(handler, parts[1:], ctx)
    await ctx.channel.send(ctx.conversation_id, reply)
    return True
