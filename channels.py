"""
Chat delivery channels.

A channel sends a message and can later edit it in place. Delivery is best
effort: formatting rejections fall back to plain text, and any other failure
is logged and swallowed so the turn loop never stops on a chat error.
"""

import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape as rich_escape
from rich.panel import Panel

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4000
TRUNCATION_SUFFIX = "\n\n... (message truncated)"


def truncate_message(text: str, limit: int = MAX_MESSAGE_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


class FormattingError(Exception):
    """The channel rejected rich formatting; retry as plain text."""


class ChatChannel(ABC):
    """Outbound chat messages for one transport."""

    async def send(self, conversation_id: str, text: str) -> Optional[Any]:
        """Send a new message. Returns a handle for edit(), or None on failure."""
        text = truncate_message(text)
        try:
            try:
                return await self._send(conversation_id, text, formatted=True)
            except FormattingError:
                return await self._send(conversation_id, text, formatted=False)
        except Exception as e:
            logger.error(f"[chat {conversation_id}] ERROR send failed: {e}")
            return None

    async def edit(self, conversation_id: str, handle: Any, text: str) -> bool:
        """Replace the text of a previously sent message."""
        text = truncate_message(text)
        try:
            try:
                return await self._edit(conversation_id, handle, text, formatted=True)
            except FormattingError:
                return await self._edit(conversation_id, handle, text, formatted=False)
        except Exception as e:
            logger.error(f"[chat {conversation_id}] ERROR edit failed: {e}")
            return False

    @abstractmethod
    async def _send(self, conversation_id: str, text: str, formatted: bool) -> Any:
        ...

    @abstractmethod
    async def _edit(self, conversation_id: str, handle: Any, text: str, formatted: bool) -> bool:
        ...


class ConsoleChannel(ChatChannel):
    """Prints messages to the terminal with rich. Edits print only what was appended."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._ids = itertools.count(1)
        self._shown: Dict[int, str] = {}

    def _render(self, conversation_id: str, text: str, formatted: bool, title: str) -> None:
        if formatted:
            try:
                body: Any = Markdown(text)
                self.console.print(Panel(body, title=rich_escape(title), title_align="left"))
                return
            except Exception as e:
                raise FormattingError(str(e)) from e
        self.console.print(f"[{conversation_id}] {title}", markup=False)
        self.console.print(text, markup=False, highlight=False)

    async def _send(self, conversation_id: str, text: str, formatted: bool) -> int:
        handle = next(self._ids)
        self._render(conversation_id, text, formatted, f"chat {conversation_id}")
        self._shown[handle] = text
        return handle

    async def _edit(self, conversation_id: str, handle: Any, text: str, formatted: bool) -> bool:
        previous = self._shown.get(handle)
        if previous is None:
            return False
        if text == previous:
            return True
        delta = text[len(previous):] if text.startswith(previous) else text
        self._render(conversation_id, delta, formatted, f"chat {conversation_id} (cont.)")
        self._shown[handle] = text
        return True


class WebChannel(ChatChannel):
    """In-memory outbox served over HTTP."""

    def __init__(self, max_per_conversation: int = 200):
        self.max_per_conversation = max_per_conversation
        self._ids = itertools.count(1)
        self._outbox: Dict[str, List[Dict[str, Any]]] = {}

    async def _send(self, conversation_id: str, text: str, formatted: bool) -> int:
        handle = next(self._ids)
        now = time.time()
        box = self._outbox.setdefault(str(conversation_id), [])
        box.append({"id": handle, "text": text, "created_at": now, "updated_at": now})
        if len(box) > self.max_per_conversation:
            del box[:len(box) - self.max_per_conversation]
        return handle

    async def _edit(self, conversation_id: str, handle: Any, text: str, formatted: bool) -> bool:
        for msg in self._outbox.get(str(conversation_id), []):
            if msg["id"] == handle:
                msg["text"] = text
                msg["updated_at"] = time.time()
                return True
        return False

    def messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return [dict(m) for m in self._outbox.get(str(conversation_id), [])]
