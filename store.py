"""
File-backed durable store for Bedrock Relay.

Three collections under one base directory:
  turns/{conversation}.jsonl   append-only turn log, one JSON object per line
  queue/{item_id}.json         retry queue items, one document per item
  liveness.json                heartbeat of the running instance

Queue claims are atomic across threads (threading.Lock) and processes
(fcntl.flock on queue/.lock).
"""

import base64
import fcntl
import json
import logging
import os
import re
import socket
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterator, List, Optional

from agent.turns import Turn, turn_to_dict, turn_from_dict

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"


def _safe_name(value: str) -> str:
    """Turn an identifier into a safe filename component."""
    s = re.sub(r"[^A-Za-z0-9_.-]+", "_", str(value)).strip("._")
    return s[:120] or "default"


def _atomic_write_json(path: str, data: Any) -> None:
    tmp_path = f"{path}.{os.getpid()}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _read_json(path: str) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read {path}: {e}")
        return None


# ============================================================
# Turn log
# ============================================================

class TurnLog:
    """Append-only turn records, partitioned by conversation id."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for(self, conversation_id: str) -> str:
        return os.path.join(self.base_dir, f"{_safe_name(conversation_id)}.jsonl")

    def append(self, turn: Turn) -> None:
        line = json.dumps(turn_to_dict(turn), ensure_ascii=False)
        with self._lock:
            with open(self._path_for(turn.conversation_id), "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def all(self, conversation_id: str) -> List[Turn]:
        """Every turn of a conversation, oldest first."""
        path = self._path_for(conversation_id)
        turns: List[Turn] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        turns.append(turn_from_dict(json.loads(line)))
                    except (ValueError, TypeError) as e:
                        # A torn final line after a crash is skipped, not fatal
                        logger.warning(f"Skipping unreadable turn {path}:{lineno}: {e}")
        except FileNotFoundError:
            return []
        turns.sort(key=lambda t: t.timestamp)
        return turns

    def recent(self, conversation_id: str, limit: int = 20) -> List[Turn]:
        """The most recent turns, newest first."""
        turns = self.all(conversation_id)
        return list(reversed(turns[-limit:])) if limit > 0 else []

    def count_by_role(self, conversation_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for t in self.all(conversation_id):
            counts[t.role] = counts.get(t.role, 0) + 1
        return counts

    def conversations(self) -> List[str]:
        return sorted(
            name[:-len(".jsonl")] for name in os.listdir(self.base_dir) if name.endswith(".jsonl")
        )


# ============================================================
# Retry queue
# ============================================================

@dataclass
class QueueItem:
    """A user request deferred for automatic retry."""
    id: str
    conversation_id: str
    user_message: str
    media: Optional[Dict[str, str]] = None  # {"data": base64, "mime_type": ...}
    status: str = STATUS_PENDING
    created_at: float = 0.0
    last_attempt: float = 0.0
    attempts: int = 0

    def media_bytes(self) -> Optional[bytes]:
        if not self.media or not self.media.get("data"):
            return None
        return base64.b64decode(self.media["data"])

    @property
    def mime_type(self) -> Optional[str]:
        return (self.media or {}).get("mime_type")


class QueueStore:
    """Mutable queue collection with an atomic single-item claim."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)
        self._lock = threading.Lock()
        self._lock_path = os.path.join(self.base_dir, ".lock")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            with open(self._lock_path, "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _path_for(self, item_id: str) -> str:
        return os.path.join(self.base_dir, f"{_safe_name(item_id)}.json")

    def _load(self, path: str) -> Optional[QueueItem]:
        data = _read_json(path)
        if not data:
            return None
        try:
            return QueueItem(**data)
        except TypeError as e:
            logger.warning(f"Malformed queue item {path}: {e}")
            return None

    def _save(self, item: QueueItem) -> None:
        _atomic_write_json(self._path_for(item.id), asdict(item))

    def add(self, conversation_id: str, user_message: str,
            media: Optional[bytes] = None, mime_type: Optional[str] = None) -> QueueItem:
        now = time.time()
        item = QueueItem(
            id=uuid.uuid4().hex,
            conversation_id=str(conversation_id),
            user_message=user_message or "",
            media={"data": base64.b64encode(media).decode("ascii"), "mime_type": mime_type or ""} if media else None,
            status=STATUS_PENDING,
            created_at=now,
            last_attempt=now,
            attempts=1,
        )
        with self._locked():
            self._save(item)
        logger.info(f"Queue item {item.id} added for chat {conversation_id}")
        return item

    def get(self, item_id: str) -> Optional[QueueItem]:
        return self._load(self._path_for(item_id))

    def list(self) -> List[QueueItem]:
        """All items, oldest first."""
        items = []
        for name in os.listdir(self.base_dir):
            if not name.endswith(".json"):
                continue
            item = self._load(os.path.join(self.base_dir, name))
            if item:
                items.append(item)
        items.sort(key=lambda i: (i.created_at, i.id))
        return items

    def oldest_pending(self) -> Optional[QueueItem]:
        for item in self.list():
            if item.status == STATUS_PENDING:
                return item
        return None

    def has_pending(self) -> bool:
        return self.oldest_pending() is not None

    def claim(self, item_id: str) -> Optional[QueueItem]:
        """Conditionally move an item pending → processing. None if someone else has it."""
        with self._locked():
            item = self.get(item_id)
            if item is None or item.status != STATUS_PENDING:
                return None
            item.status = STATUS_PROCESSING
            item.last_attempt = time.time()
            item.attempts += 1
            self._save(item)
        return item

    def release(self, item_id: str) -> Optional[QueueItem]:
        """Reset an item to pending after a failed attempt."""
        with self._locked():
            item = self.get(item_id)
            if item is None:
                return None
            item.status = STATUS_PENDING
            item.last_attempt = time.time()
            self._save(item)
        return item

    def delete(self, item_id: str) -> bool:
        path = self._path_for(item_id)
        with self._locked():
            if os.path.exists(path):
                os.remove(path)
                logger.info(f"Queue item {item_id} deleted")
                return True
        return False


# ============================================================
# Liveness
# ============================================================

class LivenessRecord:
    """Heartbeat document refreshed by the running instance."""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> Optional[Dict[str, Any]]:
        return _read_json(self.path)

    def touch(self) -> Dict[str, Any]:
        data = {"last_seen": time.time(), "pid": os.getpid(), "host": socket.gethostname()}
        _atomic_write_json(self.path, data)
        return data

    def is_fresh(self, stale_after: float, now: Optional[float] = None) -> bool:
        """True if another process refreshed the record within stale_after seconds."""
        data = self.read()
        if not data:
            return False
        if data.get("pid") == os.getpid() and data.get("host") == socket.gethostname():
            return False
        now = time.time() if now is None else now
        return (now - float(data.get("last_seen", 0))) < stale_after


class FileStore:
    """Turn log, retry queue and liveness record under one directory."""

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(os.path.expanduser(base_dir))
        os.makedirs(self.base_dir, exist_ok=True)
        self.turns = TurnLog(os.path.join(self.base_dir, "turns"))
        self.queue = QueueStore(os.path.join(self.base_dir, "queue"))
        self.liveness = LivenessRecord(os.path.join(self.base_dir, "liveness.json"))
