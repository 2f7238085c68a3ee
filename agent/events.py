"""
Request and outcome data types shared by the orchestrator and the retry queue.
"""

from dataclasses import dataclass
from typing import Any, Optional

# RunOutcome.status values
STATUS_DONE = "done"
STATUS_DENIED = "denied"
STATUS_COMMAND = "command"
STATUS_QUEUED = "queued"
STATUS_FAILED = "failed"
STATUS_IGNORED = "ignored"


@dataclass
class MessageRequest:
    """One inbound user message, fresh or replayed from the retry queue"""
    conversation_id: str
    text: str = ""
    media: Optional[bytes] = None
    mime_type: Optional[str] = None
    queue_item_id: Optional[str] = None  # set when replaying a queued request

    @property
    def is_retry(self) -> bool:
        return self.queue_item_id is not None


@dataclass
class RunOutcome:
    """How one process_one_message call ended"""
    status: str
    turns: int = 0  # completion submissions made
    reconciliation: Optional[Any] = None
    error: Optional[str] = None
