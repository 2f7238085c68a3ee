"""
Agent package - turn loop orchestration for the relay.

Modules:
- turns: Turn and Part data types, JSON serialization
- events: MessageRequest / RunOutcome and status values
- history: history reconstruction and repair
- prompts: system preamble composition
- commands: slash commands answered without the model
- execution: process_one_message, the turn loop
- reconcile: commit and push after a request
- retry_queue: error classification and the dequeue worker

Import execution, reconcile and retry_queue directly; they depend on modules
that themselves import agent.turns.
"""

from .turns import (  # noqa: F401
    Turn,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    InlineMediaPart,
    ROLE_USER,
    ROLE_MODEL,
    ROLE_TOOL,
)
from .events import MessageRequest, RunOutcome  # noqa: F401
