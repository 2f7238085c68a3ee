"""
Tool definitions and implementations for the relay agent.
Each tool has an Anthropic-compatible schema and an implementation function.
Tools go through a Backend whose SafetyPolicy gates every path and command.
"""

from tools._common import ToolResult, ToolContext, cap_output  # noqa: F401
from tools.policy import SafetyPolicy  # noqa: F401
from tools.file_ops import (  # noqa: F401
    read_file,
    write_file,
    delete_file,
    move_file,
    patch_file,
    apply_patches,
    get_file_outline,
)
from tools.search_ops import search_repo, list_directory  # noqa: F401
from tools.shell_ops import run_shell, pre_flight_check, reply, detect_test_command  # noqa: F401
from tools.git_ops import (  # noqa: F401
    git_status,
    git_log,
    git_diff,
    git_add,
    git_commit,
    git_push,
    git_branch,
    git_checkout,
)
from tools.schemas import TOOL_DEFINITIONS, TOOL_IMPLEMENTATIONS  # noqa: F401
from tools.dispatch import execute_tool, key_argument  # noqa: F401
