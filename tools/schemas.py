"""Tool schema definitions (Bedrock/Anthropic Messages API) and dispatch maps."""

from typing import Any, Callable, Dict, List

from tools.file_ops import (
    read_file, write_file, delete_file, move_file, patch_file, get_file_outline,
)
from tools.search_ops import search_repo, list_directory
from tools.shell_ops import run_shell, pre_flight_check, reply
from tools.git_ops import (
    git_status, git_log, git_diff, git_add, git_commit, git_push, git_branch, git_checkout,
)


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "custom",
        "name": name,
        "description": description,
        "input_schema": {
            "type": "object",
            "properties": properties,
            "required": required,
        },
    }


_PATH = {"type": "string", "description": "File path relative to the repository root"}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    _tool("write_file",
          "Create a new file or completely overwrite an existing one. Parent directories are created. "
          "Prefer patch_file for small changes to existing files.",
          {"path": _PATH, "content": {"type": "string", "description": "Full file content"}},
          ["path", "content"]),
    _tool("read_file",
          "Read a file. Returns line-numbered content; the numbers are not part of the file.",
          {"path": _PATH}, ["path"]),
    _tool("list_directory",
          "List files and directories at a path with sizes. Respects .gitignore.",
          {"path": {"type": "string", "description": "Directory path (default: repository root)"}}, []),
    _tool("delete_file", "Delete a single file.", {"path": _PATH}, ["path"]),
    _tool("move_file", "Move or rename a file. Destination directories are created.",
          {"source": _PATH, "destination": _PATH}, ["source", "destination"]),
    _tool("search_repo",
          "Fixed-string search across the repository (skips .git, node_modules, build output and "
          "virtualenvs). Returns matching lines as path:line:text, capped at 100 lines.",
          {"query": {"type": "string", "description": "Exact text to search for"}}, ["query"]),
    _tool("patch_file",
          "Edit a file with exact search/replace blocks, applied in order. Each search block must "
          "match exactly once, including whitespace. If any block is missing or ambiguous the file "
          "is left untouched.",
          {
              "path": _PATH,
              "patches": {
                  "type": "array",
                  "description": "Ordered list of {search, replace} blocks",
                  "items": {
                      "type": "object",
                      "properties": {
                          "search": {"type": "string", "description": "Exact text to find"},
                          "replace": {"type": "string", "description": "Replacement text"},
                      },
                      "required": ["search", "replace"],
                  },
              },
          },
          ["path", "patches"]),
    _tool("run_shell",
          "Run a shell command in the repository root. Destructive commands are refused. "
          "Output over 20000 characters is truncated.",
          {
              "command": {"type": "string", "description": "Shell command line"},
              "timeout": {"type": "integer", "description": "Timeout in seconds (default 120, max 600)"},
          },
          ["command"]),
    _tool("get_file_outline",
          "List the classes and functions of a source file with line numbers "
          "(Python, JavaScript/TypeScript, Go, Rust, Java/Kotlin).",
          {"path": _PATH}, ["path"]),
    _tool("reply",
          "Send an intermediate message to the user while you keep working.",
          {"text": {"type": "string", "description": "Message text (Markdown)"}}, ["text"]),
    _tool("pre_flight_check",
          "Run the project's test suite (pytest for Python projects, npm test for package.json). "
          "Run this before pushing.",
          {"command": {"type": "string", "description": "Override the detected test command"}}, []),
    _tool("git_status", "Show the branch and short working tree status.", {}, []),
    _tool("git_log", "Show recent commits.",
          {"limit": {"type": "integer", "description": "Number of commits (default 10)"}}, []),
    _tool("git_diff", "Show unstaged (or staged) changes, optionally for one path.",
          {
              "staged": {"type": "boolean", "description": "Show staged changes instead"},
              "path": {"type": "string", "description": "Limit the diff to this path"},
          }, []),
    _tool("git_add", "Stage paths for commit.",
          {"paths": {"type": "array", "items": {"type": "string"}, "description": "Paths to stage (default ['.'])"}},
          []),
    _tool("git_commit", "Commit staged changes.",
          {"message": {"type": "string", "description": "Commit message"}}, ["message"]),
    _tool("git_push",
          "Push a branch to a remote. Set run_tests to run the pre-flight check first and abort on failure.",
          {
              "remote": {"type": "string", "description": "Remote name (default origin)"},
              "branch": {"type": "string", "description": "Branch (default: current branch)"},
              "run_tests": {"type": "boolean", "description": "Run the test suite before pushing"},
          }, []),
    _tool("git_branch", "List branches, or create one when name is given.",
          {"name": {"type": "string", "description": "New branch name"}}, []),
    _tool("git_checkout", "Switch to a branch or commit; create=true creates the branch.",
          {
              "target": {"type": "string", "description": "Branch name or commit"},
              "create": {"type": "boolean", "description": "Create the branch first"},
          }, ["target"]),
]

TOOL_IMPLEMENTATIONS: Dict[str, Callable[..., Any]] = {
    "write_file": write_file,
    "read_file": read_file,
    "list_directory": list_directory,
    "delete_file": delete_file,
    "move_file": move_file,
    "search_repo": search_repo,
    "patch_file": patch_file,
    "run_shell": run_shell,
    "get_file_outline": get_file_outline,
    "reply": reply,
    "pre_flight_check": pre_flight_check,
    "git_status": git_status,
    "git_log": git_log,
    "git_diff": git_diff,
    "git_add": git_add,
    "git_commit": git_commit,
    "git_push": git_push,
    "git_branch": git_branch,
    "git_checkout": git_checkout,
}

TOOL_SCHEMAS: Dict[str, Dict[str, Any]] = {t["name"]: t["input_schema"] for t in TOOL_DEFINITIONS}

# Log category per tool
TOOL_CATEGORIES: Dict[str, str] = {
    "write_file": "WRITE",
    "read_file": "READ",
    "list_directory": "LIST",
    "delete_file": "DELETE",
    "move_file": "MOVE",
    "search_repo": "SEARCH",
    "patch_file": "PATCH",
    "run_shell": "SHELL",
    "get_file_outline": "OUTLINE",
    "reply": "REPLY",
    "pre_flight_check": "TEST",
}
