"""Version-control tools. Every git invocation passes the shell denylist first."""

import os
import shlex
import logging
from typing import Any, List, Optional, Sequence

from backend import Backend
from errors import ToolError
from tools._common import ToolResult, ToolContext
from tools.shell_ops import pre_flight_check

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 120


def _reject_option(value: str, name: str) -> None:
    if value.startswith("-"):
        raise ToolError(f"{name} must not start with '-'")


def _run_git(backend: Backend, argv: Sequence[str], timeout: int = GIT_TIMEOUT) -> ToolResult:
    cmd = ["git"] + list(argv)
    try:
        backend.policy.check_command(shlex.join(cmd))
        stdout, stderr, rc = backend.run_argv(cmd, timeout=timeout)
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))
    except OSError as e:
        return ToolResult(success=False, output="", error=f"Failed to run git: {e}")
    if rc != 0:
        detail = (stderr or stdout).strip() or f"git exited with code {rc}"
        return ToolResult(success=False, output="", error=detail)
    return ToolResult(success=True, output=stdout.strip() or stderr.strip() or "(no output)")


def _workspace_relative(backend: Backend, path: str) -> str:
    full = backend.resolve_path(path)
    return os.path.relpath(full, backend.working_directory)


def git_status(backend: Backend, **kw: Any) -> ToolResult:
    return _run_git(backend, ["status", "--short", "--branch"])


def git_log(limit: int = 10, backend: Backend = None, **kw: Any) -> ToolResult:
    try:
        limit = max(1, min(int(limit), 100))
    except (TypeError, ValueError):
        return ToolResult(success=False, output="", error="limit must be an integer")
    return _run_git(backend, ["log", "-n", str(limit), "--pretty=format:%h - %s (%cr)"])


def git_diff(staged: bool = False, path: str = "", backend: Backend = None, **kw: Any) -> ToolResult:
    argv = ["diff"]
    if staged:
        argv.append("--cached")
    if path:
        try:
            argv.extend(["--", _workspace_relative(backend, path)])
        except ToolError as e:
            return ToolResult(success=False, output="", error=str(e))
    result = _run_git(backend, argv)
    if result.success and result.output == "(no output)":
        return ToolResult(success=True, output="No changes.")
    return result


def git_add(paths: Optional[List[str]] = None, backend: Backend = None, **kw: Any) -> ToolResult:
    paths = paths or ["."]
    if isinstance(paths, str):
        paths = [paths]
    try:
        rel = [_workspace_relative(backend, p) for p in paths]
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))
    result = _run_git(backend, ["add", "--"] + rel)
    if result.success:
        return ToolResult(success=True, output=f"Staged: {', '.join(rel)}")
    return result


def git_commit(message: str, backend: Backend = None, **kw: Any) -> ToolResult:
    if not (message or "").strip():
        return ToolResult(success=False, output="", error="message is required")
    return _run_git(backend, ["commit", "-m", message.strip()])


def current_branch(backend: Backend) -> Optional[str]:
    result = _run_git(backend, ["rev-parse", "--abbrev-ref", "HEAD"])
    if not result.success or result.output in ("HEAD", "(no output)"):
        return None
    return result.output


def git_push(remote: str = "origin", branch: str = "", run_tests: bool = False,
             backend: Backend = None, context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    remote = (remote or "origin").strip()
    branch = (branch or "").strip()
    try:
        _reject_option(remote, "remote")
        if branch:
            _reject_option(branch, "branch")
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))

    if run_tests:
        check = pre_flight_check(backend=backend, context=context)
        if not check.success:
            return ToolResult(success=False, output="",
                              error=f"Push aborted: Pre-flight tests failed.\n{check.error}")

    branch = branch or current_branch(backend)
    if not branch:
        return ToolResult(success=False, output="", error="Could not determine the current branch")
    return _run_git(backend, ["push", remote, branch])


def git_branch(name: str = "", backend: Backend = None, **kw: Any) -> ToolResult:
    name = (name or "").strip()
    if not name:
        return _run_git(backend, ["branch", "--list"])
    try:
        _reject_option(name, "name")
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))
    result = _run_git(backend, ["branch", name])
    if result.success:
        return ToolResult(success=True, output=f"Created branch {name}")
    return result


def git_checkout(target: str, create: bool = False, backend: Backend = None, **kw: Any) -> ToolResult:
    target = (target or "").strip()
    if not target:
        return ToolResult(success=False, output="", error="target is required")
    try:
        _reject_option(target, "target")
    except ToolError as e:
        return ToolResult(success=False, output="", error=str(e))
    argv = ["checkout", "-b", target] if create else ["checkout", target]
    return _run_git(backend, argv)
