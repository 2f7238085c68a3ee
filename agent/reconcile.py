"""
Commit reconciliation: after a request finishes, commit and push whatever the
agent changed in the workspace.

Runs its own fixed git commands (no model input reaches a shell here). A push
failure is reported but the local commit is kept.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Tuple

from errors import ReconciliationError

logger = logging.getLogger(__name__)

MAX_DIFF_CHARS = 10000
FALLBACK_COMMIT_MESSAGE = "Bedrock Relay: automatic update"
GIT_TIMEOUT = 120

COMMIT_PROMPT = """Generate a concise, one-line meaningful git commit message for the following changes.
Do not use markdown formatting. Return ONLY the commit message text.

Diff:
{diff}"""


@dataclass
class ReconcileResult:
    committed: bool = False
    pushed: bool = False
    message: Optional[str] = None
    error: Optional[str] = None


def _git(root: str, args: List[str], check: bool = True, timeout: int = GIT_TIMEOUT) -> Tuple[int, str, str]:
    try:
        proc = subprocess.run(
            ["git"] + args, cwd=root, capture_output=True, text=True, timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ReconciliationError(f"git {args[0]} failed: {e}") from e
    if check and proc.returncode != 0:
        detail = (proc.stderr or proc.stdout).strip() or f"exit code {proc.returncode}"
        raise ReconciliationError(f"git {args[0]} failed: {detail}")
    return proc.returncode, proc.stdout, proc.stderr


def is_git_repository(root: str) -> bool:
    if not os.path.isdir(root):
        return False
    try:
        rc, out, _ = _git(root, ["rev-parse", "--is-inside-work-tree"], check=False)
    except ReconciliationError:
        return False
    return rc == 0 and out.strip() == "true"


def clean_commit_message(text: str) -> str:
    """First non-empty line, surrounding quotes and backticks stripped."""
    for line in (text or "").splitlines():
        line = line.strip().strip("`").strip().strip("\"'").strip()
        if line:
            return line[:200]
    return ""


def generate_commit_message(diff: str, service, model_id: Optional[str] = None) -> str:
    """Ask the lightweight model for a one-line message; never raises."""
    prompt = COMMIT_PROMPT.format(diff=diff[:MAX_DIFF_CHARS])
    try:
        message = clean_commit_message(service.generate_text(prompt, model_id=model_id, max_tokens=100))
    except Exception as e:
        logger.warning(f"Commit message generation failed, using fallback: {e}")
        return FALLBACK_COMMIT_MESSAGE
    return message or FALLBACK_COMMIT_MESSAGE


def _ensure_identity(root: str, name: str, email: str) -> None:
    """Set a local commit identity if the repository has none. Best effort."""
    try:
        for key, value in (("user.name", name), ("user.email", email)):
            rc, out, _ = _git(root, ["config", "--get", key], check=False)
            if rc != 0 or not out.strip():
                _git(root, ["config", key, value])
    except ReconciliationError as e:
        logger.warning(f"Could not configure git identity: {e}")


def _push(root: str) -> None:
    _, remotes, _ = _git(root, ["remote"])
    if not remotes.strip():
        raise ReconciliationError("no git remote configured")
    rc, _, _ = _git(root, ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"], check=False)
    if rc == 0:
        _git(root, ["push"])
        return
    _, branch, _ = _git(root, ["rev-parse", "--abbrev-ref", "HEAD"])
    remote = "origin" if "origin" in remotes.split() else remotes.split()[0]
    _git(root, ["push", "-u", remote, branch.strip()])


def reconcile_workspace(root: str, service, conversation_id: str = "",
                        author_name: str = "Bedrock Relay",
                        author_email: str = "relay@localhost",
                        model_id: Optional[str] = None) -> ReconcileResult:
    """Stage, commit and push pending changes in root."""
    result = ReconcileResult()
    if not is_git_repository(root):
        logger.debug(f"[chat {conversation_id}] GIT {root} is not a repository, skipping")
        return result

    try:
        _, status, _ = _git(root, ["status", "--porcelain"])
        if not status.strip():
            logger.info(f"[chat {conversation_id}] GIT working tree clean")
            return result

        _ensure_identity(root, author_name, author_email)
        _git(root, ["add", "-A"])
        _, diff, _ = _git(root, ["diff", "--cached"])
        if not diff.strip():
            return result

        message = generate_commit_message(diff, service, model_id=model_id)
        _git(root, ["commit", "-m", message])
        result.committed = True
        result.message = message
        logger.info(f"[chat {conversation_id}] GIT committed: {message}")
    except ReconciliationError as e:
        logger.error(f"[chat {conversation_id}] ERROR commit failed: {e}")
        result.error = str(e)
        return result

    try:
        _push(root)
        result.pushed = True
        logger.info(f"[chat {conversation_id}] GIT push completed: {message}")
    except ReconciliationError as e:
        logger.warning(f"[chat {conversation_id}] GIT push failed: {e}")
        result.error = str(e)
    return result
