"""Git operations for AutoAgent.

All git invocations use list-form arguments so messages and branch
names never pass through a shell.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from autoagent.core.exceptions import GitOperationError
from autoagent.tools.shell import run_command

logger = logging.getLogger("autoagent.tools.git_ops")

DEFAULT_GITIGNORE = """node_modules/
dist/
__pycache__/
.venv/
.env
*.log
.DS_Store
"""


def init_repo(repo_path: str, gitignore: bool = True) -> dict:
    """Initialize a repository and seed a basic .gitignore if none exists."""
    Path(repo_path).mkdir(parents=True, exist_ok=True)
    result = run_command(["git", "init"], cwd=repo_path)
    if not result.success:
        raise GitOperationError(f"git init failed: {result.stderr}")

    ignore_path = Path(repo_path) / ".gitignore"
    if gitignore and not ignore_path.exists():
        ignore_path.write_text(DEFAULT_GITIGNORE, encoding="utf-8")

    logger.info("Initialized git repository at %s", repo_path)
    return {"path": repo_path, "initialized": True}


def commit(repo_path: str, message: str, files: Optional[list[str]] = None) -> str:
    """Stage files and create a git commit.

    Args:
        repo_path: Path to the git repository.
        message: Commit message.
        files: Specific files to stage. If None, stages all changes.

    Returns:
        Commit hash, or "" if there was nothing to commit.

    Raises:
        GitOperationError: If staging or committing fails.
    """
    if files:
        for f in files:
            result = run_command(["git", "add", "--", f], cwd=repo_path)
            if not result.success:
                raise GitOperationError(f"git add failed for {f}: {result.stderr}")
    else:
        result = run_command(["git", "add", "-A"], cwd=repo_path)
        if not result.success:
            raise GitOperationError(f"git add -A failed: {result.stderr}")

    result = run_command(["git", "commit", "-m", message], cwd=repo_path)
    if not result.success:
        if "nothing to commit" in result.stdout:
            logger.info("Nothing to commit")
            return ""
        raise GitOperationError(f"git commit failed: {result.stderr or result.stdout}")

    hash_result = run_command(["git", "rev-parse", "HEAD"], cwd=repo_path)
    commit_hash = hash_result.stdout.strip()
    logger.info("Committed: %s", commit_hash[:8])
    return commit_hash


def get_status(repo_path: str) -> dict:
    """Porcelain status split into buckets, plus the current branch."""
    result = run_command(["git", "status", "--porcelain=v1", "--branch"], cwd=repo_path)
    if not result.success:
        raise GitOperationError(f"git status failed: {result.stderr}")

    branch: Optional[str] = None
    modified: list[str] = []
    created: list[str] = []
    deleted: list[str] = []
    untracked: list[str] = []
    staged: list[str] = []

    for line in result.stdout.splitlines():
        if line.startswith("## "):
            head = line[3:]
            if head.startswith("No commits yet on "):
                branch = head[len("No commits yet on "):]
            else:
                branch = head.split("...", 1)[0]
            continue
        if len(line) < 4:
            continue
        index, worktree, name = line[0], line[1], line[3:]
        if index == "?" and worktree == "?":
            untracked.append(name)
            continue
        if index not in (" ", "?"):
            staged.append(name)
        if "A" in (index, worktree):
            created.append(name)
        elif "D" in (index, worktree):
            deleted.append(name)
        elif "M" in (index, worktree):
            modified.append(name)

    return {
        "path": repo_path,
        "branch": branch,
        "modified": modified,
        "created": created,
        "deleted": deleted,
        "untracked": untracked,
        "staged": staged,
        "is_clean": not (modified or created or deleted or untracked or staged),
    }


def create_branch(repo_path: str, branch: str, checkout: bool = True) -> dict:
    if not branch or branch.startswith("-"):
        raise GitOperationError(f"Invalid branch name: {branch!r}")
    cmd = ["git", "checkout", "-b", branch] if checkout else ["git", "branch", branch]
    result = run_command(cmd, cwd=repo_path)
    if not result.success:
        raise GitOperationError(f"git branch failed: {result.stderr}")
    logger.info("Created branch %s in %s", branch, repo_path)
    return {"path": repo_path, "branch": branch, "checked_out": checkout}


def push(repo_path: str, remote: str = "origin", branch: Optional[str] = None) -> dict:
    cmd = ["git", "push", remote] + ([branch] if branch else [])
    result = run_command(cmd, cwd=repo_path, timeout=120)
    if not result.success:
        raise GitOperationError(f"git push failed: {result.stderr}")
    logger.info("Pushed %s to %s", branch or "current branch", remote)
    return {"path": repo_path, "remote": remote, "branch": branch or "current"}


def is_git_repo(path: str) -> bool:
    """Check if the given path is inside a git repository."""
    result = run_command(["git", "rev-parse", "--is-inside-work-tree"], cwd=path)
    return result.success and result.stdout.strip() == "true"
