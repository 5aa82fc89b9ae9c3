"""Git status operations."""

from pathlib import Path

from ticketflow.git.runner import run_git


def has_uncommitted_changes(worktree: Path) -> bool:
    """Check if worktree has any uncommitted changes (staged, unstaged, or untracked)."""
    result = run_git(["status", "--porcelain"], worktree)
    return bool(result.stdout.strip())


def has_staged_changes(worktree: Path) -> bool:
    """Check if the index differs from HEAD."""
    result = run_git(["diff", "--cached", "--quiet"], worktree)
    return result.returncode == 1
