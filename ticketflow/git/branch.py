"""Git branch operations."""

from pathlib import Path

from ticketflow.git.runner import run_git


def get_current_branch(worktree: Path) -> str | None:
    """Get the current branch name, or None if detached HEAD."""
    result = run_git(["branch", "--show-current"], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def branch_exists(repo: Path, branch: str) -> bool:
    """Check if a local branch exists."""
    result = run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], repo)
    return result.success


def get_commit_sha(worktree: Path, ref: str = "HEAD") -> str | None:
    """Get the SHA of a ref."""
    result = run_git(["rev-parse", "--verify", "--quiet", ref], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_commit_subject(worktree: Path, ref: str) -> str | None:
    """Subject line of the commit at ref."""
    result = run_git(["log", "-1", "--format=%s", ref], worktree)
    if result.success:
        return result.stdout.strip()
    return None


def get_commit_count(worktree: Path, ref_range: str) -> int:
    """
    Get number of commits in a range.

    Args:
        worktree: Path to worktree
        ref_range: Git ref range (e.g., "main..HEAD")

    Returns:
        Number of commits, or 0 on error
    """
    result = run_git(["rev-list", "--count", ref_range], worktree)
    if result.success:
        try:
            return int(result.stdout.strip())
        except ValueError:
            pass
    return 0


def is_ancestor(worktree: Path, ancestor: str, descendant: str) -> bool:
    """Check if ancestor is an ancestor of descendant."""
    result = run_git(["merge-base", "--is-ancestor", ancestor, descendant], worktree)
    return result.success


def get_toplevel(worktree: Path) -> Path | None:
    """Root of the working tree containing worktree, or None outside a repo."""
    result = run_git(["rev-parse", "--show-toplevel"], worktree)
    if result.success and result.stdout.strip():
        return Path(result.stdout.strip())
    return None


def list_local_branches(repo: Path) -> list[str]:
    """Short names of all local branches, or [] on error."""
    result = run_git(["for-each-ref", "--format=%(refname:short)", "refs/heads"], repo)
    if not result.success:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
