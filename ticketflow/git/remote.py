"""Git remote operations."""

from pathlib import Path

from ticketflow.git.runner import GIT_TIMEOUT_SECONDS, GitResult, run_git


def fetch(repo: Path, remote: str = "origin", branch: str | None = None) -> GitResult:
    """Fetch from remote."""
    args = ["fetch", remote]
    if branch:
        args.append(branch)
    return run_git(args, repo, timeout=GIT_TIMEOUT_SECONDS)


def ls_remote_head(repo: Path, remote: str, branch: str) -> GitResult:
    """List the remote head for one branch. Empty stdout means no such branch."""
    return run_git(["ls-remote", "--heads", remote, f"refs/heads/{branch}"], repo,
                   timeout=GIT_TIMEOUT_SECONDS)


def parse_ls_remote_sha(output: str, branch: str) -> str | None:
    ref = f"refs/heads/{branch}"
    for line in output.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1] == ref:
            return parts[0]
    return None


def push_set_upstream(worktree: Path, remote: str, branch: str) -> GitResult:
    """Push and set upstream tracking."""
    return run_git(["push", "-u", remote, branch], worktree, timeout=GIT_TIMEOUT_SECONDS)


def push_force_with_lease(worktree: Path, remote: str, branch: str, expected_sha: str) -> GitResult:
    """Forced push that aborts if the remote moved away from expected_sha."""
    return run_git(
        ["push", "-u", f"--force-with-lease={branch}:{expected_sha}", remote, branch],
        worktree,
        timeout=GIT_TIMEOUT_SECONDS,
    )
