"""Git worktree operations."""

from pathlib import Path

from ticketflow.git.runner import GitResult, run_git


def list_worktrees(repo: Path) -> list[dict]:
    """Parse `git worktree list --porcelain` into {"path", "head", "branch"} dicts.

    Returns empty list on git failure.
    """
    result = run_git(["worktree", "list", "--porcelain"], repo)
    if not result.success:
        return []

    worktrees = []
    current: dict = {}
    for line in result.stdout.splitlines() + [""]:
        if not line.strip():
            if current:
                worktrees.append(current)
            current = {}
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            current = {"path": Path(value), "head": None, "branch": None}
        elif key == "HEAD":
            current["head"] = value
        elif key == "branch":
            current["branch"] = value.removeprefix("refs/heads/")
    return worktrees


def find_worktree(repo: Path, path: Path) -> dict | None:
    wanted = Path(path).resolve()
    for entry in list_worktrees(repo):
        if entry["path"].resolve() == wanted:
            return entry
    return None


def find_worktree_for_branch(repo: Path, branch: str) -> Path | None:
    for entry in list_worktrees(repo):
        if entry["branch"] == branch:
            return entry["path"]
    return None


def add_worktree(repo: Path, path: Path, branch: str, base: str | None = None) -> GitResult:
    """Add a worktree at path.

    With base, creates branch from base; otherwise checks out the existing branch.
    """
    if base:
        args = ["worktree", "add", "-b", branch, str(path), base]
    else:
        args = ["worktree", "add", str(path), branch]
    return run_git(args, repo)


def remove_worktree(repo: Path, path: Path, force: bool = False) -> GitResult:
    args = ["worktree", "remove"]
    if force:
        args.append("--force")
    args.append(str(path))
    return run_git(args, repo)


def prune_worktrees(repo: Path) -> GitResult:
    return run_git(["worktree", "prune"], repo)
