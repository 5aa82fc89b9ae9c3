"""Git operations for ticketflow.

Module-level helpers wrap single git commands; LocalGit (repo.py) composes
them into the operations the lifecycle stages need.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
  Examples: stage_files(), commit(), fetch(), push_set_upstream()
- Functions returning bool: True on success/condition met, False otherwise.
  Examples: has_uncommitted_changes(), branch_exists(), is_ancestor()
- Functions returning parsed values (str, int, list): Return None/zero/empty on failure.
  Examples: get_current_branch() -> None, get_commit_count() -> 0
- LocalGit methods raise TransientIOError on git failure.
"""

from ticketflow.git.status import (
    has_uncommitted_changes,
    has_staged_changes,
)
from ticketflow.git.branch import (
    get_current_branch,
    branch_exists,
    get_commit_sha,
    get_commit_subject,
    get_commit_count,
    get_toplevel,
    is_ancestor,
    list_local_branches,
)
from ticketflow.git.commit import (
    stage_files,
    commit,
)
from ticketflow.git.remote import (
    fetch,
    ls_remote_head,
    push_set_upstream,
    push_force_with_lease,
)
from ticketflow.git.worktree import (
    list_worktrees,
    add_worktree,
    remove_worktree,
)
from ticketflow.git.repo import (
    LocalGit,
    PushOutcome,
    RemoteBranchState,
    RemoteState,
    decide_push,
)

__all__ = [
    # status
    "has_uncommitted_changes",
    "has_staged_changes",
    # branch
    "get_current_branch",
    "branch_exists",
    "get_commit_sha",
    "get_commit_subject",
    "get_commit_count",
    "get_toplevel",
    "is_ancestor",
    "list_local_branches",
    # commit
    "stage_files",
    "commit",
    # remote
    "fetch",
    "ls_remote_head",
    "push_set_upstream",
    "push_force_with_lease",
    # worktree
    "list_worktrees",
    "add_worktree",
    "remove_worktree",
    # repo
    "LocalGit",
    "PushOutcome",
    "RemoteBranchState",
    "RemoteState",
    "decide_push",
]
