"""
Local repository adapter.

LocalGit bundles the module-level git helpers behind one injectable object
and owns the remote branch state machine used for first pushes:

    NoRemoteBranch -> RemoteBranchBootstrapOnly -> RemoteBranchWithRealWork

A missing remote branch is pushed directly. A branch whose latest remote
commit is a bootstrap placeholder is overwritten with a lease-protected
forced push. A branch carrying real work is never overwritten unless the
operator passes --force.
"""

import importlib
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ticketflow.git import branch as git_branch
from ticketflow.git import remote as git_remote
from ticketflow.git import status as git_status
from ticketflow.git import worktree as git_worktree
from ticketflow.git.runner import require_success
from ticketflow.lib.constants import BOOTSTRAP_FILENAME, BOOTSTRAP_SUBJECT_PATTERN
from ticketflow.lib.errors import PreconditionError

# The package __init__ re-exports the commit() function under the same name as
# this submodule, so resolve the module itself from sys.modules.
git_commit = importlib.import_module("ticketflow.git.commit")

logger = logging.getLogger(__name__)


class RemoteState(Enum):
    NO_REMOTE = "NoRemoteBranch"
    BOOTSTRAP_ONLY = "RemoteBranchBootstrapOnly"
    REAL_WORK = "RemoteBranchWithRealWork"


# Push actions
PUSH_NONE = "none"
PUSH_PLAIN = "push"
PUSH_FORCE_WITH_LEASE = "force-with-lease"
PUSH_REFUSE = "refuse"


@dataclass(frozen=True)
class RemoteBranchState:
    state: RemoteState
    sha: str | None = None
    subject: str | None = None

    @property
    def exists(self) -> bool:
        return self.state != RemoteState.NO_REMOTE

    @property
    def looks_like_bootstrap_only(self) -> bool:
        return self.state == RemoteState.BOOTSTRAP_ONLY

    def to_dict(self) -> dict:
        return {"state": self.state.value, "sha": self.sha, "subject": self.subject}


@dataclass(frozen=True)
class PushOutcome:
    action: str
    branch: str
    remote_state: RemoteState
    pushed: bool

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "branch": self.branch,
            "remoteState": self.remote_state.value,
            "pushed": self.pushed,
        }


def is_bootstrap_subject(subject: str | None) -> bool:
    return bool(subject) and BOOTSTRAP_SUBJECT_PATTERN.search(subject) is not None


def bootstrap_message(branch: str, ticket_id: str, issue: int | str | None) -> str:
    """`[<branch suffix>] Bootstrap worktree for issue #N [skip ci]`."""
    suffix = branch.split("/", 1)[-1]
    target = f"issue #{issue}" if isinstance(issue, int) else ticket_id
    return f"[{suffix}] Bootstrap worktree for {target} [skip ci]"


def decide_push(remote: RemoteBranchState, local_sha: str | None, force: bool = False,
                fast_forward: bool = False) -> str:
    """Choose how to publish a branch given the observed remote state.

    fast_forward means the remote head is an ancestor of the local head, so
    a plain push cannot lose remote history.
    """
    if remote.state == RemoteState.NO_REMOTE:
        return PUSH_PLAIN
    if local_sha is not None and local_sha == remote.sha:
        return PUSH_NONE
    if fast_forward:
        return PUSH_PLAIN
    if remote.state == RemoteState.BOOTSTRAP_ONLY:
        return PUSH_FORCE_WITH_LEASE
    return PUSH_FORCE_WITH_LEASE if force else PUSH_REFUSE


def refused_push_error(branch: str, remote: RemoteBranchState) -> PreconditionError:
    return PreconditionError(
        f"Remote branch {branch} already has commits that are not a bootstrap placeholder "
        f"(latest: {remote.subject!r}).",
        remediation="inspect the remote branch, then re-run with --force to overwrite it",
    )


class LocalGit:
    """Version-control operations for one repository and remote."""

    def __init__(self, repo: Path, remote: str = "origin"):
        self.repo = Path(repo)
        self.remote = remote

    def current_branch(self, cwd: Path | None = None) -> str | None:
        return git_branch.get_current_branch(cwd or self.repo)

    def branch_exists(self, branch: str) -> bool:
        return git_branch.branch_exists(self.repo, branch)

    def local_sha(self, ref: str, cwd: Path | None = None) -> str | None:
        return git_branch.get_commit_sha(cwd or self.repo, ref)

    def commits_ahead(self, base: str, ref: str = "HEAD", cwd: Path | None = None) -> int:
        return git_branch.get_commit_count(cwd or self.repo, f"{base}..{ref}")

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return git_branch.is_ancestor(self.repo, ancestor, descendant)

    # -- worktrees ---------------------------------------------------------

    def worktree_exists(self, path: Path) -> bool:
        return git_worktree.find_worktree(self.repo, path) is not None

    def worktree_for_branch(self, branch: str) -> Path | None:
        """Linked worktree checked out on branch. The main checkout is never returned."""
        path = git_worktree.find_worktree_for_branch(self.repo, branch)
        if path is None or path.resolve() == self.repo.resolve():
            return None
        return path

    def worktree_branch_for_ticket(self, ticket_id: str) -> str | None:
        """Branch of the first worktree whose branch suffix starts with `<ID>-`."""
        for entry in git_worktree.list_worktrees(self.repo):
            branch = entry["branch"] or ""
            if branch.split("/", 1)[-1].startswith(f"{ticket_id}-"):
                return branch
        return None

    def local_branch_for_ticket(self, ticket_id: str) -> str | None:
        """The one local branch whose suffix starts with `<ID>-`; None if there are none or several."""
        matches = [b for b in git_branch.list_local_branches(self.repo)
                   if "/" in b and b.split("/", 1)[1].startswith(f"{ticket_id}-")]
        return matches[0] if len(matches) == 1 else None

    def create_worktree(self, path: Path, branch: str, base_branch: str) -> bool:
        """Create a worktree for branch at path. Returns False if it already exists."""
        path = Path(path)
        existing = git_worktree.find_worktree(self.repo, path)
        if existing is not None:
            if existing["branch"] != branch:
                raise PreconditionError(
                    f"Worktree {path} is checked out on {existing['branch']}, not {branch}.",
                    remediation="pass --worktree-dir with a free location",
                )
            logger.debug(f"[WORKTREE] {path} already on {branch}")
            return False
        if path.exists():
            raise PreconditionError(
                f"Path {path} exists but is not a registered worktree.",
                remediation="remove the directory or pass --worktree-dir",
            )

        base = None if self.branch_exists(branch) else base_branch
        require_success(git_worktree.add_worktree(self.repo, path, branch, base), "worktree add")
        logger.info(f"[WORKTREE] Created {path} on {branch}" + (f" from {base}" if base else ""))
        return True

    def remove_worktree(self, path: Path, force: bool = False) -> bool:
        """Remove a worktree. Refuses a dirty worktree unless force."""
        path = Path(path)
        if not self.worktree_exists(path):
            return False
        if not force and self.has_uncommitted_changes(path):
            raise PreconditionError(
                f"Worktree {path} has uncommitted changes.",
                remediation="commit or discard them, or pass --keep-worktree",
            )
        require_success(git_worktree.remove_worktree(self.repo, path, force=force), "worktree remove")
        git_worktree.prune_worktrees(self.repo)
        logger.info(f"[WORKTREE] Removed {path}")
        return True

    # -- commits -----------------------------------------------------------

    def has_uncommitted_changes(self, cwd: Path | None = None) -> bool:
        return git_status.has_uncommitted_changes(cwd or self.repo)

    def commit_paths(self, cwd: Path, paths: list[str], message: str) -> str | None:
        """Stage paths and commit. Returns the new sha, or None if nothing was staged."""
        require_success(git_commit.stage_files(cwd, paths), "add")
        if not git_status.has_staged_changes(cwd):
            return None
        require_success(git_commit.commit(cwd, message), "commit")
        return self.local_sha("HEAD", cwd)

    def commit_bootstrap(self, cwd: Path, message: str, paths: list[str] | None = None) -> str:
        """Create the bootstrap commit.

        Commits the given paths; when they carry no change, writes a
        placeholder file so the branch still gains one commit.
        """
        sha = self.commit_paths(cwd, paths, message) if paths else None
        if sha is None:
            placeholder = Path(cwd) / BOOTSTRAP_FILENAME
            placeholder.write_text(f"{message}\n")
            sha = self.commit_paths(cwd, [BOOTSTRAP_FILENAME], message)
        if sha is None:
            sha = self.local_sha("HEAD", cwd) or ""
        logger.info(f"[BOOTSTRAP] {message} ({sha[:8]})")
        return sha

    # -- remote ------------------------------------------------------------

    def remote_branch_state(self, branch: str) -> RemoteBranchState:
        """Classify the remote branch by its latest commit subject."""
        result = require_success(git_remote.ls_remote_head(self.repo, self.remote, branch), "ls-remote")
        sha = git_remote.parse_ls_remote_sha(result.stdout, branch)
        if sha is None:
            return RemoteBranchState(RemoteState.NO_REMOTE)

        require_success(git_remote.fetch(self.repo, self.remote, branch), "fetch")
        subject = git_branch.get_commit_subject(self.repo, sha)
        state = RemoteState.BOOTSTRAP_ONLY if is_bootstrap_subject(subject) else RemoteState.REAL_WORK
        logger.debug(f"[PUSH] {self.remote}/{branch} at {sha[:8]}: {state.value}")
        return RemoteBranchState(state, sha, subject)

    def plan_push(self, branch: str, force: bool = False, cwd: Path | None = None,
                  remote: RemoteBranchState | None = None) -> tuple[str, RemoteBranchState]:
        remote = remote or self.remote_branch_state(branch)
        local = self.local_sha(branch, cwd)
        fast_forward = bool(remote.sha and local and self.is_ancestor(remote.sha, local))
        return decide_push(remote, local, force, fast_forward), remote

    def push_branch(self, branch: str, force: bool = False, cwd: Path | None = None) -> PushOutcome:
        """Publish branch according to the remote state machine.

        Raises:
            PreconditionError: Remote has real work and force is not set
            TransientIOError: git failed (including a rejected lease)
        """
        cwd = cwd or self.repo
        action, remote = self.plan_push(branch, force, cwd)

        if action == PUSH_REFUSE:
            raise refused_push_error(branch, remote)
        if action == PUSH_NONE:
            logger.debug(f"[PUSH] {branch} already at {remote.sha[:8]}")
            return PushOutcome(action, branch, remote.state, pushed=False)

        if action == PUSH_FORCE_WITH_LEASE:
            logger.info(f"[PUSH] {branch}: {remote.state.value}, forcing with lease on {remote.sha[:8]}")
            result = git_remote.push_force_with_lease(cwd, self.remote, branch, remote.sha)
        else:
            logger.info(f"[PUSH] {branch} -> {self.remote}")
            result = git_remote.push_set_upstream(cwd, self.remote, branch)
        require_success(result, "push")
        return PushOutcome(action, branch, remote.state, pushed=True)
