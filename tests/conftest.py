"""Shared fixtures: a lifecycle-configured repo root and in-memory adapters."""

import json
from pathlib import Path

import pytest

from ticketflow.git.repo import (
    PUSH_NONE,
    PUSH_REFUSE,
    PushOutcome,
    RemoteBranchState,
    RemoteState,
    decide_push,
    refused_push_error,
)
from ticketflow.lib.config import clear_config_cache, load_lifecycle_config
from ticketflow.lib.documents import DocumentStore
from ticketflow.lib.errors import PreconditionError
from ticketflow.lib.project_cache import snapshot_from_dict
from ticketflow.lib.types import Issue, LabelSync, ProjectStatusResult, PullRequest
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.state_machine import is_backward, parse_status

LIFECYCLE_CONFIG = {
    "version": "1",
    "branches": {
        "allowedPrefixes": ["feat", "fix", "chore"],
        "pattern": r"^(feat|fix|chore)/[A-Z]+-[A-Za-z0-9]+-[a-z0-9-]+$",
    },
    "pullRequests": {"titlePattern": r"^\[[A-Z]+-[A-Za-z0-9]+\] .+$"},
    "documents": {"directory": "docs/tickets"},
}

PROJECT_CACHE = {
    "version": "2026-10-01",
    "project": {
        "id": "PVT_1",
        "fields": {
            "ID": {"id": "F_ID"},
            "Status": {
                "id": "F_STATUS",
                "options": [
                    {"id": "OPT_TICKETED", "name": "Ticketed"},
                    {"id": "OPT_BRANCHED", "name": "Branched"},
                    {"id": "OPT_PR_OPEN", "name": "PR Open"},
                    {"id": "OPT_IN_REVIEW", "name": "In Review"},
                    {"id": "OPT_MERGED", "name": "Merged"},
                    {"id": "OPT_ARCHIVED", "name": "Archived"},
                ],
            },
        },
    },
}

TICKET_DOC = """# ARCH-42: Lifecycle refresh

Lane: B
Labels: architecture, lifecycle
Issue: #12
Status: Branched

## Purpose

Keep the three stores in sync.

## Problem

Statuses drift.

## Proposal

Reconcile on every stage.

## Acceptance Checklist

- [ ] Document updated
- [x] Board updated
"""


def write_lifecycle(root: Path, data: dict | None = None) -> Path:
    config_dir = root / ".repo"
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / "lifecycle.json"
    path.write_text(json.dumps(data or LIFECYCLE_CONFIG))
    return path


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def repo_root(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    write_lifecycle(root)
    (root / "docs" / "tickets").mkdir(parents=True)
    return root


@pytest.fixture
def config(repo_root):
    return load_lifecycle_config(repo_root)


@pytest.fixture
def ticket_doc(config):
    path = config.documents_directory / "ARCH-42-lifecycle-refresh.md"
    path.write_text(TICKET_DOC)
    return path


@pytest.fixture
def snapshot():
    return snapshot_from_dict(PROJECT_CACHE)


class FakeTracker:
    """In-memory GitHub: issues, PRs keyed by head branch, and board statuses by ticket id."""

    def __init__(self):
        self.issues: dict[int, Issue] = {}
        self.prs: dict[str, PullRequest] = {}
        self.board: dict[str, str] = {}
        self.writes: list[tuple] = []
        self.body_files: list[Path] = []
        self.next_number = 100

    # issues
    def get_issue(self, number):
        return self.issues[number]

    def find_issue_for_ticket(self, ticket_id):
        for issue in self.issues.values():
            if issue.title.startswith(f"[{ticket_id}]"):
                return issue
        return None

    def close_issue(self, number, comment=None):
        issue = self.issues[number]
        self.issues[number] = Issue(issue.number, issue.title, "closed", issue.body, issue.labels)
        self.writes.append(("close_issue", number))

    # pull requests
    def find_pull_request_by_branch(self, branch, state="open"):
        pr = self.prs.get(branch)
        if pr is None:
            return None
        if state == "open" and pr.state != "open":
            return None
        return pr

    def create_pr(self, title, body_file, base, head, draft=True):
        self.body_files.append(Path(body_file))
        body = Path(body_file).read_text()
        number = self.next_number
        self.next_number += 1
        pr = PullRequest(number, f"https://github.com/o/r/pull/{number}", title, body,
                         is_draft=draft, head=head, base=base)
        self.prs[head] = pr
        self.writes.append(("create_pr", number))
        return pr

    def update_pr(self, number, title=None, body_file=None):
        head, pr = self._by_number(number)
        body = Path(body_file).read_text() if body_file else pr.body
        self.prs[head] = PullRequest(pr.number, pr.url, title or pr.title, body, pr.is_draft,
                                     pr.labels, pr.state, pr.head, pr.base)
        self.writes.append(("update_pr", number))

    def sync_labels(self, number, desired, mode="replace", current=None):
        head, pr = self._by_number(number)
        added = tuple(label for label in desired if label not in pr.labels)
        if not added:
            return LabelSync()
        self.prs[head] = PullRequest(pr.number, pr.url, pr.title, pr.body, pr.is_draft,
                                     pr.labels + added, pr.state, pr.head, pr.base)
        self.writes.append(("sync_labels", number))
        return LabelSync(added=added)

    def set_draft(self, number, draft):
        head, pr = self._by_number(number)
        self.prs[head] = PullRequest(pr.number, pr.url, pr.title, pr.body, draft,
                                     pr.labels, pr.state, pr.head, pr.base)
        self.writes.append(("set_draft", number, draft))

    def _by_number(self, number):
        for head, pr in self.prs.items():
            if pr.number == number:
                return head, pr
        raise KeyError(number)

    # project board
    def get_project_status(self, snapshot, ticket_id):
        if ticket_id not in self.board:
            return None, None
        return object(), self.board[ticket_id]

    def ensure_project_status(self, snapshot, ticket_id, target, allow_backward=False, item=None):
        if snapshot is None:
            return ProjectStatusResult(False, None, "Project cache not loaded.", soft_failure=True)
        previous = self.board.get(ticket_id)
        if previous is None:
            return ProjectStatusResult(False, None, f"Project item for {ticket_id} not found.", soft_failure=True)
        if previous == target:
            return ProjectStatusResult(False, previous, f"Project status already {target}.")
        if is_backward(previous, parse_status(target)) and not allow_backward:
            return ProjectStatusResult(False, previous, f"Project status {previous} is past {target}.")
        self.board[ticket_id] = target
        self.writes.append(("project_status", ticket_id, target))
        return ProjectStatusResult(True, previous, f"Project status updated to {target}.")


class FakeGit:
    """In-memory branches, worktrees and one remote."""

    def __init__(self, current="main"):
        self.current = current
        self.local: dict[str, str] = {"main": "base0"}
        self.remote: dict[str, RemoteBranchState] = {}
        self.worktrees: dict[Path, str] = {}
        self.dirty: set[Path] = set()
        self.writes: list[tuple] = []
        self._counter = 0

    def current_branch(self, cwd=None):
        return self.current

    def branch_exists(self, branch):
        return branch in self.local

    def local_sha(self, ref, cwd=None):
        if ref == "HEAD" and cwd is not None:
            ref = self.worktrees.get(Path(cwd), self.current)
        return self.local.get(ref)

    def commits_ahead(self, base, ref="HEAD", cwd=None):
        sha = self.local_sha(ref, cwd)
        return 0 if sha is None or sha == self.local.get(base) else 1

    def is_ancestor(self, ancestor, descendant):
        return False

    def worktree_exists(self, path):
        return Path(path) in self.worktrees

    def worktree_for_branch(self, branch):
        for path, wt_branch in self.worktrees.items():
            if wt_branch == branch:
                return path
        return None

    def worktree_branch_for_ticket(self, ticket_id):
        for wt_branch in self.worktrees.values():
            if wt_branch.split("/", 1)[-1].startswith(f"{ticket_id}-"):
                return wt_branch
        return None

    def local_branch_for_ticket(self, ticket_id):
        matches = [b for b in self.local if b.split("/", 1)[-1].startswith(f"{ticket_id}-")]
        return matches[0] if len(matches) == 1 else None

    def create_worktree(self, path, branch, base_branch):
        path = Path(path)
        if path in self.worktrees:
            return False
        self.local.setdefault(branch, self.local[base_branch])
        self.worktrees[path] = branch
        path.mkdir(parents=True, exist_ok=True)
        self.writes.append(("create_worktree", branch))
        return True

    def remove_worktree(self, path, force=False):
        path = Path(path)
        if path not in self.worktrees:
            return False
        if path in self.dirty and not force:
            raise PreconditionError(f"Worktree {path} has uncommitted changes.")
        del self.worktrees[path]
        self.writes.append(("remove_worktree", path))
        return True

    def has_uncommitted_changes(self, cwd=None):
        return Path(cwd) in self.dirty

    def commit_bootstrap(self, cwd, message, paths=None):
        branch = self.worktrees[Path(cwd)]
        self._counter += 1
        sha = f"boot{self._counter}"
        self.local[branch] = sha
        self.writes.append(("commit_bootstrap", branch, message))
        return sha

    def remote_branch_state(self, branch):
        return self.remote.get(branch, RemoteBranchState(RemoteState.NO_REMOTE))

    def push_branch(self, branch, force=False, cwd=None):
        remote = self.remote_branch_state(branch)
        local = self.local.get(branch)
        action = decide_push(remote, local, force)
        if action == PUSH_REFUSE:
            raise refused_push_error(branch, remote)
        if action == PUSH_NONE:
            return PushOutcome(action, branch, remote.state, pushed=False)
        self.remote[branch] = RemoteBranchState(RemoteState.BOOTSTRAP_ONLY, local,
                                                f"[{branch}] Bootstrap worktree for X [skip ci]")
        self.writes.append(("push", branch, action))
        return PushOutcome(action, branch, remote.state, pushed=True)


@pytest.fixture
def tracker():
    return FakeTracker()


@pytest.fixture
def git():
    return FakeGit()


@pytest.fixture
def adapters(config, tracker, git, snapshot):
    return Adapters(
        store=DocumentStore(config.documents_directory),
        tracker=tracker,
        git=git,
        snapshot=snapshot,
    )
