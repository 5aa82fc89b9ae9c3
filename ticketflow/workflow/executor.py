"""
Plan executor.

Carries out a LifecyclePlan in a fixed order:

    pre-flight -> worktree -> (1) document fields -> bootstrap commit / push
    -> (2) issue / PR -> archive -> worktree removal -> (3) project status

Each step re-reads live state right before it writes and skips values that
are already correct. When a step fails, the earlier steps stay applied and
a re-run converges. Nothing here retries.
"""

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from ticketflow.git.repo import (
    PUSH_NONE,
    PUSH_REFUSE,
    RemoteBranchState,
    RemoteState,
    bootstrap_message,
    refused_push_error,
)
from ticketflow.lib.constants import STAGE_BRANCH, STAGE_PR, STAGE_REVIEW
from ticketflow.lib.documents import DocumentHandle, DocumentStore
from ticketflow.lib.errors import ArchiveError, PreconditionError, TicketNotFoundError
from ticketflow.lib.github import LABEL_MODE_MERGE
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.planner import (
    PR_REFUSE,
    WORKTREE_REMOVE,
    LifecyclePlan,
)
from ticketflow.workflow.state_machine import parse_status, plan_transition

logger = logging.getLogger(__name__)

# Realized PR actions
PR_CREATED = "created"
PR_UPDATED = "updated"
PR_UNCHANGED = "unchanged"


@dataclass
class StepResult:
    name: str
    changed: bool
    detail: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "changed": self.changed, "detail": self.detail}


@dataclass
class StageResult:
    """Plan plus what a real run actually changed."""
    plan: LifecyclePlan
    dry_run: bool
    steps: list[StepResult] = field(default_factory=list)
    pr_action: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(step.changed for step in self.steps)

    def record(self, name: str, changed: bool, detail: str = "") -> StepResult:
        step = StepResult(name, changed, detail)
        self.steps.append(step)
        logger.info(f"[STEP] {self.plan.ticket_id} {name}: {'changed' if changed else 'unchanged'}"
                    + (f" ({detail})" if detail else ""))
        return step

    def to_dict(self) -> dict:
        data = {
            "dryRun": self.dry_run,
            "changed": self.changed,
            "plan": self.plan.to_dict(),
            "steps": [step.to_dict() for step in self.steps],
            "warnings": list(self.warnings),
        }
        if not self.dry_run and self.pr_action is not None:
            data["pr"] = {"action": self.pr_action, "number": self.pr_number, "url": self.pr_url}
        return data


@contextmanager
def staged_body(body: str):
    """Write a PR body to a temp file and always remove it on exit."""
    tmp = tempfile.NamedTemporaryFile(
        "w", prefix="ticketflow-pr-body-", suffix=".md", delete=False, encoding="utf-8",
    )
    path = Path(tmp.name)
    try:
        with tmp:
            tmp.write(body)
        yield path
    finally:
        path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def _preflight(plan: LifecyclePlan, adapters: Adapters) -> None:
    """Refuse unsafe plans before any mutation."""
    push = plan.push
    if push is not None and push.action == PUSH_REFUSE:
        raise refused_push_error(
            plan.branch, RemoteBranchState(RemoteState.REAL_WORK, push.remote_sha, push.remote_subject)
        )
    if plan.pr is not None and plan.pr.action == PR_REFUSE:
        raise PreconditionError(plan.pr.refusal, remediation=plan.pr.remediation)
    if plan.archive is not None and plan.archive.source.exists() and plan.archive.destination.exists():
        raise ArchiveError(f"Archive destination already exists: {plan.archive.destination}")
    worktree = plan.worktree
    if worktree is not None and worktree.action == WORKTREE_REMOVE:
        if adapters.git.has_uncommitted_changes(worktree.path):
            raise PreconditionError(
                f"Worktree {worktree.path} has uncommitted changes.",
                remediation="commit or discard them, or pass --keep-worktree",
            )


def _create_worktree(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    worktree = plan.worktree
    if worktree is None or plan.stage != STAGE_BRANCH:
        return
    changed = adapters.git.create_worktree(worktree.path, plan.branch, plan.base_branch)
    result.record("worktree", changed, str(worktree.path))


def _sync_document(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    doc = plan.document
    if doc is None:
        return
    path = Path(doc.path)

    if not path.exists():
        # New worktree checked out from a base that does not carry the document yet
        source = adapters.store.resolve(plan.ticket_id)
        if source is None:
            raise TicketNotFoundError(f"No ticket document for {plan.ticket_id}")
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source.path, path)
        logger.info(f"[DOC] Copied {source.path.name} into {path.parent}")

    store = DocumentStore(path.parent)
    handle = DocumentHandle(plan.ticket_id, path)
    live = store.read_status(handle)
    transition = plan_transition(live, parse_status(doc.status.to_status), doc.allow_backward, plan.ticket_id)
    status = transition.to_status if transition.changes else None

    changed = store.ensure_fields(handle, issue=doc.issue, status=status)
    result.record("document", changed, f"status {transition.effective}")


def _bootstrap(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    if not plan.bootstrap or plan.worktree is None:
        return
    git = adapters.git
    cwd = plan.worktree.path
    if git.commits_ahead(plan.base_branch, "HEAD", cwd) > 0:
        result.record("bootstrap", False, "branch already has commits")
        return
    paths = []
    if plan.document is not None:
        try:
            paths.append(str(Path(plan.document.path).relative_to(cwd)))
        except ValueError:
            pass
    issue = plan.document.issue if plan.document else None
    sha = git.commit_bootstrap(cwd, bootstrap_message(plan.branch, plan.ticket_id, issue), paths)
    result.record("bootstrap", True, sha[:8])


def _push(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    push = plan.push
    if push is None or push.action == PUSH_NONE:
        return
    cwd = plan.worktree.path if plan.worktree is not None else None
    outcome = adapters.git.push_branch(plan.branch, force=push.force, cwd=cwd)
    result.record("push", outcome.pushed, outcome.action)


def _sync_pr(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    pr_plan = plan.pr
    tracker = adapters.tracker
    live = tracker.find_pull_request_by_branch(plan.branch)

    if live is None:
        with staged_body(pr_plan.body) as body_file:
            pr = tracker.create_pr(pr_plan.title, body_file, plan.base_branch, plan.branch,
                                   draft=bool(pr_plan.draft))
        if pr_plan.labels:
            tracker.sync_labels(pr.number, pr_plan.labels, LABEL_MODE_MERGE, current=pr.labels)
        result.pr_action, result.pr_number, result.pr_url = PR_CREATED, pr.number, pr.url
        result.record("pr", True, f"created #{pr.number}")
        return

    changes = []
    title = pr_plan.title if live.title != pr_plan.title else None
    if live.body.strip() != pr_plan.body.strip():
        with staged_body(pr_plan.body) as body_file:
            tracker.update_pr(live.number, title=title, body_file=body_file)
        changes.append("body")
    elif title:
        tracker.update_pr(live.number, title=title)
    if title:
        changes.append("title")

    if pr_plan.draft is not None and live.is_draft != pr_plan.draft:
        tracker.set_draft(live.number, pr_plan.draft)
        changes.append("draft")

    if pr_plan.labels and tracker.sync_labels(live.number, pr_plan.labels, LABEL_MODE_MERGE,
                                              current=live.labels).changed:
        changes.append("labels")

    result.pr_action = PR_UPDATED if changes else PR_UNCHANGED
    result.pr_number, result.pr_url = live.number, live.url
    result.record("pr", bool(changes), ", ".join(changes) or f"#{live.number}")


def _mark_ready(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    live = adapters.tracker.find_pull_request_by_branch(plan.branch)
    if live is None:
        raise PreconditionError(f"No open PR for {plan.branch}.", remediation="run `tflow pr` first")
    changed = live.is_draft
    if changed:
        adapters.tracker.set_draft(live.number, False)
    result.pr_action = PR_UPDATED if changed else PR_UNCHANGED
    result.pr_number, result.pr_url = live.number, live.url
    result.record("pr", changed, "ready for review" if changed else f"#{live.number}")


def _close_issue(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    if plan.issue is None:
        return
    live = adapters.tracker.get_issue(plan.issue.number)
    changed = live.is_open
    if changed:
        adapters.tracker.close_issue(live.number, comment=f"Closed by {plan.ticket_id} close-out.")
    result.record("issue", changed, f"#{live.number} closed")


def _archive(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    archive = plan.archive
    if archive is None:
        return
    if not archive.source.exists():
        if archive.destination.exists():
            result.record("archive", False, str(archive.destination))
            return
        raise TicketNotFoundError(f"No ticket document at {archive.source}")
    store = DocumentStore(archive.source.parent)
    dest = store.archive(DocumentHandle(plan.ticket_id, archive.source),
                         year=int(archive.destination.parent.name))
    result.record("archive", True, str(dest))


def _remove_worktree(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    worktree = plan.worktree
    if worktree is None or worktree.action != WORKTREE_REMOVE:
        return
    changed = adapters.git.remove_worktree(worktree.path)
    result.record("worktreeRemoval", changed, str(worktree.path))


def _sync_project(plan: LifecyclePlan, adapters: Adapters, result: StageResult) -> None:
    project = plan.project_status
    if project is None:
        return
    outcome = adapters.tracker.ensure_project_status(
        adapters.snapshot, plan.ticket_id, project.transition.to_status,
        allow_backward=project.allow_backward,
    )
    if outcome.soft_failure:
        result.warnings.append(outcome.message)
    result.record("projectStatus", outcome.changed, outcome.message)


def execute_plan(plan: LifecyclePlan, adapters: Adapters, execute: bool = True) -> StageResult:
    """Apply plan. With execute=False only the plan is returned.

    Raises:
        PreconditionError: Refused push or PR, dirty worktree
        ArchiveError: Archive destination already exists
        TransientIOError: git or gh failed; steps before it stay applied
    """
    if not execute:
        return StageResult(plan, dry_run=True)

    _preflight(plan, adapters)
    result = StageResult(plan, dry_run=False)

    _create_worktree(plan, adapters, result)
    _sync_document(plan, adapters, result)
    _bootstrap(plan, adapters, result)
    _push(plan, adapters, result)
    if plan.pr is not None and plan.stage == STAGE_PR:
        _sync_pr(plan, adapters, result)
    elif plan.pr is not None and plan.stage == STAGE_REVIEW:
        _mark_ready(plan, adapters, result)
    _close_issue(plan, adapters, result)
    _archive(plan, adapters, result)
    _remove_worktree(plan, adapters, result)
    _sync_project(plan, adapters, result)

    logger.info(f"[STAGE] {plan.ticket_id} {plan.stage}: {'changed' if result.changed else 'no changes'}")
    return result
