"""
Read-only lookups feeding the planner.

gather_inputs() asks each adapter for the live state one stage needs and
packs it into PlanInputs. Lookup failures that do not make planning
impossible become notes, so a dry run still renders a full plan.
"""

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from ticketflow.git.repo import LocalGit
from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import STAGE_BRANCH, STAGE_CLOSEOUT, STAGE_PR, STAGE_REVIEW
from ticketflow.lib.documents import DocumentHandle, DocumentSnapshot, DocumentStore
from ticketflow.lib.errors import SoftSyncWarning, TransientIOError, ValidationError
from ticketflow.lib.github import GitHubTracker
from ticketflow.lib.project_cache import ProjectSnapshot, load_project_cache
from ticketflow.workflow.planner import (
    PlanInputs,
    StageOptions,
    branch_suffix,
    default_worktree_path,
    derive_branch,
    validate_ticket_id,
)

logger = logging.getLogger(__name__)


@dataclass
class Adapters:
    """Injected collaborators for planning and execution."""
    store: DocumentStore
    tracker: GitHubTracker
    git: LocalGit
    snapshot: ProjectSnapshot | None = None
    snapshot_note: str | None = None


def build_adapters(config: LifecycleConfig) -> Adapters:
    """Real adapters for the repository the config was loaded from."""
    try:
        snapshot = load_project_cache(config.root)
        note = None
    except SoftSyncWarning as e:
        logger.warning(f"[PROJECT] {e}")
        snapshot, note = None, str(e)
    return Adapters(
        store=DocumentStore(config.documents_directory),
        tracker=GitHubTracker(config.root),
        git=LocalGit(config.root, config.remote),
        snapshot=snapshot,
        snapshot_note=note,
    )


def resolve_branch(ticket_id: str, options: StageOptions, git: LocalGit) -> str | None:
    """Explicit --branch, else the current branch if it carries the ticket, else a ticket
    worktree, else the single local branch for the ticket (its worktree may be gone)."""
    if options.branch:
        return options.branch
    current = git.current_branch()
    if current and branch_suffix(current).startswith(f"{ticket_id}-"):
        return current
    return (git.worktree_branch_for_ticket(ticket_id)
            or git.local_branch_for_ticket(ticket_id)
            or current)


def worktree_snapshot(handle: DocumentHandle, worktree_path: Path,
                      config: LifecycleConfig) -> DocumentSnapshot | None:
    """The worktree's copy of a ticket document, or None if it has none yet."""
    try:
        rel = handle.path.relative_to(config.root)
    except ValueError:
        return None
    copy = worktree_path / rel
    if not copy.exists():
        return None
    return DocumentStore(copy.parent).snapshot(DocumentHandle(handle.ticket_id, copy))


def gather_inputs(stage: str, ticket_id: str, options: StageOptions, config: LifecycleConfig,
                  adapters: Adapters, today: date | None = None) -> PlanInputs:
    """Collect everything build_plan() needs for one stage.

    Raises:
        ValidationError: Bad ticket id
        AmbiguousTicketError: Several documents match the ticket id
        PreconditionError: More than one open PR for the branch
    """
    validate_ticket_id(ticket_id)
    store, tracker, git = adapters.store, adapters.tracker, adapters.git
    notes: list[str] = []

    handle = store.resolve(ticket_id)
    if handle is None and stage == STAGE_CLOSEOUT:
        handle = store.resolve_archived(ticket_id)
    document = store.snapshot(handle) if handle else None

    # Issue: explicit number in the document, else a title match
    issue = None
    try:
        if document is not None and isinstance(document.issue, int):
            issue = tracker.get_issue(document.issue)
        else:
            issue = tracker.find_issue_for_ticket(ticket_id)
    except TransientIOError as e:
        notes.append(f"Issue lookup failed: {e}")

    if stage == STAGE_BRANCH:
        try:
            branch = derive_branch(ticket_id, options.slug, options.prefix, config)
        except ValidationError:
            # build_plan reports it
            branch = None
    else:
        branch = resolve_branch(ticket_id, options, git)

    existing_pr = None
    pr_lookup_error = None
    if branch and stage in (STAGE_PR, STAGE_REVIEW, STAGE_CLOSEOUT):
        try:
            state = "all" if stage == STAGE_CLOSEOUT else "open"
            existing_pr = tracker.find_pull_request_by_branch(branch, state=state)
        except TransientIOError as e:
            pr_lookup_error = str(e)

    remote = None
    remote_lookup_error = None
    local_sha = None
    fast_forward = False
    commits_ahead = 0
    if branch and stage in (STAGE_BRANCH, STAGE_PR):
        local_sha = git.local_sha(branch)
        try:
            remote = git.remote_branch_state(branch)
        except TransientIOError as e:
            remote_lookup_error = str(e)
        if remote is not None and remote.sha and local_sha:
            fast_forward = remote.sha != local_sha and git.is_ancestor(remote.sha, local_sha)
        if stage == STAGE_BRANCH and git.branch_exists(branch):
            commits_ahead = git.commits_ahead(options.base or config.base_branch, branch)

    worktree_path = None
    worktree_exists = False
    worktree_document = None
    if branch and stage == STAGE_BRANCH:
        worktree_path = Path(options.worktree_dir) if options.worktree_dir else default_worktree_path(config.root, branch)
        worktree_exists = git.worktree_exists(worktree_path)
        if worktree_exists and handle is not None:
            worktree_document = worktree_snapshot(handle, worktree_path, config)
    elif branch and stage == STAGE_CLOSEOUT:
        worktree_path = git.worktree_for_branch(branch)
        worktree_exists = worktree_path is not None

    project_status, project_note = None, adapters.snapshot_note
    if adapters.snapshot is not None:
        try:
            item, project_status = tracker.get_project_status(adapters.snapshot, ticket_id)
            project_note = "Project item fetched." if item else "Project item not found."
        except (TransientIOError, SoftSyncWarning) as e:
            project_note = str(e)

    logger.debug(f"[PLAN] {ticket_id} {stage}: branch={branch} pr={existing_pr.number if existing_pr else None}")
    return PlanInputs(
        ticket_id=ticket_id,
        config=config,
        options=options,
        document=document,
        worktree_document=worktree_document,
        branch=branch,
        issue=issue,
        existing_pr=existing_pr,
        pr_lookup_error=pr_lookup_error,
        project_status=project_status,
        project_note=project_note,
        remote=remote,
        remote_lookup_error=remote_lookup_error,
        local_sha=local_sha,
        fast_forward=fast_forward,
        commits_ahead=commits_ahead,
        worktree_path=worktree_path,
        worktree_exists=worktree_exists,
        today=today or date.today(),
        notes=tuple(notes),
    )
