"""
Lifecycle planner.

build_plan() turns a stage, its options and the read-only lookups gathered
by context.gather_inputs() into an immutable LifecyclePlan. It never
touches git, gh or the filesystem, so the same plan is shown by a dry run
and carried out by the executor.

Validation failures raise before anything is planned. Conditions that only
matter to a real run (a refused push, a lookup that failed) are recorded in
the plan so a dry run can still render it.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path

from ticketflow.git.repo import (
    PUSH_FORCE_WITH_LEASE,
    PUSH_PLAIN,
    PUSH_REFUSE,
    RemoteBranchState,
    RemoteState,
    decide_push,
)
from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import (
    ARCHIVE_DIRNAME,
    SLUG_PATTERN,
    STAGE_BRANCH,
    STAGE_CLOSEOUT,
    STAGE_PR,
    STAGE_REVIEW,
    STAGE_STATUS,
    STAGES,
    TICKET_ID_PATTERN,
)
from ticketflow.lib.documents import ChecklistItem, DocumentSnapshot, Narrative, format_issue
from ticketflow.lib.errors import TicketNotFoundError, ValidationError
from ticketflow.lib.types import Issue, PullRequest
from ticketflow.workflow.state_machine import (
    ACTION_HOLD,
    LifecycleStatus,
    StatusTransition,
    parse_status,
    plan_transition,
)

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "feat"
BODY_PREVIEW_LINES = 12

# PR actions
PR_CREATE = "create"
PR_UPDATE = "update"
PR_READY = "ready"
PR_NONE = "none"
PR_REFUSE = "refuse"

# Worktree actions
WORKTREE_CREATE = "create"
WORKTREE_REMOVE = "remove"
WORKTREE_NONE = "none"


@dataclass(frozen=True)
class StageOptions:
    """Operator choices for one stage, straight from the CLI."""
    slug: str | None = None
    prefix: str | None = None
    base: str | None = None
    worktree_dir: Path | None = None
    bootstrap: bool = True
    force: bool = False
    branch: str | None = None
    title: str | None = None
    draft: bool | None = None
    target_status: str | None = None
    override: bool = False
    keep_worktree: bool = False


@dataclass(frozen=True)
class PlanInputs:
    """Read-only lookups for one planning run."""
    ticket_id: str
    config: LifecycleConfig
    options: StageOptions = field(default_factory=StageOptions)
    document: DocumentSnapshot | None = None
    # Branch stage: the copy inside an existing worktree, which is the one written
    worktree_document: DocumentSnapshot | None = None
    branch: str | None = None
    issue: Issue | None = None
    existing_pr: PullRequest | None = None
    pr_lookup_error: str | None = None
    project_status: str | None = None
    project_note: str | None = None
    remote: RemoteBranchState | None = None
    remote_lookup_error: str | None = None
    local_sha: str | None = None
    fast_forward: bool = False
    commits_ahead: int = 0
    worktree_path: Path | None = None
    worktree_exists: bool = False
    today: date | None = None
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorktreePlan:
    path: Path
    action: str

    def to_dict(self) -> dict:
        return {"path": str(self.path), "action": self.action}


@dataclass(frozen=True)
class DocumentPlan:
    path: Path
    issue: int | str | None
    status: StatusTransition
    changes: bool
    allow_backward: bool = False

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "issue": format_issue(self.issue),
            "status": self.status.to_dict(),
            "changes": self.changes,
        }


@dataclass(frozen=True)
class PushPlan:
    action: str
    remote_state: str | None
    remote_sha: str | None = None
    remote_subject: str | None = None
    force: bool = False

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "remoteState": self.remote_state,
            "remoteSha": self.remote_sha,
            "force": self.force,
        }


@dataclass(frozen=True)
class PrPlan:
    action: str
    title: str
    body: str
    draft: bool | None
    labels: tuple[str, ...]
    number: int | None = None
    url: str | None = None
    lookup_error: str | None = None
    # Set with action "refuse": why a real run must stop, and how to unblock it
    refusal: str | None = None
    remediation: str | None = None

    @property
    def exists(self) -> bool:
        return self.number is not None

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "exists": self.exists,
            "number": self.number,
            "url": self.url,
            "title": self.title,
            "draft": self.draft,
            "labels": list(self.labels),
            "bodyPreview": "\n".join(self.body.split("\n")[:BODY_PREVIEW_LINES]),
            "lookupError": self.lookup_error,
            "refusal": self.refusal,
        }


@dataclass(frozen=True)
class IssuePlan:
    number: int
    action: str  # "close" or "none"
    state: str

    def to_dict(self) -> dict:
        return {"number": self.number, "action": self.action, "state": self.state}


@dataclass(frozen=True)
class ArchivePlan:
    source: Path
    destination: Path

    def to_dict(self) -> dict:
        return {"source": str(self.source), "destination": str(self.destination)}


@dataclass(frozen=True)
class ProjectStatusPlan:
    transition: StatusTransition
    allow_backward: bool = False
    note: str | None = None

    def to_dict(self) -> dict:
        data = self.transition.to_dict()
        data["note"] = self.note
        return data


@dataclass(frozen=True)
class LifecyclePlan:
    """Desired end state of one stage across document, tracker and board."""
    stage: str
    ticket_id: str
    branch: str | None
    base_branch: str
    title: str | None = None
    worktree: WorktreePlan | None = None
    document: DocumentPlan | None = None
    bootstrap: bool = False
    push: PushPlan | None = None
    pr: PrPlan | None = None
    issue: IssuePlan | None = None
    archive: ArchivePlan | None = None
    project_status: ProjectStatusPlan | None = None
    checklist: tuple[ChecklistItem, ...] = ()
    labels: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        def part(value):
            return value.to_dict() if value is not None else None

        return {
            "stage": self.stage,
            "id": self.ticket_id,
            "branch": self.branch,
            "baseBranch": self.base_branch,
            "title": self.title,
            "worktree": part(self.worktree),
            "document": part(self.document),
            "bootstrap": self.bootstrap,
            "push": part(self.push),
            "pr": part(self.pr),
            "issue": part(self.issue),
            "archive": part(self.archive),
            "projectStatus": part(self.project_status),
            "checklist": [{"text": i.text, "checked": i.checked} for i in self.checklist],
            "labels": list(self.labels),
            "notes": list(self.notes),
        }


# ---------------------------------------------------------------------------
# Validation and derivation
# ---------------------------------------------------------------------------

def validate_ticket_id(ticket_id: str) -> str:
    if not ticket_id or not TICKET_ID_PATTERN.match(ticket_id):
        raise ValidationError(f"Ticket id '{ticket_id}' is invalid.", expected=TICKET_ID_PATTERN.pattern)
    return ticket_id


def branch_suffix(branch: str) -> str:
    return branch.split("/", 1)[1] if "/" in branch else ""


def validate_branch(branch: str, ticket_id: str, config: LifecycleConfig) -> str:
    """Branch must match the configured pattern and carry the `<ID>-` prefix."""
    if not config.branch_regex.match(branch):
        raise ValidationError(f'Branch "{branch}" is not lifecycle compliant.', expected=config.branch_pattern)
    if not branch_suffix(branch).startswith(f"{ticket_id}-"):
        raise ValidationError(f'Branch "{branch}" does not match ticket {ticket_id}.', expected=f"<prefix>/{ticket_id}-<slug>")
    return branch


def derive_branch(ticket_id: str, slug: str | None, prefix: str | None, config: LifecycleConfig) -> str:
    if not slug or not SLUG_PATTERN.match(slug):
        raise ValidationError(f"Slug '{slug}' is invalid.", expected=SLUG_PATTERN.pattern)
    if prefix is None:
        prefix = DEFAULT_PREFIX if DEFAULT_PREFIX in config.allowed_prefixes else config.allowed_prefixes[0]
    if prefix not in config.allowed_prefixes:
        raise ValidationError(f"Branch prefix '{prefix}' is not allowed.", expected="|".join(config.allowed_prefixes))
    return validate_branch(f"{prefix}/{ticket_id}-{slug}", ticket_id, config)


def derive_title(branch: str, ticket_id: str) -> str:
    """`feat/ARCH-42-add-lifecycle` -> `[ARCH-42] Add Lifecycle`."""
    slug = branch_suffix(branch).replace(f"{ticket_id}-", "", 1)
    words = [w[:1].upper() + w[1:] for w in slug.split("-") if w]
    return f"[{ticket_id}] {' '.join(words)}"


def resolve_title(explicit: str | None, branch: str, ticket_id: str, config: LifecycleConfig) -> str:
    candidate = explicit or derive_title(branch, ticket_id)
    if not config.pr_title_regex.match(candidate):
        raise ValidationError(f'PR title "{candidate}" is invalid.', expected=config.pr_title_pattern)
    return candidate


def build_pr_body(ticket_id: str, branch: str, narrative: Narrative | None,
                  checklist: tuple[ChecklistItem, ...], issue_number: int | None,
                  status: str | None, source: str | None = None) -> str:
    """PR body from the document narrative, checklist and footer metadata.

    Deterministic for identical inputs. Each checklist item is its own line.
    """
    narrative = narrative or Narrative()
    lines = [f"Closes #{issue_number}" if issue_number else f"Linked ticket: {ticket_id}", ""]

    for heading, text in (("Purpose", narrative.purpose),
                          ("Problem", narrative.problem),
                          ("Proposal", narrative.proposal)):
        if text:
            lines += [f"## {heading}", "", text.strip(), ""]

    if checklist:
        lines += ["## Acceptance Checklist", ""]
        lines += [item.render() for item in checklist]
        lines.append("")

    lines += ["---", ""]
    if narrative.title:
        lines.append(f"**Ticket**: {narrative.title}")
    if source:
        lines.append(f"**Source**: `{source}`")
    lines.append(f"**Branch**: `{branch}`")
    lines.append(f"**Status**: {status or 'Unknown'}")
    return "\n".join(lines).rstrip()


def default_worktree_path(root: Path, branch: str) -> Path:
    """`<root>/../<repo>-<branch with / replaced by ->`."""
    return root.parent / f"{root.name}-{branch.replace('/', '-')}"


def _issue_number(inputs: PlanInputs) -> int | None:
    doc = inputs.document
    if doc is not None and isinstance(doc.issue, int):
        return doc.issue
    if inputs.issue is not None:
        return inputs.issue.number
    return None


def _document_relpath(inputs: PlanInputs) -> Path | None:
    doc = inputs.document
    if doc is None:
        return None
    try:
        return doc.handle.path.relative_to(inputs.config.root)
    except ValueError:
        return Path(doc.handle.filename)


def _document_plan(inputs: PlanInputs, target: LifecycleStatus, path: Path | None = None,
                   allow_backward: bool = False, doc: DocumentSnapshot | None = None) -> DocumentPlan:
    doc = doc or inputs.document
    transition = plan_transition(doc.status, target, allow_backward, inputs.ticket_id)
    issue = _issue_number(inputs)
    issue_changes = doc.issue is None or (issue is not None and doc.issue != issue)
    return DocumentPlan(
        path=path or doc.handle.path,
        issue=issue if issue is not None else doc.issue,
        status=transition,
        changes=transition.changes or issue_changes,
        allow_backward=allow_backward,
    )


def _project_plan(inputs: PlanInputs, target: LifecycleStatus, fallback: str | None = None,
                  allow_backward: bool = False) -> ProjectStatusPlan:
    current = inputs.project_status or fallback
    transition = plan_transition(current, target, allow_backward, inputs.ticket_id)
    return ProjectStatusPlan(transition, allow_backward, inputs.project_note)


def _push_plan(inputs: PlanInputs, rewrites_head: bool, force: bool) -> PushPlan:
    remote = inputs.remote
    if remote is None:
        return PushPlan(PUSH_PLAIN, None, force=force)
    local = None if rewrites_head else inputs.local_sha
    fast_forward = inputs.fast_forward and not rewrites_head
    action = decide_push(remote, local, force, fast_forward)
    return PushPlan(action, remote.state.value, remote.sha, remote.subject, force)


def _require_document(inputs: PlanInputs) -> DocumentSnapshot:
    if inputs.document is None:
        raise TicketNotFoundError(
            f"No ticket document for {inputs.ticket_id} in {inputs.config.documents_directory}"
        )
    return inputs.document


def _resolve_branch(inputs: PlanInputs) -> str:
    branch = inputs.options.branch or inputs.branch
    if not branch:
        raise ValidationError("Could not determine the branch; pass --branch.",
                              expected=inputs.config.branch_pattern)
    return validate_branch(branch, inputs.ticket_id, inputs.config)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _plan_branch(inputs: PlanInputs) -> LifecyclePlan:
    opts = inputs.options
    config = inputs.config
    doc = _require_document(inputs)
    branch = derive_branch(inputs.ticket_id, opts.slug, opts.prefix, config)
    base = opts.base or config.base_branch
    notes = []

    path = Path(opts.worktree_dir) if opts.worktree_dir else (
        inputs.worktree_path or default_worktree_path(config.root, branch))
    worktree = WorktreePlan(path, WORKTREE_NONE if inputs.worktree_exists else WORKTREE_CREATE)

    rel = _document_relpath(inputs)
    document = _document_plan(inputs, LifecycleStatus.BRANCHED, path=path / rel,
                              doc=inputs.worktree_document)

    bootstrap = opts.bootstrap and inputs.commits_ahead == 0
    push = _push_plan(inputs, rewrites_head=bootstrap, force=opts.force)
    if inputs.remote_lookup_error:
        notes.append(f"Remote branch lookup failed: {inputs.remote_lookup_error}")
    if push.action == PUSH_REFUSE:
        notes.append(f"Remote branch {branch} carries real work; executing requires --force.")
    elif push.action == PUSH_FORCE_WITH_LEASE and push.remote_state == RemoteState.BOOTSTRAP_ONLY.value:
        notes.append("Remote branch holds only a bootstrap commit; it will be replaced with a lease-protected push.")

    return LifecyclePlan(
        stage=STAGE_BRANCH,
        ticket_id=inputs.ticket_id,
        branch=branch,
        base_branch=base,
        worktree=worktree,
        document=document,
        bootstrap=bootstrap,
        push=push,
        project_status=_project_plan(inputs, LifecycleStatus.BRANCHED, fallback=doc.status),
        checklist=doc.checklist,
        labels=doc.narrative.labels,
        notes=tuple(notes),
    )


def _plan_pr(inputs: PlanInputs) -> LifecyclePlan:
    opts = inputs.options
    config = inputs.config
    doc = inputs.document
    branch = _resolve_branch(inputs)
    title = resolve_title(opts.title, branch, inputs.ticket_id, config)
    notes = []

    document = _document_plan(inputs, LifecycleStatus.PR_OPEN) if doc else None
    if doc is None:
        notes.append(f"No ticket document for {inputs.ticket_id}; PR body links the ticket id only.")

    # Body carries the status the document ends with, so a re-run renders the same body
    status = document.status.effective if document else LifecycleStatus.PR_OPEN.value
    checklist = doc.checklist if doc else ()
    labels = doc.narrative.labels if doc else ()
    rel = _document_relpath(inputs)
    body = build_pr_body(
        inputs.ticket_id, branch,
        doc.narrative if doc else None, checklist,
        _issue_number(inputs), status,
        source=f"/{rel.as_posix()}" if rel else None,
    )

    existing = inputs.existing_pr
    if existing is None:
        pr = PrPlan(PR_CREATE, title, body, True if opts.draft is None else opts.draft, labels,
                    lookup_error=inputs.pr_lookup_error)
    else:
        stale = (
            existing.title != title
            or existing.body.strip() != body.strip()
            or (opts.draft is not None and existing.is_draft != opts.draft)
            or any(label not in existing.labels for label in labels)
        )
        pr = PrPlan(PR_UPDATE if stale else PR_NONE, title, body,
                    opts.draft,
                    labels, existing.number, existing.url, inputs.pr_lookup_error)

    push = None
    if inputs.remote is None or inputs.remote.state == RemoteState.NO_REMOTE or inputs.fast_forward:
        push = _push_plan(inputs, rewrites_head=False, force=False)
    elif inputs.remote.sha != inputs.local_sha:
        notes.append(f"Remote branch {branch} diverged from the local branch; not pushing.")
    if inputs.remote_lookup_error:
        notes.append(f"Remote branch lookup failed: {inputs.remote_lookup_error}")

    return LifecyclePlan(
        stage=STAGE_PR,
        ticket_id=inputs.ticket_id,
        branch=branch,
        base_branch=opts.base or config.base_branch,
        title=title,
        document=document,
        push=push,
        pr=pr,
        project_status=_project_plan(
            inputs, LifecycleStatus.PR_OPEN,
            fallback=(doc.status if doc and doc.status else LifecycleStatus.BRANCHED.value),
        ),
        checklist=checklist,
        labels=labels,
        notes=tuple(notes),
    )


def _plan_review(inputs: PlanInputs) -> LifecyclePlan:
    config = inputs.config
    doc = inputs.document
    branch = _resolve_branch(inputs)
    existing = inputs.existing_pr
    notes = []

    if existing is None and inputs.pr_lookup_error is None:
        refusal = f"No open PR for {branch}."
        notes.append(f"{refusal} Executing requires `tflow pr` first.")
        pr = PrPlan(PR_REFUSE, "", "", False, (), refusal=refusal,
                    remediation="run `tflow pr` first")
    elif existing is None:
        notes.append("PR lookup failed; the PR is looked up again at execution.")
        pr = PrPlan(PR_READY, "", "", False, (), lookup_error=inputs.pr_lookup_error)
    else:
        pr = PrPlan(PR_READY if existing.is_draft else PR_NONE, existing.title, existing.body,
                    False, existing.labels, existing.number, existing.url)

    return LifecyclePlan(
        stage=STAGE_REVIEW,
        ticket_id=inputs.ticket_id,
        branch=branch,
        base_branch=config.base_branch,
        title=pr.title or None,
        document=_document_plan(inputs, LifecycleStatus.IN_REVIEW) if doc else None,
        pr=pr,
        project_status=_project_plan(inputs, LifecycleStatus.IN_REVIEW,
                                     fallback=doc.status if doc else None),
        checklist=doc.checklist if doc else (),
        labels=doc.narrative.labels if doc else (),
        notes=tuple(notes),
    )


def _plan_status(inputs: PlanInputs) -> LifecyclePlan:
    opts = inputs.options
    doc = _require_document(inputs)
    target = parse_status(opts.target_status)
    if target is None:
        raise ValidationError(f"Unknown status '{opts.target_status}'.",
                              expected="|".join(s.value for s in LifecycleStatus))

    document = _document_plan(inputs, target, allow_backward=opts.override)
    notes = []
    if document.status.action == ACTION_HOLD:
        notes.append(f"Document is at {doc.status}, past {target.value}; pass --override to move it back.")

    return LifecyclePlan(
        stage=STAGE_STATUS,
        ticket_id=inputs.ticket_id,
        branch=inputs.branch,
        base_branch=inputs.config.base_branch,
        document=document,
        project_status=_project_plan(inputs, target, fallback=doc.status, allow_backward=opts.override),
        checklist=doc.checklist,
        labels=doc.narrative.labels,
        notes=tuple(notes),
    )


def _plan_closeout(inputs: PlanInputs) -> LifecyclePlan:
    opts = inputs.options
    config = inputs.config
    doc = _require_document(inputs)
    branch = _resolve_branch(inputs)
    existing = inputs.existing_pr
    notes = []

    title = existing.title if existing else ""
    body = existing.body if existing else ""
    labels = existing.labels if existing else ()
    number = existing.number if existing else None
    url = existing.url if existing else None
    if existing is None or not existing.is_merged:
        found = f"PR #{existing.number} is {existing.state}" if existing else f"no PR found for {branch}"
        if opts.force:
            notes.append(f"Forced close-out: {found}.")
            pr = PrPlan(PR_NONE, title, body, None, labels, number, url, inputs.pr_lookup_error)
        else:
            refusal = f"Cannot close out {inputs.ticket_id}: {found}."
            notes.append(f"{refusal} Executing requires a merged PR or --force.")
            pr = PrPlan(PR_REFUSE, title, body, None, labels, number, url, inputs.pr_lookup_error,
                        refusal=refusal, remediation="merge the PR first, or pass --force")
    else:
        pr = PrPlan(PR_NONE, title, body, None, labels, number, url)

    issue = None
    if inputs.issue is not None:
        issue = IssuePlan(inputs.issue.number, "close" if inputs.issue.is_open else "none", inputs.issue.state)

    source = doc.handle.path
    if source.parent.parent.name == ARCHIVE_DIRNAME:
        archive = None
        notes.append(f"Document already archived at {source}.")
    else:
        year = (inputs.today or date.today()).year
        archive = ArchivePlan(source, source.parent / ARCHIVE_DIRNAME / str(year) / source.name)

    worktree = None
    if inputs.worktree_path is not None:
        action = WORKTREE_NONE if opts.keep_worktree or not inputs.worktree_exists else WORKTREE_REMOVE
        worktree = WorktreePlan(inputs.worktree_path, action)

    return LifecyclePlan(
        stage=STAGE_CLOSEOUT,
        ticket_id=inputs.ticket_id,
        branch=branch,
        base_branch=config.base_branch,
        title=existing.title if existing else None,
        worktree=worktree,
        document=_document_plan(inputs, LifecycleStatus.ARCHIVED),
        pr=pr,
        issue=issue,
        archive=archive,
        project_status=_project_plan(inputs, LifecycleStatus.ARCHIVED, fallback=doc.status),
        checklist=doc.checklist,
        labels=doc.narrative.labels,
        notes=tuple(notes),
    )


_PLANNERS = {
    STAGE_BRANCH: _plan_branch,
    STAGE_PR: _plan_pr,
    STAGE_REVIEW: _plan_review,
    STAGE_STATUS: _plan_status,
    STAGE_CLOSEOUT: _plan_closeout,
}


def build_plan(stage: str, inputs: PlanInputs) -> LifecyclePlan:
    """Plan one stage. Pure: identical inputs give identical plans.

    Raises:
        ValidationError: Bad ticket id, branch, slug, title or status
        TicketNotFoundError: The stage needs a document and none was found
    """
    if stage not in STAGES:
        raise ValueError(f"Unknown stage '{stage}'")
    validate_ticket_id(inputs.ticket_id)
    plan = _PLANNERS[stage](inputs)
    if inputs.notes:
        plan = replace(plan, notes=inputs.notes + plan.notes)
    logger.debug(f"[PLAN] {inputs.ticket_id} {stage}: {len(plan.notes)} note(s)")
    return plan

