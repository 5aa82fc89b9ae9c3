"""
GitHub integration for the ticket lifecycle.

Wraps issue/PR CRUD, label sync and project board lookups/mutations via the
gh CLI. Every failed gh call raises TransientIOError with gh's stderr; the
tracker never retries, since every caller is idempotent and safe to re-run.
"""

import json
import logging
import re
import subprocess
from pathlib import Path

from ticketflow.lib.errors import PreconditionError, SoftSyncWarning, TransientIOError
from ticketflow.lib.project_cache import ProjectSnapshot
from ticketflow.lib.types import (
    FieldValue,
    Issue,
    LabelSync,
    ProjectItem,
    ProjectStatusResult,
    PullRequest,
)
from ticketflow.workflow.state_machine import is_backward, parse_status

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

# Items fetched per page when scanning the project board
PROJECT_PAGE_SIZE = 50

# Label sync modes
LABEL_MODE_REPLACE = "replace"
LABEL_MODE_MERGE = "merge"
VALID_LABEL_MODES = {LABEL_MODE_REPLACE, LABEL_MODE_MERGE}

PR_JSON_FIELDS = "number,title,body,isDraft,state,headRefName,baseRefName,labels,url"
ISSUE_JSON_FIELDS = "number,title,labels,body,state"

ITEMS_QUERY = """
query($projectId: ID!, $first: Int!, $after: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      items(first: $first, after: $after) {
        nodes {
          id
          content {
            __typename
            ... on Issue { number title }
            ... on PullRequest { number title }
          }
          fieldValues(first: 50) {
            nodes {
              __typename
              ... on ProjectV2ItemFieldTextValue { text field { ... on ProjectV2FieldCommon { id name } } }
              ... on ProjectV2ItemFieldNumberValue { number field { ... on ProjectV2FieldCommon { id name } } }
              ... on ProjectV2ItemFieldSingleSelectValue { name optionId field { ... on ProjectV2FieldCommon { id name } } }
              ... on ProjectV2ItemFieldDateValue { date field { ... on ProjectV2FieldCommon { id name } } }
              ... on ProjectV2ItemFieldIterationValue { title field { ... on ProjectV2FieldCommon { id name } } }
            }
          }
        }
        pageInfo { hasNextPage endCursor }
      }
    }
  }
}
"""

FIELD_OPTIONS_QUERY = """
query($fieldId: ID!) {
  node(id: $fieldId) {
    ... on ProjectV2SingleSelectField { id name options { id name } }
  }
}
"""

UPDATE_SINGLE_SELECT_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(
    input: {
      projectId: $projectId
      itemId: $itemId
      fieldId: $fieldId
      value: { singleSelectOptionId: $optionId }
    }
  ) {
    projectV2Item { id }
  }
}
"""

# One decoder per field-value typename: typename -> (kind, value getter)
FIELD_VALUE_DECODERS = {
    "ProjectV2ItemFieldTextValue": ("text", lambda node: node.get("text")),
    "ProjectV2ItemFieldNumberValue": ("number", lambda node: node.get("number")),
    "ProjectV2ItemFieldSingleSelectValue": ("single_select", lambda node: node.get("name")),
    "ProjectV2ItemFieldDateValue": ("date", lambda node: node.get("date")),
    "ProjectV2ItemFieldIterationValue": ("iteration", lambda node: node.get("title")),
}


def check_gh_available() -> tuple[bool, str]:
    """Check gh CLI is installed and authenticated.

    Returns: (ok, error_message)
    """
    try:
        result = subprocess.run(
            ["gh", "--version"],
            capture_output=True,
            timeout=5,
        )
        if result.returncode != 0:
            return False, "GitHub CLI (gh) not installed\n  Install: https://cli.github.com/"

        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            return False, "GitHub CLI not authenticated\n  Run: gh auth login"

        return True, ""

    except FileNotFoundError:
        return False, "GitHub CLI (gh) not found\n  Install: https://cli.github.com/"
    except subprocess.TimeoutExpired:
        return False, "GitHub CLI timed out"


def decode_field_value(node: dict) -> FieldValue | None:
    """Decode one fieldValues node. Unknown typenames decode to a None value."""
    field = node.get("field") or {}
    field_id = field.get("id")
    if not field_id:
        return None
    typename = node.get("__typename", "")
    kind, getter = FIELD_VALUE_DECODERS.get(typename, ("unknown", lambda _node: None))
    return FieldValue(
        field_id=field_id,
        field_name=field.get("name", ""),
        kind=kind,
        value=getter(node),
        option_id=node.get("optionId") if kind == "single_select" else None,
    )


def decode_field_values(nodes: list[dict] | None) -> dict[str, FieldValue]:
    values: dict[str, FieldValue] = {}
    for node in nodes or []:
        decoded = decode_field_value(node or {})
        if decoded is not None:
            values[decoded.field_id] = decoded
    return values


def extract_pr_number(url: str) -> int | None:
    match = re.search(r'/(\d+)/?(?:$|\?)', url or "")
    return int(match.group(1)) if match else None


def _label_names(raw) -> tuple[str, ...]:
    return tuple(label.get("name", "") if isinstance(label, dict) else str(label) for label in raw or [])


def _parse_pr(data: dict) -> PullRequest:
    return PullRequest(
        number=data["number"],
        url=data.get("url", ""),
        title=data.get("title", ""),
        body=data.get("body") or "",
        is_draft=bool(data.get("isDraft", False)),
        labels=_label_names(data.get("labels")),
        state=(data.get("state") or "open").lower(),
        head=data.get("headRefName", ""),
        base=data.get("baseRefName", ""),
    )


def _parse_issue(data: dict) -> Issue:
    return Issue(
        number=data["number"],
        title=data.get("title", ""),
        state=(data.get("state") or "open").lower(),
        body=data.get("body") or "",
        labels=_label_names(data.get("labels")),
    )


def _title_matches_ticket(title: str, ticket_id: str) -> bool:
    title = title.strip()
    return (
        title == ticket_id
        or title.startswith(f"[{ticket_id}]")
        or title.startswith(f"{ticket_id}:")
        or title.startswith(f"{ticket_id} ")
    )


class GitHubTracker:
    """Issue tracker and project board access for one repository."""

    def __init__(self, cwd: Path, timeout: int = GH_TIMEOUT_SECONDS):
        self.cwd = Path(cwd)
        self.timeout = timeout

    # -- plumbing ----------------------------------------------------------

    def _run(self, args: list[str]) -> str:
        label = " ".join(args[:2])
        try:
            result = subprocess.run(
                ["gh"] + args,
                capture_output=True,
                text=True,
                cwd=str(self.cwd),
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise TransientIOError(f"gh {label} timed out after {self.timeout}s") from None
        except (FileNotFoundError, subprocess.SubprocessError) as e:
            raise TransientIOError(f"gh {label} failed", str(e)) from None

        if result.returncode != 0:
            raise TransientIOError(f"gh {label} failed", result.stderr or "")
        return result.stdout

    def _json(self, args: list[str]):
        output = self._run(args)
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            raise TransientIOError(f"Invalid JSON from gh {' '.join(args[:2])}") from None

    def graphql(self, query: str, variables: dict | None = None) -> dict:
        """Run a GraphQL query via `gh api graphql`."""
        args = ["api", "graphql", "-f", f"query={' '.join(query.split())}"]
        for key, value in (variables or {}).items():
            if value is None:
                continue
            if isinstance(value, bool) or isinstance(value, int):
                args += ["-F", f"{key}={json.dumps(value)}"]
            else:
                args += ["-f", f"{key}={value}"]
        response = self._json(args)
        if response.get("errors"):
            messages = "; ".join(e.get("message", "") for e in response["errors"])
            raise TransientIOError("GraphQL request failed", messages)
        return response

    # -- issues ------------------------------------------------------------

    def get_issue(self, number: int) -> Issue:
        return _parse_issue(self._json(["issue", "view", str(number), "--json", ISSUE_JSON_FIELDS]))

    def find_issue_for_ticket(self, ticket_id: str) -> Issue | None:
        """Correlate a ticket with an issue by title when the document has no number."""
        data = self._json([
            "issue", "list", "--state", "all",
            "--search", f"{ticket_id} in:title",
            "--json", ISSUE_JSON_FIELDS,
            "--limit", "20",
        ])
        matches = [_parse_issue(d) for d in data if _title_matches_ticket(d.get("title", ""), ticket_id)]
        if not matches:
            return None
        # Open issues first, then lowest number
        matches.sort(key=lambda issue: (not issue.is_open, issue.number))
        return matches[0]

    def close_issue(self, number: int, comment: str | None = None) -> None:
        args = ["issue", "close", str(number)]
        if comment:
            args += ["--comment", comment]
        self._run(args)
        logger.info(f"[ISSUE] Closed #{number}")

    # -- pull requests -----------------------------------------------------

    def get_pr(self, number: int) -> PullRequest:
        return _parse_pr(self._json(["pr", "view", str(number), "--json", PR_JSON_FIELDS]))

    def find_pull_request_by_branch(self, branch: str, state: str = "open") -> PullRequest | None:
        """Find the PR whose head is branch.

        With state="open" at most one live PR may exist; more is a
        PreconditionError. With state="all" an open PR wins over a merged one.
        """
        data = self._json(["pr", "list", "--state", state, "--head", branch, "--json", PR_JSON_FIELDS])
        prs = [_parse_pr(d) for d in data if d.get("headRefName", branch) == branch]
        if not prs:
            return None
        if state == "open":
            if len(prs) > 1:
                numbers = ", ".join(f"#{pr.number}" for pr in prs)
                raise PreconditionError(
                    f"Branch {branch} has {len(prs)} open PRs ({numbers})",
                    remediation="close the duplicates so exactly one PR remains",
                )
            return prs[0]
        rank = {"open": 0, "merged": 1, "closed": 2}
        prs.sort(key=lambda pr: (rank.get(pr.state, 3), -pr.number))
        return prs[0]

    def create_pr(self, title: str, body_file: Path, base: str, head: str, draft: bool = True) -> PullRequest:
        args = ["pr", "create", "--title", title, "--body-file", str(body_file),
                "--base", base, "--head", head]
        if draft:
            args.append("--draft")
        url = self._run(args).strip()
        number = extract_pr_number(url)
        if number is None:
            pr = self.find_pull_request_by_branch(head)
            if pr is None:
                raise TransientIOError(f"PR created but not found by branch lookup for {head}")
            number = pr.number
        logger.info(f"[PR] Created #{number} for {head}")
        return self.get_pr(number)

    def update_pr(self, number: int, title: str | None = None, body_file: Path | None = None) -> None:
        args = ["pr", "edit", str(number)]
        if title:
            args += ["--title", title]
        if body_file:
            args += ["--body-file", str(body_file)]
        if len(args) == 3:
            return
        self._run(args)
        logger.info(f"[PR] Updated #{number}")

    def sync_labels(self, number: int, desired: list[str] | tuple[str, ...],
                    mode: str = LABEL_MODE_REPLACE, current: tuple[str, ...] | None = None) -> LabelSync:
        """Make the PR labels match desired.

        "replace" also removes labels not in desired; "merge" only adds.
        """
        if mode not in VALID_LABEL_MODES:
            raise ValueError(f"Unknown label mode '{mode}'")
        if current is None:
            current = self.get_pr(number).labels
        current_set = set(current)
        desired_set = set(desired)

        to_add = tuple(label for label in desired if label not in current_set)
        to_remove = tuple(sorted(current_set - desired_set)) if mode == LABEL_MODE_REPLACE else ()
        if not to_add and not to_remove:
            return LabelSync()

        args = ["pr", "edit", str(number)]
        for label in to_add:
            args += ["--add-label", label]
        for label in to_remove:
            args += ["--remove-label", label]
        self._run(args)
        logger.info(f"[PR] #{number} labels +{list(to_add)} -{list(to_remove)}")
        return LabelSync(added=to_add, removed=to_remove)

    def set_draft(self, number: int, draft: bool) -> None:
        args = ["pr", "ready", str(number)]
        if draft:
            args.append("--undo")
        self._run(args)
        logger.info(f"[PR] #{number} draft={draft}")

    # -- project board -----------------------------------------------------

    def find_project_item_by_field_value(self, project_id: str, field_id: str, value: str,
                                         page_size: int = PROJECT_PAGE_SIZE) -> ProjectItem | None:
        """Scan board items page by page for the first whose field equals value (trimmed)."""
        if not project_id or not field_id:
            raise ValueError("project_id and field_id required to locate project item")
        wanted = str(value).strip()
        cursor = None

        while True:
            response = self.graphql(ITEMS_QUERY, {"projectId": project_id, "first": page_size, "after": cursor})
            project = (response.get("data") or {}).get("node")
            if not project:
                return None

            items = project.get("items") or {}
            for node in items.get("nodes") or []:
                fields = decode_field_values((node.get("fieldValues") or {}).get("nodes"))
                match = fields.get(field_id)
                if match is None or match.value is None:
                    continue
                if str(match.value).strip() == wanted:
                    content = node.get("content") or {}
                    return ProjectItem(
                        id=node["id"],
                        fields=fields,
                        content_number=content.get("number"),
                        content_title=content.get("title"),
                    )

            page_info = items.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return None
            cursor = page_info.get("endCursor")

    def fetch_field_options(self, field_id: str) -> dict[str, str]:
        """Live single-select options for a field: option name -> option id."""
        response = self.graphql(FIELD_OPTIONS_QUERY, {"fieldId": field_id})
        node = (response.get("data") or {}).get("node") or {}
        return {o["name"]: o["id"] for o in node.get("options") or []}

    def update_single_select_field(self, project_id: str, item_id: str, field_id: str, option_id: str) -> None:
        self.graphql(UPDATE_SINGLE_SELECT_MUTATION, {
            "projectId": project_id,
            "itemId": item_id,
            "fieldId": field_id,
            "optionId": option_id,
        })

    def get_project_status(self, snapshot: ProjectSnapshot | None, ticket_id: str) -> tuple[ProjectItem | None, str | None]:
        """Look up the board item for a ticket and its current status value."""
        if snapshot is None:
            return None, None
        item = self.find_project_item_by_field_value(snapshot.project_id, snapshot.id_field.id, ticket_id)
        if item is None:
            return None, None
        return item, item.value_of(snapshot.status_field.id)

    def ensure_project_status(self, snapshot: ProjectSnapshot | None, ticket_id: str, target: str,
                              allow_backward: bool = False, item: ProjectItem | None = None) -> ProjectStatusResult:
        """Idempotently set the board status of a ticket.

        Stale or missing cache data never raises: the document and the issue
        outrank the board, so the result reports changed=False with a
        diagnostic. Transient gh failures still propagate.
        """
        previous = None
        try:
            if snapshot is None:
                raise SoftSyncWarning("Project cache not loaded.")
            status_field = snapshot.status_field
            id_field = snapshot.id_field

            if item is None:
                item = self.find_project_item_by_field_value(snapshot.project_id, id_field.id, ticket_id)
            if item is None:
                raise SoftSyncWarning(f"Project item for {ticket_id} not found.")

            previous = item.value_of(status_field.id)
            if previous == target:
                return ProjectStatusResult(False, previous, f"Project status already {target}.")

            target_status = parse_status(target)
            if target_status is not None and is_backward(previous, target_status) and not allow_backward:
                return ProjectStatusResult(
                    False, previous,
                    f"Project status {previous} is past {target}; backward moves need an explicit override.",
                )

            option_id = snapshot.status_option_id(target)
            live_options = self.fetch_field_options(status_field.id)
            if option_id not in live_options.values():
                raise SoftSyncWarning(
                    f'Cached option id for "{target}" no longer exists on the board '
                    f"(cache {snapshot.version}). Refresh the project cache."
                )

            self.update_single_select_field(snapshot.project_id, item.id, status_field.id, option_id)
            logger.info(f"[PROJECT] {ticket_id}: {previous or 'none'} -> {target}")
            return ProjectStatusResult(True, previous, f"Project status updated to {target}.")

        except SoftSyncWarning as e:
            logger.warning(f"[PROJECT] {ticket_id}: {e}")
            return ProjectStatusResult(False, previous, str(e), soft_failure=True)
