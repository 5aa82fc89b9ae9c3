"""
Ticket document store.

Ticket documents are markdown files with a small header of `Key: value`
fields (Lane, Labels, Issue, Status) followed by `## Section` blocks. The
store resolves a ticket ID to its document, reads the fields, narrative and
acceptance checklist, idempotently rewrites the Issue/Status fields, and
archives documents at close-out.

All edits preserve every byte outside the fields they touch, including line
endings, so repeated runs with identical targets write nothing.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from ticketflow.lib.constants import ARCHIVE_DIRNAME
from ticketflow.lib.errors import AmbiguousTicketError, ArchiveError

logger = logging.getLogger(__name__)

ISSUE_PENDING = "pending"

CHECKLIST_SECTION = "acceptance checklist"
NARRATIVE_SECTIONS = ("purpose", "problem", "proposal")

CHECKLIST_ITEM_PATTERN = re.compile(r'^\s*[-*]\s+\[([ xX])\]\s*(.*)$')
LABELS_PATTERN = re.compile(r'^\s*(?:[-*]\s*)?(?:\*\*)?Labels?(?:\*\*)?:\s*(.+)$', re.IGNORECASE)


@dataclass(frozen=True)
class DocumentHandle:
    """A resolved ticket document."""
    ticket_id: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ChecklistItem:
    text: str
    checked: bool = False

    def render(self) -> str:
        return f"- [{'x' if self.checked else ' '}] {self.text}"


@dataclass(frozen=True)
class Narrative:
    """Free-text parts of a ticket document."""
    title: str | None = None
    lane: str | None = None
    labels: tuple[str, ...] = ()
    purpose: str | None = None
    problem: str | None = None
    proposal: str | None = None


@dataclass(frozen=True)
class DocumentSnapshot:
    """Everything the planner needs from one document, read in one pass."""
    handle: DocumentHandle
    issue: int | str | None
    status: str | None
    narrative: Narrative
    checklist: tuple[ChecklistItem, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Parsing helpers (pure)
# ---------------------------------------------------------------------------

def _newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def _header_end(lines: list[str]) -> int:
    """Index of the first `## ` heading, or len(lines) if none."""
    for i, line in enumerate(lines):
        if line.startswith("## "):
            return i
    return len(lines)


def _find_field(lines: list[str], key: str, end: int) -> int:
    prefix = f"{key.lower()}:"
    for i in range(end):
        if lines[i].strip().lower().startswith(prefix):
            return i
    return -1


def parse_fields(text: str) -> dict[str, str]:
    """Parse header `Key: value` lines (before the first `## ` heading).

    Keys are lowercased. First occurrence wins.
    """
    lines = text.split(_newline(text))
    fields: dict[str, str] = {}
    for line in lines[:_header_end(lines)]:
        stripped = line.strip()
        if stripped.startswith("#") or ":" not in stripped:
            continue
        key, _, value = stripped.partition(":")
        key = key.strip().lower()
        if key and " " not in key and key not in fields:
            fields[key] = value.strip()
    return fields


def parse_issue(value: str | None) -> int | str | None:
    """Parse an Issue field value: `#12` -> 12, `pending` -> "pending"."""
    if value is None:
        return None
    value = value.strip()
    if value.lower() == ISSUE_PENDING:
        return ISSUE_PENDING
    match = re.match(r'^#?(\d+)$', value)
    if match:
        return int(match.group(1))
    return None


def format_issue(issue: int | str | None) -> str:
    if isinstance(issue, int):
        return f"#{issue}"
    return ISSUE_PENDING


def parse_sections(text: str) -> dict[str, str]:
    """Map lowercased `## Heading` names to their stripped content."""
    sections: dict[str, str] = {}
    current = None
    buffer: list[str] = []
    for line in text.split(_newline(text)):
        if line.startswith("## "):
            if current is not None and current not in sections:
                sections[current] = "\n".join(buffer).strip()
            current = line[3:].strip().lower()
            buffer = []
        elif current is not None:
            buffer.append(line)
    if current is not None and current not in sections:
        sections[current] = "\n".join(buffer).strip()
    return sections


def parse_checklist(text: str) -> list[ChecklistItem]:
    """Extract items of the `## Acceptance Checklist` section, in order."""
    content = parse_sections(text).get(CHECKLIST_SECTION)
    if not content:
        return []
    items = []
    for line in content.splitlines():
        match = CHECKLIST_ITEM_PATTERN.match(line)
        if match:
            items.append(ChecklistItem(text=match.group(2).strip(), checked=match.group(1) != " "))
    return items


def parse_labels(text: str) -> tuple[str, ...]:
    """Labels from the first `Labels: a, b` line outside the checklist."""
    sections = parse_sections(text)
    checklist = sections.get(CHECKLIST_SECTION, "")
    for line in text.split(_newline(text)):
        match = LABELS_PATTERN.match(line)
        if match and line.strip() not in checklist:
            raw = match.group(1).replace("**", "")
            return tuple(label.strip() for label in raw.split(",") if label.strip())
    return ()


def parse_narrative(text: str) -> Narrative:
    lines = text.split(_newline(text))
    title = None
    for line in lines:
        if line.startswith("# "):
            title = line[2:].strip()
            break
    fields = parse_fields(text)
    sections = parse_sections(text)
    lane = fields.get("lane") or sections.get("lane") or None
    if lane:
        lane = lane.splitlines()[0].strip()
    return Narrative(
        title=title,
        lane=lane,
        labels=parse_labels(text),
        purpose=sections.get("purpose") or None,
        problem=sections.get("problem") or None,
        proposal=sections.get("proposal") or None,
    )


def apply_fields(text: str, issue: int | str | None = None, status: str | None = None) -> str:
    """Return text with the Issue and Status header fields set.

    Existing fields are rewritten in place. Missing fields are inserted in a
    fixed order (Issue, then Status) directly after the Lane line if present,
    else at line 2, followed by one blank line. A pending or unknown issue
    never replaces an existing issue number. A None status leaves the field
    untouched.
    """
    nl = _newline(text)
    lines = text.split(nl)
    end = _header_end(lines)
    changed = False

    issue_index = _find_field(lines, "issue", end)
    if issue_index >= 0:
        current = parse_issue(lines[issue_index].split(":", 1)[1])
        if isinstance(issue, int) and current != issue:
            lines[issue_index] = f"Issue: {format_issue(issue)}"
            changed = True
    else:
        lane_index = _find_field(lines, "lane", end)
        issue_index = lane_index + 1 if lane_index >= 0 else min(2, len(lines))
        lines.insert(issue_index, f"Issue: {format_issue(issue)}")
        end += 1
        changed = True

    status_index = _find_field(lines, "status", end)
    if status is not None:
        desired = f"Status: {status}"
        if status_index >= 0:
            if lines[status_index].strip() != desired:
                lines[status_index] = desired
                changed = True
        else:
            status_index = issue_index + 1
            lines.insert(status_index, desired)
            changed = True

    anchor = status_index if status_index >= 0 else issue_index
    if changed and anchor + 1 < len(lines) and lines[anchor + 1].strip() != "":
        lines.insert(anchor + 1, "")

    if not changed:
        return text

    if lines[-1] != "":
        lines.append("")
    return nl.join(lines)


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_bytes(text.encode("utf-8"))
    os.replace(tmp, path)


def _read(path: Path) -> str:
    # Bytes, not read_text(): universal newlines would rewrite CRLF files
    return path.read_bytes().decode("utf-8")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DocumentStore:
    """Ticket documents under one directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def resolve(self, ticket_id: str) -> DocumentHandle | None:
        """Resolve a ticket ID to its document.

        Exact `<ID>.md` wins. Otherwise a single `<ID>-*.md` match is used.
        Several matches raise AmbiguousTicketError rather than guessing.
        """
        direct = self.directory / f"{ticket_id}.md"
        if direct.is_file():
            return DocumentHandle(ticket_id, direct)

        if not self.directory.is_dir():
            return None

        candidates = sorted(
            p for p in self.directory.glob(f"{ticket_id}-*.md")
            if p.is_file()
        )
        if not candidates:
            return None
        if len(candidates) > 1:
            raise AmbiguousTicketError(ticket_id, [p.name for p in candidates])
        return DocumentHandle(ticket_id, candidates[0])

    def resolve_archived(self, ticket_id: str) -> DocumentHandle | None:
        """Find a document already moved under `_archive/<year>/`. Newest year wins."""
        archive_root = self.directory / ARCHIVE_DIRNAME
        if not archive_root.is_dir():
            return None
        for year_dir in sorted((p for p in archive_root.iterdir() if p.is_dir()), reverse=True):
            matches = sorted(
                p for p in year_dir.glob("*.md")
                if p.stem == ticket_id or p.stem.startswith(f"{ticket_id}-")
            )
            if matches:
                return DocumentHandle(ticket_id, matches[0])
        return None

    def read_text(self, handle: DocumentHandle) -> str:
        return _read(handle.path)

    def read_status(self, handle: DocumentHandle) -> str | None:
        return parse_fields(self.read_text(handle)).get("status") or None

    def read_issue(self, handle: DocumentHandle) -> int | str | None:
        return parse_issue(parse_fields(self.read_text(handle)).get("issue"))

    def read_checklist(self, handle: DocumentHandle) -> list[ChecklistItem]:
        return parse_checklist(self.read_text(handle))

    def read_narrative(self, handle: DocumentHandle) -> Narrative:
        return parse_narrative(self.read_text(handle))

    def snapshot(self, handle: DocumentHandle) -> DocumentSnapshot:
        text = self.read_text(handle)
        fields = parse_fields(text)
        return DocumentSnapshot(
            handle=handle,
            issue=parse_issue(fields.get("issue")),
            status=fields.get("status") or None,
            narrative=parse_narrative(text),
            checklist=tuple(parse_checklist(text)),
        )

    def ensure_fields(self, handle: DocumentHandle, issue: int | str | None = None,
                      status: str | None = None) -> bool:
        """Set the Issue/Status fields. Returns False when no write occurred."""
        original = self.read_text(handle)
        updated = apply_fields(original, issue=issue, status=status)
        if updated == original:
            logger.debug(f"[DOC] {handle.filename}: fields already aligned")
            return False
        _atomic_write(handle.path, updated)
        logger.info(f"[DOC] {handle.filename}: issue={format_issue(issue)} status={status}")
        return True

    def archive_path(self, handle: DocumentHandle, target_dir: Path | None = None,
                     year: int | None = None) -> Path:
        base = Path(target_dir) if target_dir else self.directory / ARCHIVE_DIRNAME
        return base / str(year or date.today().year) / handle.filename

    def archive(self, handle: DocumentHandle, target_dir: Path | None = None,
                year: int | None = None) -> Path:
        """Move the document into `<dir>/_archive/<year>/`.

        Raises:
            ArchiveError: If the destination already exists
        """
        dest = self.archive_path(handle, target_dir, year)
        if dest.exists():
            raise ArchiveError(f"Archive destination already exists: {dest}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(handle.path), str(dest))
        logger.info(f"[DOC] Archived {handle.filename} to {dest}")
        return dest
