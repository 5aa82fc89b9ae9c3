"""
Shared data types for ticketflow.

This module contains dataclasses used across multiple modules to avoid
circular imports.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Issue:
    """A remote tracker issue."""
    number: int
    title: str
    state: str  # "open", "closed"
    body: str = ""
    labels: tuple[str, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.state == "open"


@dataclass(frozen=True)
class PullRequest:
    """A remote pull request, correlated to a ticket by head branch."""
    number: int
    url: str
    title: str
    body: str = ""
    is_draft: bool = False
    labels: tuple[str, ...] = ()
    state: str = "open"  # "open", "closed", "merged"
    head: str = ""
    base: str = ""

    @property
    def is_merged(self) -> bool:
        return self.state == "merged"


@dataclass(frozen=True)
class FieldValue:
    """One decoded project field value.

    kind is one of "text", "number", "single_select", "date", "iteration",
    or "unknown" for typenames this version does not decode.
    """
    field_id: str
    field_name: str
    kind: str
    value: str | float | None
    option_id: str | None = None


@dataclass(frozen=True)
class ProjectItem:
    """A project board item with its decoded field values."""
    id: str
    fields: dict[str, FieldValue] = field(default_factory=dict)  # field id -> value
    content_number: int | None = None
    content_title: str | None = None

    def value_of(self, field_id: str):
        fv = self.fields.get(field_id)
        return fv.value if fv else None


@dataclass(frozen=True)
class LabelSync:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


@dataclass(frozen=True)
class ProjectStatusResult:
    """Outcome of a project status sync. changed=False with a message on soft failure."""
    changed: bool
    previous: str | None
    message: str
    soft_failure: bool = False

    def to_dict(self) -> dict:
        return {
            "changed": self.changed,
            "previous": self.previous,
            "message": self.message,
            "softFailure": self.soft_failure,
        }
