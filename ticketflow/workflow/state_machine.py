"""Lifecycle status values and transition planning.

Thin wrapper around the FSM in fsm.py. This module provides:
- LifecycleStatus enum for type safety
- plan_transition() which decides what a stage may do to a status
- Convenience functions for status comparison

Usage:
    from ticketflow.workflow.state_machine import plan_transition, LifecycleStatus

    transition = plan_transition("Branched", LifecycleStatus.PR_OPEN)
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ticketflow.lib.errors import TicketflowError

logger = logging.getLogger(__name__)


class LifecycleStatus(Enum):
    """All lifecycle statuses, in lifecycle order.

    Values match FSM state strings and the project board option names.
    """

    TICKETED = "Ticketed"
    BRANCHED = "Branched"
    PR_OPEN = "PR Open"
    IN_REVIEW = "In Review"
    MERGED = "Merged"
    ARCHIVED = "Archived"

    @property
    def rank(self) -> int:
        return list(LifecycleStatus).index(self)


# Transition actions
ACTION_ADVANCE = "advance"
ACTION_NOOP = "noop"
ACTION_HOLD = "hold"
ACTION_OVERRIDE = "override"


class InvalidTransition(TicketflowError):
    """Raised when attempting an invalid status transition."""

    def __init__(self, from_state: str, to_state: LifecycleStatus, ticket_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.ticket_id = ticket_id
        super().__init__(
            f"Invalid transition: {from_state} -> {to_state.value}"
            + (f" (ticket: {ticket_id})" if ticket_id else "")
        )


@dataclass(frozen=True)
class StatusTransition:
    """Planned move of a lifecycle status."""
    from_status: str | None
    to_status: str
    action: str

    @property
    def changes(self) -> bool:
        return self.action in (ACTION_ADVANCE, ACTION_OVERRIDE)

    @property
    def effective(self) -> str:
        """Status the store ends with once the transition is applied."""
        return self.to_status if self.changes else (self.from_status or self.to_status)

    def to_dict(self) -> dict:
        return {"from": self.from_status, "to": self.to_status, "action": self.action}


def parse_status(status_str: str | None) -> LifecycleStatus | None:
    """Parse a status string into LifecycleStatus.

    Matching ignores case and surrounding whitespace. Returns None if unknown.
    """
    if status_str is None:
        return None
    wanted = status_str.strip().lower()
    for status in LifecycleStatus:
        if status.value.lower() == wanted:
            return status
    return None


def is_backward(current: str | None, target: LifecycleStatus) -> bool:
    parsed = parse_status(current)
    return parsed is not None and parsed.rank > target.rank


def plan_transition(
    current: str | None,
    target: LifecycleStatus,
    allow_backward: bool = False,
    ticket_id: str = "",
) -> StatusTransition:
    """Decide how a store at `current` reaches `target`.

    Forward moves advance. Moves behind the current status hold unless
    `allow_backward` is set, which is an operator-only override. Unknown or
    missing current values are treated as not started and advance.
    """
    from ticketflow.workflow.fsm import LifecycleFSM, TRIGGER_FOR

    parsed = parse_status(current)
    if parsed is None:
        if current:
            logger.warning(f"[STATE] {ticket_id}: unknown status '{current}', treating as not started")
        return StatusTransition(current, target.value, ACTION_ADVANCE)

    if parsed == target:
        return StatusTransition(parsed.value, target.value, ACTION_NOOP)

    if parsed.rank > target.rank:
        if not allow_backward:
            logger.info(
                f"[STATE] {ticket_id}: {parsed.value} is past {target.value}, holding "
                "(backward moves need an explicit override)"
            )
            return StatusTransition(parsed.value, target.value, ACTION_HOLD)
        action = ACTION_OVERRIDE
    else:
        action = ACTION_ADVANCE

    # Confirm against the FSM so the transition table stays the single source of truth
    trigger = TRIGGER_FOR.get((parsed.value, target.value))
    if trigger is None:
        raise InvalidTransition(parsed.value, target, ticket_id)
    fsm = LifecycleFSM(parsed.value, ticket_id=ticket_id)
    if trigger == "override":
        fsm.override(dest=target.value)
    else:
        getattr(fsm, trigger)()
    if fsm.state != target.value:
        raise InvalidTransition(parsed.value, target, ticket_id)

    return StatusTransition(parsed.value, target.value, action)
