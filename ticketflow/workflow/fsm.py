"""Ticket lifecycle state machine using transitions library.

The lifecycle is fixed: six states in a total order. Forward triggers may
skip states (a ticket can go straight from Ticketed to PR Open when the
branch stage ran by hand). Backward moves only exist as the `override`
trigger, which callers must gate explicitly.

Usage:
    from ticketflow.workflow.fsm import LifecycleFSM

    fsm = LifecycleFSM("Branched", ticket_id="ARCH-42")
    fsm.open_pr()  # Branched -> PR Open
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


# Order matters: index is the lifecycle rank
STATES = [
    "Ticketed",
    "Branched",
    "PR Open",
    "In Review",
    "Merged",
    "Archived",
]

# Forward triggers, keyed by destination
TRIGGER_FOR_DEST = {
    "Branched": "branch",
    "PR Open": "open_pr",
    "In Review": "request_review",
    "Merged": "merge",
    "Archived": "archive",
}


def _build_transitions() -> list[dict]:
    """Build forward transitions from every earlier state plus the override path."""
    transitions = []
    for dest, trigger in TRIGGER_FOR_DEST.items():
        sources = STATES[:STATES.index(dest)]
        transitions.append({"trigger": trigger, "source": sources, "dest": dest})

    # Backward moves: operator-only, gated by callers
    for dest in STATES[:-1]:
        sources = STATES[STATES.index(dest) + 1:]
        transitions.append({"trigger": "override", "source": sources, "dest": dest,
                            "conditions": lambda event, _dest=dest: event.kwargs.get("dest") == _dest})
    return transitions


TRANSITIONS = _build_transitions()


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        for source in t["source"]:
            key = (source, t["dest"])
            if key not in lookup:
                lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class LifecycleFSM:
    """State machine for one ticket's lifecycle status.

    In-memory only. The executor persists the resulting status to the
    document and the project board.
    """

    def __init__(self, initial: str, ticket_id: str = "",
                 on_transition: Callable[[str, str, str], None] | None = None):
        self.ticket_id = ticket_id
        self.on_transition = on_transition

        if initial not in STATES:
            logger.warning(f"[FSM] {ticket_id}: Unknown status '{initial}', defaulting to 'Ticketed'")
            initial = "Ticketed"

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.debug(f"[FSM] {self.ticket_id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)
