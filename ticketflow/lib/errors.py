"""
Error taxonomy for ticketflow.

Every error carries the exit code the CLI reports for it. Planning-phase
errors abort before any mutation; execution-phase errors leave the steps
already applied in place so a re-run converges.
"""

from ticketflow.lib.constants import (
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_PRECONDITION,
    EXIT_VALIDATION,
)


class TicketflowError(Exception):
    """Base class for all ticketflow errors."""
    exit_code = EXIT_FAILURE


class ConfigError(TicketflowError):
    """Lifecycle configuration is missing or malformed."""
    exit_code = EXIT_CONFIG


class ValidationError(TicketflowError):
    """Identifier, branch or title does not match its pattern."""
    exit_code = EXIT_VALIDATION

    def __init__(self, message: str, expected: str | None = None):
        self.expected = expected
        super().__init__(message + (f" Expected pattern {expected}." if expected else ""))


class TicketNotFoundError(TicketflowError):
    """No ticket document matches the identifier."""
    exit_code = EXIT_VALIDATION


class AmbiguousTicketError(TicketflowError):
    """More than one ticket document matches the identifier."""
    exit_code = EXIT_VALIDATION

    def __init__(self, ticket_id: str, candidates: list[str]):
        self.ticket_id = ticket_id
        self.candidates = candidates
        super().__init__(
            f"Ticket {ticket_id} matches {len(candidates)} documents: "
            f"{', '.join(candidates)}. Rename or archive all but one."
        )


class PreconditionError(TicketflowError):
    """Unsafe state that needs an explicit operator decision."""
    exit_code = EXIT_PRECONDITION

    def __init__(self, message: str, remediation: str | None = None):
        self.remediation = remediation
        super().__init__(message + (f" Remediation: {remediation}" if remediation else ""))


class ArchiveError(TicketflowError):
    """Archiving would overwrite an existing document."""
    exit_code = EXIT_PRECONDITION


class TransientIOError(TicketflowError):
    """External command (git, gh) failed. Safe to re-invoke."""
    exit_code = EXIT_FAILURE

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message + (f": {stderr.strip()}" if stderr.strip() else ""))


class SoftSyncWarning(TicketflowError):
    """Project board could not be synced. Logged, never aborts a run."""
