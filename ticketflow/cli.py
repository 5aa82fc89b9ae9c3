#!/usr/bin/env python3
"""tflow CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from ticketflow.git.branch import get_toplevel
from ticketflow.lib.config import LifecycleConfig, load_lifecycle_config
from ticketflow.lib.errors import PreconditionError, TicketflowError
from ticketflow.lib.github import check_gh_available
from ticketflow.lib.output import OUTPUT_FORMATS, OUTPUT_TEXT, fail
from ticketflow.workflow.planner import validate_ticket_id
from ticketflow.workflow.state_machine import LifecycleStatus
from ticketflow.commands import branch as cmd_branch_module
from ticketflow.commands import pr as cmd_pr_module
from ticketflow.commands import review as cmd_review_module
from ticketflow.commands import status as cmd_status_module
from ticketflow.commands import closeout as cmd_closeout_module

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def get_config(args) -> LifecycleConfig:
    """Load lifecycle config for the repository containing --cwd."""
    cwd = Path(args.cwd or ".").resolve()
    root = get_toplevel(cwd) or cwd
    return load_lifecycle_config(root)


def should_execute(args) -> bool:
    """Dry run unless --yes was given; --dry-run always wins."""
    return bool(args.yes) and not args.dry_run


def prepare(args) -> tuple[LifecycleConfig, bool]:
    validate_ticket_id(args.id)
    config = get_config(args)
    execute = should_execute(args)
    if execute:
        ok, error = check_gh_available()
        if not ok:
            raise PreconditionError(error)
    return config, execute


def cmd_branch(args):
    config, execute = prepare(args)
    return cmd_branch_module.cmd_branch(args, config, execute)


def cmd_pr(args):
    config, execute = prepare(args)
    return cmd_pr_module.cmd_pr(args, config, execute)


def cmd_review(args):
    config, execute = prepare(args)
    return cmd_review_module.cmd_review(args, config, execute)


def cmd_status(args):
    config, execute = prepare(args)
    return cmd_status_module.cmd_status(args, config, execute)


def cmd_closeout(args):
    config, execute = prepare(args)
    return cmd_closeout_module.cmd_closeout(args, config, execute)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='tflow', description='Ticket lifecycle reconciliation')
    parser.add_argument('--log-level', default='WARNING', type=str.upper, choices=LOG_LEVELS,
                        help='Log level for stderr (default: WARNING)')

    # Options shared by every stage
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--id', required=True, help='Ticket ID (e.g., ARCH-123)')
    common.add_argument('--cwd', help='Repository or worktree path (default: current directory)')
    common.add_argument('--output', choices=OUTPUT_FORMATS, default=OUTPUT_TEXT, help='Result format')
    common.add_argument('--dry-run', action='store_true', help='Only show the plan (default)')
    common.add_argument('--yes', '-y', action='store_true', help='Execute the plan')

    subparsers = parser.add_subparsers(dest='command', required=True)

    # tflow branch
    p_branch = subparsers.add_parser('branch', parents=[common], help='Create branch and worktree')
    p_branch.add_argument('--slug', required=True, help='Branch slug (e.g., lifecycle-refresh)')
    p_branch.add_argument('--prefix', help='Branch prefix (default: feat)')
    p_branch.add_argument('--base', help='Base branch (default: from lifecycle config)')
    p_branch.add_argument('--worktree-dir', help='Worktree location (default: ../<repo>-<branch>)')
    p_branch.add_argument('--no-bootstrap', action='store_true', help='Skip the bootstrap commit')
    p_branch.add_argument('--force', action='store_true', help='Overwrite a remote branch that has real work')
    p_branch.set_defaults(func=cmd_branch)

    # tflow pr
    p_pr = subparsers.add_parser('pr', parents=[common], help='Open or update the pull request')
    p_pr.add_argument('--branch', help='Branch (default: current branch)')
    p_pr.add_argument('--title', help='Explicit PR title')
    p_pr.add_argument('--draft', action=argparse.BooleanOptionalAction, default=None,
                      help='Create or switch the PR to draft (new PRs default to draft)')
    p_pr.set_defaults(func=cmd_pr)

    # tflow review
    p_review = subparsers.add_parser('review', parents=[common], help='Mark the PR ready for review')
    p_review.add_argument('--branch', help='Branch (default: current branch)')
    p_review.set_defaults(func=cmd_review)

    # tflow status
    p_status = subparsers.add_parser('status', parents=[common], help='Set document and board status')
    p_status.add_argument('--to', required=True, help=f"Target status ({', '.join(s.value for s in LifecycleStatus)})")
    p_status.add_argument('--override', action='store_true', help='Allow moving status backward')
    p_status.set_defaults(func=cmd_status)

    # tflow closeout
    p_closeout = subparsers.add_parser('closeout', parents=[common], help='Close issue and archive the document')
    p_closeout.add_argument('--branch', help='Branch (default: current or ticket worktree branch)')
    p_closeout.add_argument('--force', action='store_true', help='Close out even if the PR is not merged')
    p_closeout.add_argument('--keep-worktree', action='store_true', help='Leave the worktree in place')
    p_closeout.set_defaults(func=cmd_closeout)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Logs on stderr so stdout stays a single result document
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        stream=sys.stderr,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        return args.func(args)
    except TicketflowError as e:
        logger.debug(f"[CLI] {args.command} failed: {e!r}")
        return fail(args.command, e, args.output)


if __name__ == '__main__':
    sys.exit(main())
