"""
tflow branch - Create the ticket branch and worktree, bootstrap and publish it.
"""

from pathlib import Path

from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import STAGE_BRANCH
from ticketflow.lib.output import succeed
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.planner import StageOptions
from ticketflow.workflow.runner import run_stage


def cmd_branch(args, config: LifecycleConfig, execute: bool, adapters: Adapters | None = None) -> int:
    """Ticketed -> Branched."""
    options = StageOptions(
        slug=args.slug,
        prefix=args.prefix,
        base=args.base,
        worktree_dir=Path(args.worktree_dir).resolve() if args.worktree_dir else None,
        bootstrap=not args.no_bootstrap,
        force=args.force,
    )
    result = run_stage(STAGE_BRANCH, args.id, options, config, execute=execute, adapters=adapters)
    succeed(STAGE_BRANCH, result.to_dict(), args.output)
    return 0
