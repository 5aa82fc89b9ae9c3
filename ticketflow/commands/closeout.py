"""
tflow closeout - Close the issue, archive the document and retire the worktree.
"""

from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import STAGE_CLOSEOUT
from ticketflow.lib.output import succeed
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.planner import StageOptions
from ticketflow.workflow.runner import run_stage


def cmd_closeout(args, config: LifecycleConfig, execute: bool, adapters: Adapters | None = None) -> int:
    """Merged -> Archived. Requires a merged PR unless --force."""
    options = StageOptions(branch=args.branch, force=args.force, keep_worktree=args.keep_worktree)
    result = run_stage(STAGE_CLOSEOUT, args.id, options, config, execute=execute, adapters=adapters)
    succeed(STAGE_CLOSEOUT, result.to_dict(), args.output)
    return 0
