"""
tflow pr - Open or update the pull request for a ticket branch.
"""

from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import STAGE_PR
from ticketflow.lib.output import succeed
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.planner import StageOptions
from ticketflow.workflow.runner import run_stage


def cmd_pr(args, config: LifecycleConfig, execute: bool, adapters: Adapters | None = None) -> int:
    """Branched -> PR Open. Re-running with nothing changed reports action "unchanged"."""
    options = StageOptions(branch=args.branch, title=args.title, draft=args.draft)
    result = run_stage(STAGE_PR, args.id, options, config, execute=execute, adapters=adapters)
    succeed(STAGE_PR, result.to_dict(), args.output)
    return 0
