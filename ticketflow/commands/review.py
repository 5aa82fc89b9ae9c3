"""
tflow review - Mark the ticket PR ready for review.
"""

from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import STAGE_REVIEW
from ticketflow.lib.output import succeed
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.planner import StageOptions
from ticketflow.workflow.runner import run_stage


def cmd_review(args, config: LifecycleConfig, execute: bool, adapters: Adapters | None = None) -> int:
    result = run_stage(STAGE_REVIEW, args.id, StageOptions(branch=args.branch), config,
                       execute=execute, adapters=adapters)
    succeed(STAGE_REVIEW, result.to_dict(), args.output)
    return 0
