"""
tflow status - Reconcile the document and board status to an explicit target.

Backward moves are held unless --override is passed.
"""

from ticketflow.lib.config import LifecycleConfig
from ticketflow.lib.constants import STAGE_STATUS
from ticketflow.lib.output import succeed
from ticketflow.workflow.context import Adapters
from ticketflow.workflow.planner import StageOptions
from ticketflow.workflow.runner import run_stage


def cmd_status(args, config: LifecycleConfig, execute: bool, adapters: Adapters | None = None) -> int:
    options = StageOptions(target_status=args.to, override=args.override)
    result = run_stage(STAGE_STATUS, args.id, options, config, execute=execute, adapters=adapters)
    succeed(STAGE_STATUS, result.to_dict(), args.output)
    return 0
