"""Run one lifecycle stage end to end: gather, plan, execute."""

import logging
from datetime import date

from ticketflow.lib.config import LifecycleConfig
from ticketflow.workflow.context import Adapters, build_adapters, gather_inputs
from ticketflow.workflow.executor import StageResult, execute_plan
from ticketflow.workflow.planner import StageOptions, build_plan

logger = logging.getLogger(__name__)


def run_stage(stage: str, ticket_id: str, options: StageOptions, config: LifecycleConfig,
              execute: bool = False, adapters: Adapters | None = None,
              today: date | None = None) -> StageResult:
    """Plan a stage and, when execute is set, apply it.

    Planning errors propagate before any mutation.
    """
    adapters = adapters or build_adapters(config)
    inputs = gather_inputs(stage, ticket_id, options, config, adapters, today=today)
    plan = build_plan(stage, inputs)
    logger.info(f"[STAGE] {ticket_id} {stage}: {'executing' if execute else 'dry run'}")
    return execute_plan(plan, adapters, execute=execute)
