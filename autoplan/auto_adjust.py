"""
auto_adjust.py — Urgency/deadline weight line search

While the schedule has deadline misses, shift weight from the generic
urgency terms to the deadline term and re-run from scratch:

  urgency_weight  -= 0.1
  deadline_weight += initial_deadline × 0.1 / initial_urgency

so that urgency reaching 0 coincides with the deadline weight doubling.
Stops at zero misses, or after one last run at urgency_weight == 0.
Misses that survive that run mean capacity is short, not that tuning failed.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List

from autoplan.config import PlannerConfig
from autoplan.models import Block, Task
from autoplan.priority import PriorityContext
from autoplan.scheduler import ScheduleResult, schedule_blocks

logger = logging.getLogger(__name__)

URGENCY_WEIGHT_STEP = 0.1


@dataclass
class AdjustResult:
    schedule: ScheduleResult
    final_urgency_weight: float
    final_deadline_weight: float
    attempts: int = 0
    history: List[dict] = field(default_factory=list)   # one row per run

    @property
    def deadline_misses(self):
        return self.schedule.deadline_misses


def schedule_with_auto_adjust(
    blocks: List[Block],
    config: PlannerConfig,
    context: PriorityContext,
    start_time: datetime,
    fixed_tasks: Iterable[Task] = (),
) -> AdjustResult:
    fixed_tasks = list(fixed_tasks)
    urgency_weight = max(0.0, config.urgency_weight)
    deadline_weight = config.deadline_weight
    history: List[dict] = []

    def run(u: float, d: float) -> ScheduleResult:
        result = schedule_blocks(
            blocks, replace(config, urgency_weight=u, deadline_weight=d), context, start_time, fixed_tasks,
        )
        history.append({"urgency_weight": u, "deadline_weight": d, "misses": len(result.deadline_misses)})
        return result

    if not config.auto_adjust_urgency:
        return AdjustResult(run(urgency_weight, deadline_weight), urgency_weight, deadline_weight, 0, history)

    # An initial urgency weight of 0 would make the step infinite; treat it as 1.0.
    deadline_step = deadline_weight * URGENCY_WEIGHT_STEP / (urgency_weight or 1.0)
    attempts = 0

    while True:
        result = run(urgency_weight, deadline_weight)
        if not result.deadline_misses:
            break

        urgency_weight = round(urgency_weight - URGENCY_WEIGHT_STEP, 1)
        deadline_weight = round(deadline_weight + deadline_step, 1)
        attempts += 1
        logger.info(
            f"{len(result.deadline_misses)} deadline misses — retrying with "
            f"urgency_weight={max(urgency_weight, 0.0)}, deadline_weight={deadline_weight}"
        )

        if urgency_weight < 0:
            urgency_weight = 0.0
            result = run(urgency_weight, deadline_weight)
            break

    if result.deadline_misses:
        logger.warning(
            f"{len(result.deadline_misses)} deadline misses remain after {attempts} adjustments "
            f"(urgency_weight={urgency_weight}, deadline_weight={deadline_weight})"
        )
    return AdjustResult(result, urgency_weight, deadline_weight, attempts, history)
