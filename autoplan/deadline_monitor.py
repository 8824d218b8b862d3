"""
deadline_monitor.py — Post-hoc deadline check of a finished schedule

A task with a resolved deadline misses when
  - its last scheduled block ends after the deadline, or
  - some of its blocks were never scheduled, or
  - none of its blocks were scheduled at all.
"""

import math
from collections import OrderedDict
from typing import Dict, Iterable, List

from autoplan.models import MS_PER_DAY, Block, DeadlineMiss, ScheduleEntry
from autoplan.priority import resolve_due_date


def check_deadline_misses(entries: Iterable[ScheduleEntry], blocks: Iterable[Block]) -> List[DeadlineMiss]:
    scheduled: Dict[str, List[ScheduleEntry]] = OrderedDict()
    for entry in entries:
        scheduled.setdefault(entry.block.task_id, []).append(entry)

    all_blocks: Dict[str, List[Block]] = OrderedDict()
    for block in blocks:
        all_blocks.setdefault(block.task_id, []).append(block)

    misses: List[DeadlineMiss] = []

    for task_id, task_entries in scheduled.items():
        task = task_entries[0].block.task
        due = resolve_due_date(task)
        if due is None:
            continue

        last_end = max(e.end for e in task_entries)
        done = {e.block.split_index for e in task_entries}
        siblings = all_blocks.get(task_id, [])
        unscheduled = [b for b in siblings if b.split_index not in done]

        if last_end > due or unscheduled:
            missed_by = None
            if not unscheduled:
                missed_by = math.ceil((last_end - due).total_seconds() * 1000 / MS_PER_DAY)
            misses.append(DeadlineMiss(
                task_id=task_id,
                task_title=task.title,
                due_date=due,
                scheduled_completion=last_end,
                unscheduled_blocks=len(unscheduled),
                total_blocks=len(siblings),
                missed_by_days=missed_by,
            ))

    for task_id, siblings in all_blocks.items():
        if task_id in scheduled:
            continue
        task = siblings[0].task
        due = resolve_due_date(task)
        if due is None:
            continue
        misses.append(DeadlineMiss(
            task_id=task_id,
            task_title=task.title,
            due_date=due,
            scheduled_completion=None,
            unscheduled_blocks=len(siblings),
            total_blocks=len(siblings),
        ))

    return misses
