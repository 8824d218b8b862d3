"""
splitter.py — Task → Block decomposition

  first block = min(spent + block_size, estimate)
  then full block_size blocks, with a shorter last block taking the remainder

The first block carries the task's tracked time (spent + per-day ledger) so a
later merge folds it back without loss. Block sizes add up to the task's
total estimate.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from autoplan.config import DEFAULT_BLOCK_SIZE_MINUTES, PlannerConfig
from autoplan.models import MS_PER_MINUTE, Block, Task, TaskIndex
from autoplan.notes import is_already_processed, to_roman

logger = logging.getLogger(__name__)


def block_title(title: str, split_index: int, config: PlannerConfig) -> str:
    """Prefix + title + ' <Roman>' (1-based) depending on config."""
    name = f"{config.split_prefix}{title}" if config.split_prefix else title
    if config.split_suffix:
        name = f"{name} <{to_roman(split_index + 1)}>"
    return name


def split_task(
    task: Task,
    block_size_minutes: float,
    config: PlannerConfig,
    index: Optional[TaskIndex] = None,
) -> List[Block]:
    if not block_size_minutes or block_size_minutes <= 0:
        block_size_minutes = DEFAULT_BLOCK_SIZE_MINUTES

    if task.time_estimate <= 0 or task.remaining_minutes <= 0:
        return []

    index = index or TaskIndex([task])
    real_tags = index.real_tag_ids(task)
    virtual_tags = index.virtual_tag_ids(task)

    block_ms = int(round(block_size_minutes * MS_PER_MINUTE))
    first_ms = min(task.time_spent + block_ms, task.time_estimate)
    sizes_ms = [first_ms]
    rest = task.time_estimate - first_ms
    while rest > 0:
        size = min(block_ms, rest)
        sizes_ms.append(size)
        rest -= size

    total = len(sizes_ms)
    blocks: List[Block] = []
    for i, size in enumerate(sizes_ms):
        blocks.append(Block(
            task=task,
            split_index=i,
            total_splits=total,
            estimated_minutes=size / MS_PER_MINUTE,
            title=block_title(task.title, i, config),
            time_spent=task.time_spent if i == 0 else 0,
            time_spent_on_day=dict(task.time_spent_on_day) if i == 0 else {},
            real_tag_ids=list(real_tags),
            virtual_tag_ids=list(virtual_tags),
            prev_split_index=i - 1 if i > 0 else None,
            next_split_index=i + 1 if i < total - 1 else None,
        ))
    return blocks


@dataclass
class SplitResult:
    blocks: List[Block] = field(default_factory=list)
    skipped_parents: List[Task] = field(default_factory=list)
    already_processed: List[Task] = field(default_factory=list)


def process_all_tasks(
    tasks: List[Task],
    block_size_minutes: float,
    config: PlannerConfig,
    all_tasks: Optional[Iterable[Task]] = None,
) -> SplitResult:
    """
    Split every schedulable task in the batch.

    Skips parents of other tasks in the batch (their time lives in the
    children), completed tasks, and tasks whose notes already carry markers.
    `all_tasks` is the full snapshot used for tag inheritance; defaults to
    the batch itself.
    """
    parent_ids = {t.parent_id for t in tasks if t.parent_id}
    index = TaskIndex(all_tasks if all_tasks is not None else tasks)
    result = SplitResult()

    for task in tasks:
        if task.id in parent_ids:
            result.skipped_parents.append(task)
            continue
        if task.is_done:
            continue
        if is_already_processed(task.notes):
            result.already_processed.append(task)
            continue
        result.blocks.extend(split_task(task, block_size_minutes, config, index))

    logger.info(
        f"Split {len(tasks)} tasks → {len(result.blocks)} blocks "
        f"({len(result.skipped_parents)} parents skipped, "
        f"{len(result.already_processed)} already processed)"
    )
    return result
