"""
scheduler.py — Greedy block scheduler

Day by day, map by map:
  1. score every unscheduled block eligible for the map at the clock time it
     would start (urgency uses the task's total unscheduled minutes)
  2. pick the most urgent: urgency ↓, created ↑, task id ↑
  3. fits → commit; too big but ≥ minimum block → commit what fits and append
     a trailing sibling holding the remainder (dynamic split)
  4. less than the minimum block left → next map / next day

Urgency is recomputed after every single assignment because the duration,
oldness and deadline terms all move with the simulated clock.

Blocks are copied into a BlockArena per run, so dynamic splits never leak
back into the caller's blocks (the auto-adjust loop re-runs from the same
input several times).
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from autoplan.config import DEFAULT_MINIMUM_BLOCK_SIZE_MINUTES, PlannerConfig
from autoplan.deadline_monitor import check_deadline_misses
from autoplan.models import Block, BlockKey, DeadlineMiss, ScheduleEntry, Task
from autoplan.priority import PriorityContext, UrgencyScore, calculate_urgency
from autoplan.splitter import block_title
from autoplan.time_maps import TimeMapRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Block arena
# ---------------------------------------------------------------------------

class BlockArena:
    """
    Blocks of one run, indexed by (task_id, split_index).

    The only mutations are `mark_scheduled` and `split_block`; after either,
    every task's siblings still agree on total_splits and form one prev/next
    chain.
    """

    def __init__(self, blocks: Iterable[Block]):
        self._blocks: Dict[BlockKey, Block] = {}
        self._pending: Dict[BlockKey, None] = {}   # insertion-ordered set
        for block in blocks:
            copy = replace(
                block,
                time_spent_on_day=dict(block.time_spent_on_day),
                real_tag_ids=list(block.real_tag_ids),
                virtual_tag_ids=list(block.virtual_tag_ids),
            )
            self._blocks[copy.key] = copy
            self._pending[copy.key] = None

    def __len__(self) -> int:
        return len(self._blocks)

    def __getitem__(self, key: BlockKey) -> Block:
        return self._blocks[key]

    def blocks(self) -> List[Block]:
        return list(self._blocks.values())

    def pending(self) -> List[Block]:
        return [self._blocks[k] for k in self._pending]

    def has_pending(self) -> bool:
        return bool(self._pending)

    def is_pending(self, key: BlockKey) -> bool:
        return key in self._pending

    def siblings(self, task_id: str) -> List[Block]:
        return sorted(
            (b for b in self._blocks.values() if b.task_id == task_id),
            key=lambda b: b.split_index,
        )

    def remaining_minutes(self, task_id: str) -> float:
        return sum(self._blocks[k].estimated_minutes for k in self._pending if k[0] == task_id)

    def mark_scheduled(self, key: BlockKey) -> None:
        self._pending.pop(key, None)

    def split_block(self, key: BlockKey, keep_minutes: float, config: PlannerConfig) -> Block:
        """
        Shrink block `key` to `keep_minutes` and append a new last sibling
        with the rest. Total minutes across siblings are unchanged.
        """
        block = self._blocks[key]
        siblings = self.siblings(block.task_id)
        new_index = max(b.split_index for b in siblings) + 1
        tail = siblings[-1]

        remainder = block.estimated_minutes - keep_minutes
        block.estimated_minutes = keep_minutes

        new_block = Block(
            task=block.task,
            split_index=new_index,
            total_splits=new_index + 1,
            estimated_minutes=remainder,
            title=block_title(block.task.title, new_index, config),
            real_tag_ids=list(block.real_tag_ids),
            virtual_tag_ids=list(block.virtual_tag_ids),
            prev_split_index=tail.split_index,
            next_split_index=None,
        )
        tail.next_split_index = new_index
        for sibling in siblings:
            sibling.total_splits = new_index + 1

        self._blocks[new_block.key] = new_block
        self._pending[new_block.key] = None
        return new_block


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------

@dataclass
class ScheduleResult:
    entries: List[ScheduleEntry] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)          # every block, incl. dynamic splits
    unscheduled: List[Block] = field(default_factory=list)
    deadline_misses: List[DeadlineMiss] = field(default_factory=list)
    used_minutes: Dict[Tuple[str, date], float] = field(default_factory=dict)
    registry: Optional[TimeMapRegistry] = None


def _selection_key(block: Block, score: UrgencyScore):
    created = block.task.created or datetime.min
    return (-score.total, created, block.task_id)


def schedule_blocks(
    blocks: Iterable[Block],
    config: PlannerConfig,
    context: PriorityContext,
    start_time: datetime,
    fixed_tasks: Iterable[Task] = (),
) -> ScheduleResult:
    arena = BlockArena(blocks)
    registry = TimeMapRegistry(config, fixed_tasks)
    result = ScheduleResult(registry=registry)
    if not len(arena):
        return result

    min_block = config.minimum_block_size_minutes
    if not min_block or min_block <= 0:
        logger.warning(f"minimum_block_size_minutes={min_block!r} must be positive, using {DEFAULT_MINIMUM_BLOCK_SIZE_MINUTES}")
        min_block = DEFAULT_MINIMUM_BLOCK_SIZE_MINUTES

    eligible: Dict[BlockKey, List[str]] = {}

    def maps_for(block: Block) -> List[str]:
        if block.key not in eligible:
            eligible[block.key] = registry.maps_for_block(block)
        return eligible[block.key]

    used = result.used_minutes
    first_day = start_time.date()
    for map_id in registry.map_ids():
        elapsed = registry.elapsed_minutes(map_id, start_time)
        if elapsed > 0:
            used[(map_id, first_day)] = elapsed

    day = first_day
    for _ in range(config.max_days_ahead):
        if not arena.has_pending():
            break

        for map_id in registry.map_ids():
            window_start = registry.window_start(map_id, day)
            if window_start is None:
                continue
            available = registry.available_minutes(map_id, day)

            while True:
                candidates = [b for b in arena.pending() if map_id in maps_for(b)]
                if not candidates:
                    break
                used_today = used.get((map_id, day), 0.0)
                remaining = available - used_today
                if remaining < min_block:
                    break

                clock = window_start + timedelta(minutes=used_today)
                scored = []
                for block in candidates:
                    hours = arena.remaining_minutes(block.task_id) / 60.0
                    scored.append((block, calculate_urgency(block.task, config, context, clock, remaining_hours=hours)))
                block, score = min(scored, key=lambda pair: _selection_key(*pair))

                minutes = block.estimated_minutes
                if minutes > remaining:
                    new_block = arena.split_block(block.key, remaining, config)
                    logger.debug(
                        f"Dynamic split: '{block.title}' keeps {remaining:.0f}m, "
                        f"'{new_block.title}' carries {new_block.estimated_minutes:.0f}m"
                    )
                    minutes = remaining

                entry = ScheduleEntry(
                    block=block,
                    start=clock,
                    end=clock + timedelta(minutes=minutes),
                    urgency=score.total,
                    components=score.components,
                    time_map_id=map_id,
                )
                result.entries.append(entry)
                used[(map_id, day)] = used_today + minutes
                arena.mark_scheduled(block.key)
                logger.debug(
                    f"{entry.start:%Y-%m-%d %H:%M}–{entry.end:%H:%M} [{map_id}] "
                    f"{block.title} (urgency {score.total:.2f})"
                )

        day += timedelta(days=1)

    result.blocks = arena.blocks()
    result.unscheduled = arena.pending()
    result.deadline_misses = check_deadline_misses(result.entries, result.blocks)

    logger.info(
        f"Scheduled {len(result.entries)} blocks, {len(result.unscheduled)} unscheduled, "
        f"{len(result.deadline_misses)} deadline misses"
    )
    return result
