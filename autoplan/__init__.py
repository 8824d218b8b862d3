"""
AutoPlan Scheduling Engine

Modules:
- config: PlannerConfig, formula variants, config/snapshot loaders
- priority: Urgency model (tag, project, duration, oldness, deadline)
- splitter: Task → Block decomposition
- time_maps: Weekly capacity templates and fixed-task load
- scheduler: Greedy day-by-day scheduler with dynamic splitting
- deadline_monitor / auto_adjust: Deadline misses and weight line search
- merger: Split-group reconciliation
- host: Task-store integration (apply, merge, clear, full run)
"""

from .config import (
    PlannerConfig,
    DurationFormula,
    OldnessFormula,
    DeadlineFormula,
    load_config,
    save_config,
    load_tasks,
)

from .models import Task, Tag, Project, TimeMap, DayWindow, Block, ScheduleEntry, DeadlineMiss

from .priority import PriorityContext, calculate_urgency, resolve_due_date
from .splitter import split_task, process_all_tasks
from .scheduler import BlockArena, ScheduleResult, schedule_blocks
from .deadline_monitor import check_deadline_misses
from .auto_adjust import AdjustResult, schedule_with_auto_adjust
from .merger import find_all_split_groups, find_related_splits, simulate_merged_tasks
from .host import (
    TaskStore,
    TaskStoreError,
    InMemoryTaskStore,
    apply_schedule,
    merge_split_group,
    clear_planning,
    run_autoplan,
)

__all__ = [
    "PlannerConfig",
    "DurationFormula",
    "OldnessFormula",
    "DeadlineFormula",
    "load_config",
    "save_config",
    "load_tasks",
    "Task",
    "Tag",
    "Project",
    "TimeMap",
    "DayWindow",
    "Block",
    "ScheduleEntry",
    "DeadlineMiss",
    "PriorityContext",
    "calculate_urgency",
    "resolve_due_date",
    "split_task",
    "process_all_tasks",
    "BlockArena",
    "ScheduleResult",
    "schedule_blocks",
    "check_deadline_misses",
    "AdjustResult",
    "schedule_with_auto_adjust",
    "find_all_split_groups",
    "find_related_splits",
    "simulate_merged_tasks",
    "TaskStore",
    "TaskStoreError",
    "InMemoryTaskStore",
    "apply_schedule",
    "merge_split_group",
    "clear_planning",
    "run_autoplan",
]
