"""
host.py — Host task-store integration

The core never touches the host directly. This layer:
  - TaskStore:          the collaborator contract (fetch / add / update / delete,
                        opaque config blob)
  - InMemoryTaskStore:  dict-backed implementation for dry runs and tests
  - apply_schedule:     writes schedule entries back as scheduled / split tasks
  - merge_split_group:  folds one split group back into a single task
  - clear_planning:     merge every group, then clear scheduled times
  - run_autoplan:       clear → split → schedule (auto-adjust) → apply

Store failures are caught per item and collected as
{"task_id": ..., "split_index": ..., "error": ...}; one bad task never stops
the batch.
"""

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from autoplan.auto_adjust import AdjustResult, schedule_with_auto_adjust
from autoplan.config import PlannerConfig
from autoplan.merger import find_all_split_groups, find_related_splits, plan_merge, simulate_merged_tasks
from autoplan.models import Block, DeadlineMiss, Project, ScheduleEntry, Tag, Task
from autoplan.notes import clean_autoplan_notes, generate_split_notes
from autoplan.priority import PriorityContext
from autoplan.splitter import process_all_tasks
from autoplan.time_maps import is_fixed_task

logger = logging.getLogger(__name__)

_TASK_FIELDS = {f.name for f in fields(Task)} - {"id"}


class TaskStoreError(Exception):
    """Raised by a TaskStore when a create/update/delete cannot be performed."""


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------

class TaskStore(ABC):

    @abstractmethod
    def get_tasks(self) -> List[Task]:
        ...

    @abstractmethod
    def get_tags(self) -> List[Tag]:
        ...

    @abstractmethod
    def get_projects(self) -> List[Project]:
        ...

    @abstractmethod
    def add_task(self, values: Dict[str, Any]) -> str:
        """Create a task from a field set and return its id."""

    @abstractmethod
    def update_task(self, task_id: str, values: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete_task(self, task_id: str) -> None:
        ...

    def load_config_blob(self) -> Optional[Dict[str, Any]]:
        return None

    def save_config_blob(self, blob: Dict[str, Any]) -> None:
        raise TaskStoreError("This store does not persist configuration")


class InMemoryTaskStore(TaskStore):
    """
    Snapshot-backed store. Reads return copies, so callers never alias the
    stored records. New ids are "autoplan-1", "autoplan-2", ... in creation order.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        tags: Iterable[Tag] = (),
        projects: Iterable[Project] = (),
        config_blob: Optional[Dict[str, Any]] = None,
    ):
        self._tasks: "OrderedDict[str, Task]" = OrderedDict((t.id, copy.deepcopy(t)) for t in tasks)
        self._tags = list(tags)
        self._projects = list(projects)
        self._config_blob = config_blob
        self._ids = itertools.count(1)

    def get_tasks(self) -> List[Task]:
        return [copy.deepcopy(t) for t in self._tasks.values()]

    def get_task(self, task_id: str) -> Task:
        if task_id not in self._tasks:
            raise TaskStoreError(f"Unknown task id: {task_id}")
        return copy.deepcopy(self._tasks[task_id])

    def get_tags(self) -> List[Tag]:
        return list(self._tags)

    def get_projects(self) -> List[Project]:
        return list(self._projects)

    def add_task(self, values: Dict[str, Any]) -> str:
        task_id = f"autoplan-{next(self._ids)}"
        while task_id in self._tasks:
            task_id = f"autoplan-{next(self._ids)}"
        task = Task(id=task_id)
        self._tasks[task_id] = task
        self._assign(task, values)
        return task_id

    def update_task(self, task_id: str, values: Dict[str, Any]) -> None:
        if task_id not in self._tasks:
            raise TaskStoreError(f"Unknown task id: {task_id}")
        self._assign(self._tasks[task_id], values)

    def delete_task(self, task_id: str) -> None:
        if task_id not in self._tasks:
            raise TaskStoreError(f"Unknown task id: {task_id}")
        del self._tasks[task_id]

    def load_config_blob(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._config_blob)

    def save_config_blob(self, blob: Dict[str, Any]) -> None:
        self._config_blob = copy.deepcopy(blob)

    @staticmethod
    def _assign(task: Task, values: Dict[str, Any]) -> None:
        unknown = set(values) - _TASK_FIELDS
        if unknown:
            raise TaskStoreError(f"Unknown task fields: {sorted(unknown)}")
        for name, value in values.items():
            setattr(task, name, copy.deepcopy(value))


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------

def _error(task_id: str, exc: Exception, split_index: Optional[int] = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"task_id": task_id, "error": str(exc)}
    if split_index is not None:
        err["split_index"] = split_index
    return err


def apply_schedule(
    entries: List[ScheduleEntry],
    store: TaskStore,
    blocks: Optional[List[Block]] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Write a schedule back to the store.

    One scheduled block  → the original task just gets its start time.
    Several blocks       → block 0 rewrites the original task in place (id and
                           tracked time survive), the others become new tasks
                           with zero spent time and the task's own tags.
    When `blocks` is given, unscheduled siblings of a multi-block task are
    created too (without a start time) so the group still adds up to the
    original estimate.
    """
    created: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    groups: Dict[str, List[ScheduleEntry]] = OrderedDict()
    for entry in entries:
        groups.setdefault(entry.block.task_id, []).append(entry)

    leftovers: Dict[str, List[Block]] = {}
    if blocks:
        scheduled_keys = {e.block.key for e in entries}
        for block in blocks:
            if block.key not in scheduled_keys:
                leftovers.setdefault(block.task_id, []).append(block)

    for task_id, items in groups.items():
        items.sort(key=lambda e: e.block.split_index)
        task = items[0].block.task

        if len(items) == 1:
            try:
                store.update_task(task_id, {"due_with_time": items[0].start})
                created.append({"type": "updated", "task_id": task_id, "scheduled_at": items[0].start})
            except Exception as e:
                logger.warning(f"Failed to schedule task {task_id}: {e}")
                errors.append(_error(task_id, e))
            continue

        pieces = [(e.block, e.start) for e in items]
        pieces += [(b, None) for b in sorted(leftovers.get(task_id, []), key=lambda b: b.split_index)]

        for i, (block, start) in enumerate(pieces):
            notes = generate_split_notes(block.split_index, block.total_splits, task.title, task_id, task.notes)
            try:
                if i == 0:
                    store.update_task(task_id, {
                        "title": block.title,
                        "time_estimate": block.estimated_ms,
                        "notes": notes,
                        "due_with_time": start,
                    })
                    new_id = task_id
                    kind = "updated"
                else:
                    new_id = store.add_task({
                        "title": block.title,
                        "time_estimate": block.estimated_ms,
                        "time_spent": 0,
                        "time_spent_on_day": {},
                        "tag_ids": list(block.real_tag_ids),
                        "project_id": task.project_id,
                        "parent_id": task.parent_id,
                        "notes": notes,
                    })
                    if start is not None:
                        store.update_task(new_id, {"due_with_time": start})
                    kind = "created"
                created.append({
                    "type": kind,
                    "task_id": new_id,
                    "original_task_id": task_id,
                    "split_index": block.split_index,
                    "scheduled_at": start,
                })
            except Exception as e:
                logger.warning(f"Failed to write split {block.split_index} of task {task_id}: {e}")
                errors.append(_error(task_id, e, block.split_index))
                if i == 0:
                    # No siblings unless the original carries split 1 and its reduced estimate
                    reason = TaskStoreError("skipped: first split could not be written")
                    for skipped, _ in pieces[1:]:
                        errors.append(_error(task_id, reason, skipped.split_index))
                    logger.warning(f"Skipped {len(pieces) - 1} splits of task {task_id}")
                    break

    if errors:
        logger.warning(f"Applied schedule with {len(errors)} errors")
    else:
        logger.info(f"Applied schedule: {len(created)} tasks written")
    return {"created": created, "errors": errors}


# ---------------------------------------------------------------------------
# Merge / clear
# ---------------------------------------------------------------------------

def merge_split_group(store: TaskStore, task_id: str) -> Optional[Dict[str, Any]]:
    """
    Fold the split group containing `task_id` back into one task.

    Returns None when `task_id` is not a split or every member is already done.
    Failure to update the survivor propagates; failures to remove the other
    members are collected in the result's "errors".
    """
    group = find_related_splits(store.get_tasks(), task_id)
    if group is None:
        logger.debug(f"Task {task_id} is not a split task")
        return None

    plan = plan_merge(group)
    if plan is None:
        logger.debug(f"Split group {group.original_task_id} is already completed")
        return None

    store.update_task(plan.survivor_id, plan.updates)
    errors: List[Dict[str, Any]] = []
    members = {t.id: t for t in group.tasks}

    for other_id in plan.delete_ids:
        try:
            store.delete_task(other_id)
        except Exception as e:
            logger.warning(f"Could not delete split task {other_id}: {e} — marking it done")
            try:
                store.update_task(other_id, {
                    "is_done": True,
                    "notes": clean_autoplan_notes(members[other_id].notes),
                })
            except Exception as e2:
                logger.warning(f"Could not mark split task {other_id} done: {e2}")
                errors.append(_error(other_id, e2))

    for done_id in plan.completed_ids:
        try:
            store.delete_task(done_id)
        except Exception as e:
            logger.warning(f"Could not delete completed split {done_id}: {e}")
            errors.append(_error(done_id, e))

    return {
        "merged_task_id": plan.survivor_id,
        "merged_count": plan.merged_count,
        "total_time_estimate": plan.updates.get("time_estimate", members[plan.survivor_id].time_estimate),
        "orphan": plan.orphan,
        "errors": errors,
    }


def clear_planning(store: TaskStore, config: PlannerConfig) -> Dict[str, Any]:
    """Merge all split groups, then drop scheduled times from movable tasks."""
    errors: List[Dict[str, Any]] = []
    merged = 0

    for group in find_all_split_groups(store.get_tasks()):
        first_id = group.members[0].task.id
        try:
            outcome = merge_split_group(store, first_id)
        except Exception as e:
            logger.warning(f"Failed to merge split group '{group.original_title}': {e}")
            errors.append(_error(group.original_task_id, e))
            continue
        if outcome:
            merged += 1
            errors.extend(outcome["errors"])
            logger.info(f"Merged split group: {group.original_title}")

    cleared = 0
    for task in store.get_tasks():
        if task.is_done or task.time_estimate <= 0 or is_fixed_task(task, config):
            continue
        if task.due_with_time is None:
            continue
        try:
            store.update_task(task.id, {"due_with_time": None})
            cleared += 1
        except Exception as e:
            logger.warning(f"Failed to clear planning for task {task.id}: {e}")
            errors.append(_error(task.id, e))

    logger.info(f"Cleared planning: merged {merged} split groups, cleared {cleared} tasks")
    return {"merged": merged, "cleared": cleared, "errors": errors}


# ---------------------------------------------------------------------------
# Full cycle
# ---------------------------------------------------------------------------

@dataclass
class PlanResult:
    adjust: AdjustResult
    eligible_tasks: List[Task] = field(default_factory=list)
    fixed_tasks: List[Task] = field(default_factory=list)
    skipped_parents: List[Task] = field(default_factory=list)
    applied: bool = False
    apply_result: Optional[Dict[str, List[Dict[str, Any]]]] = None
    clear_result: Optional[Dict[str, Any]] = None

    @property
    def entries(self) -> List[ScheduleEntry]:
        return self.adjust.schedule.entries

    @property
    def deadline_misses(self) -> List[DeadlineMiss]:
        return self.adjust.schedule.deadline_misses

    @property
    def unscheduled(self) -> List[Block]:
        return self.adjust.schedule.unscheduled

    @property
    def errors(self) -> List[Dict[str, Any]]:
        errs: List[Dict[str, Any]] = []
        if self.clear_result:
            errs.extend(self.clear_result["errors"])
        if self.apply_result:
            errs.extend(self.apply_result["errors"])
        return errs


def run_autoplan(
    store: TaskStore,
    config: PlannerConfig,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> PlanResult:
    now = now or datetime.now().replace(second=0, microsecond=0)
    logger.info(f"AutoPlan run at {now:%Y-%m-%d %H:%M} ({'dry run' if dry_run else 'apply'})")

    clear_result = None
    if not dry_run:
        clear_result = clear_planning(store, config)

    all_tasks = store.get_tasks()
    tags = store.get_tags()
    projects = store.get_projects()
    if dry_run:
        all_tasks = simulate_merged_tasks(all_tasks)

    fixed = [t for t in all_tasks if not t.is_done and is_fixed_task(t, config)]
    eligible = [
        t for t in all_tasks
        if not t.is_done and t.time_estimate > 0 and not is_fixed_task(t, config)
    ]
    logger.info(f"{len(all_tasks)} tasks: {len(eligible)} eligible, {len(fixed)} fixed")

    split = process_all_tasks(eligible, config.block_size_minutes, config, all_tasks=all_tasks)
    context = PriorityContext.build(all_tasks, tags, projects)
    adjust = schedule_with_auto_adjust(split.blocks, config, context, now, fixed)

    result = PlanResult(
        adjust=adjust,
        eligible_tasks=eligible,
        fixed_tasks=fixed,
        skipped_parents=split.skipped_parents,
        clear_result=clear_result,
    )
    if dry_run:
        return result

    result.apply_result = apply_schedule(adjust.schedule.entries, store, adjust.schedule.blocks)
    result.applied = True
    return result
