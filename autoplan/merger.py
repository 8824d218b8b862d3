"""
merger.py — Split-group reconciliation (inverse of the splitter)

Tasks carrying both split markers belong to the group of their original
task id. Folding a group back into one task:

  estimate       sum over incomplete members (remaining work)
  spent, ledger  sum over ALL members, completed ones included
  title          original title from the marker
  notes          markers stripped
  survivor       the member whose id is the original id if still incomplete,
                 else the first incomplete member
  everyone else  deleted (host layer falls back to "mark done" on failure)

plan_merge() is pure; host.merge_split_group() executes the plan against a
store and simulate_merged_tasks() applies it to an in-memory snapshot so a
dry run sees exactly what a real run would.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from autoplan.models import Task
from autoplan.notes import SplitInfo, clean_autoplan_notes, parse_split_info, strip_roman_suffix

logger = logging.getLogger(__name__)


@dataclass
class SplitMember:
    task: Task
    info: SplitInfo


@dataclass
class SplitGroup:
    original_task_id: str
    original_title: str
    members: List[SplitMember] = field(default_factory=list)   # sorted by split index

    @property
    def tasks(self) -> List[Task]:
        return [m.task for m in self.members]

    @property
    def incomplete(self) -> List[Task]:
        return [m.task for m in self.members if not m.task.is_done]


def find_all_split_groups(tasks: Iterable[Task]) -> List[SplitGroup]:
    groups: Dict[str, SplitGroup] = OrderedDict()
    for task in tasks:
        info = parse_split_info(task.notes)
        if info is None:
            continue
        group = groups.get(info.original_task_id)
        if group is None:
            group = groups[info.original_task_id] = SplitGroup(info.original_task_id, info.original_title)
        group.members.append(SplitMember(task, info))

    for group in groups.values():
        group.members.sort(key=lambda m: m.info.split_index)
    return list(groups.values())


def find_related_splits(tasks: Iterable[Task], task_id: str) -> Optional[SplitGroup]:
    """The group `task_id` belongs to, or None if it carries no markers."""
    tasks = list(tasks)
    task = next((t for t in tasks if t.id == task_id), None)
    if task is None:
        return None
    info = parse_split_info(task.notes)
    if info is None:
        return None
    for group in find_all_split_groups(tasks):
        if group.original_task_id == info.original_task_id:
            return group
    return None


def merge_time_spent_on_day(ledgers: Iterable[Optional[Dict[str, int]]]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for ledger in ledgers:
        if not ledger:
            continue
        for day, ms in ledger.items():
            merged[day] = merged.get(day, 0) + (ms or 0)
    return merged


@dataclass
class MergeData:
    title: str
    total_time_estimate: int
    total_time_spent: int
    total_time_spent_on_day: Dict[str, int]
    merged_count: int


def calculate_merge_data(incomplete: List[Task], all_splits: List[Task], original_title: str) -> MergeData:
    title = original_title
    if not title and incomplete:
        title = strip_roman_suffix(incomplete[0].title)
    return MergeData(
        title=title or "Merged Task",
        total_time_estimate=sum(t.time_estimate for t in incomplete),
        total_time_spent=sum(t.time_spent for t in all_splits),
        total_time_spent_on_day=merge_time_spent_on_day(t.time_spent_on_day for t in all_splits),
        merged_count=len(incomplete),
    )


@dataclass
class MergePlan:
    survivor_id: str
    updates: Dict[str, Any]
    delete_ids: List[str] = field(default_factory=list)      # other incomplete members
    completed_ids: List[str] = field(default_factory=list)   # folded in, then removed
    merged_count: int = 1
    orphan: bool = False


def plan_merge(group: SplitGroup) -> Optional[MergePlan]:
    """None when there is nothing to merge (every member already done)."""
    members = group.tasks
    incomplete = group.incomplete
    if not incomplete:
        return None

    if len(members) == 1:
        orphan = members[0]
        return MergePlan(
            survivor_id=orphan.id,
            updates={"title": group.original_title, "notes": clean_autoplan_notes(orphan.notes)},
            orphan=True,
        )

    data = calculate_merge_data(incomplete, members, group.original_title)
    survivor = next((t for t in incomplete if t.id == group.original_task_id), incomplete[0])
    return MergePlan(
        survivor_id=survivor.id,
        updates={
            "title": data.title,
            "time_estimate": data.total_time_estimate,
            "time_spent": data.total_time_spent,
            "time_spent_on_day": data.total_time_spent_on_day,
            "notes": clean_autoplan_notes(survivor.notes),
        },
        delete_ids=[t.id for t in incomplete if t.id != survivor.id],
        completed_ids=[t.id for t in members if t.is_done],
        merged_count=data.merged_count,
    )


def simulate_merged_tasks(tasks: Iterable[Task]) -> List[Task]:
    """
    Snapshot as it would look after merging every split group and clearing
    planning on the survivors. Input tasks are not modified.
    """
    tasks = list(tasks)
    groups = find_all_split_groups(tasks)
    grouped_ids = {t.id for g in groups for t in g.tasks}

    result: List[Task] = []
    for task in tasks:
        if task.id in grouped_ids:
            continue
        if task.notes and "[AutoPlan]" in task.notes:
            task = replace(task, notes=clean_autoplan_notes(task.notes))
        result.append(task)

    merged = 0
    by_id = {t.id: t for t in tasks}
    for group in groups:
        plan = plan_merge(group)
        if plan is None:
            continue
        survivor = by_id[plan.survivor_id]
        result.append(replace(survivor, due_with_time=None, **plan.updates))
        merged += 1

    if groups:
        logger.info(f"Simulated merge of {len(groups)} split groups into {merged} tasks")
    return result
