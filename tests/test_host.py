"""
Tests for the host layer: store contract, apply, merge, clear, full cycle
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autoplan.config import PlannerConfig
from autoplan.host import (
    InMemoryTaskStore,
    TaskStoreError,
    apply_schedule,
    clear_planning,
    merge_split_group,
    run_autoplan,
)
from autoplan.models import MS_PER_HOUR, Tag, Task
from autoplan.notes import generate_split_notes, parse_split_info
from autoplan.priority import PriorityContext
from autoplan.scheduler import schedule_blocks
from autoplan.splitter import process_all_tasks

MONDAY_9 = datetime(2026, 3, 2, 9, 0)


def _schedule(tasks, config):
    blocks = process_all_tasks(tasks, config.block_size_minutes, config).blocks
    return schedule_blocks(blocks, config, PriorityContext.build(tasks), MONDAY_9)


def _split(task_id, index, total, title="Report", original_id="orig", **kwargs):
    return Task(
        id=task_id,
        title=f"{title} <{'I' * (index + 1)}>",
        notes=generate_split_notes(index, total, title, original_id),
        **kwargs,
    )


class NoDeleteStore(InMemoryTaskStore):
    def delete_task(self, task_id):
        raise TaskStoreError("delete not allowed")


class NoAddStore(InMemoryTaskStore):
    def add_task(self, values):
        raise TaskStoreError("store is full")


class LockedOriginalStore(InMemoryTaskStore):
    def update_task(self, task_id, values):
        if task_id == "orig":
            raise TaskStoreError("task is locked")
        super().update_task(task_id, values)


@pytest.fixture
def original():
    return Task(
        id="orig",
        title='Quote "me"',
        time_estimate=5 * MS_PER_HOUR,
        time_spent=MS_PER_HOUR,
        time_spent_on_day={"2026-02-27": MS_PER_HOUR},
        notes="user note",
    )


class TestInMemoryStore:

    def test_reads_are_copies(self, original):
        store = InMemoryTaskStore([original])
        store.get_tasks()[0].title = "changed"
        assert store.get_task("orig").title == 'Quote "me"'
        original.title = "changed too"
        assert store.get_task("orig").title == 'Quote "me"'

    def test_new_ids(self):
        store = InMemoryTaskStore([Task(id="autoplan-1")])
        assert store.add_task({"title": "a"}) == "autoplan-2"
        assert store.add_task({"title": "b"}) == "autoplan-3"

    def test_errors(self):
        store = InMemoryTaskStore([Task(id="a")])
        with pytest.raises(TaskStoreError):
            store.update_task("missing", {"title": "x"})
        with pytest.raises(TaskStoreError):
            store.update_task("a", {"colour": "red"})
        with pytest.raises(TaskStoreError):
            store.delete_task("missing")

    def test_config_blob(self):
        store = InMemoryTaskStore()
        assert store.load_config_blob() is None
        store.save_config_blob({"blockSizeMinutes": 60})
        assert PlannerConfig.from_dict(store.load_config_blob()).block_size_minutes == 60


class TestApplySchedule:

    def test_single_block_only_gets_start(self):
        task = Task(id="t", title="Short", time_estimate=MS_PER_HOUR, notes="n")
        store = InMemoryTaskStore([task])
        out = apply_schedule(_schedule([task], PlannerConfig()).entries, store)
        stored = store.get_task("t")
        assert stored.due_with_time == MONDAY_9
        assert stored.title == "Short"
        assert stored.notes == "n"
        assert out["errors"] == []

    def test_multiple_blocks(self, original):
        store = InMemoryTaskStore([original])
        out = apply_schedule(_schedule([original], PlannerConfig()).entries, store)
        assert out["errors"] == []

        first = store.get_task("orig")
        second = store.get_task("autoplan-1")
        assert first.title == 'Quote "me" <I>'
        assert first.time_estimate == 3 * MS_PER_HOUR
        assert first.time_spent == MS_PER_HOUR
        assert first.due_with_time == MONDAY_9
        assert second.title == 'Quote "me" <II>'
        assert second.time_spent == 0
        assert second.due_with_time == datetime(2026, 3, 2, 12, 0)

        info = parse_split_info(second.notes)
        assert (info.split_index, info.total_splits, info.original_task_id) == (1, 2, "orig")
        assert info.original_title == 'Quote "me"'
        assert second.notes.startswith("user note")

    def test_unscheduled_siblings_created(self):
        task = Task(id="t", title="Long", time_estimate=12 * MS_PER_HOUR)
        cfg = PlannerConfig(skip_days=[], max_days_ahead=1)
        result = _schedule([task], cfg)
        store = InMemoryTaskStore([task])
        apply_schedule(result.entries, store, result.blocks)

        tasks = store.get_tasks()
        assert len(tasks) == 6
        assert sum(t.time_estimate for t in tasks) == 12 * MS_PER_HOUR
        assert sum(t.due_with_time is None for t in tasks) == 2

    def test_add_failures_collected(self, original):
        store = NoAddStore([original])
        out = apply_schedule(_schedule([original], PlannerConfig()).entries, store)
        assert out["errors"] == [{"task_id": "orig", "split_index": 1, "error": "store is full"}]
        assert store.get_task("orig").title == 'Quote "me" <I>'

    def test_first_split_failure_skips_siblings(self, original):
        store = LockedOriginalStore([original])
        out = apply_schedule(_schedule([original], PlannerConfig()).entries, store)

        assert out["created"] == []
        assert out["errors"] == [
            {"task_id": "orig", "split_index": 0, "error": "task is locked"},
            {"task_id": "orig", "split_index": 1, "error": "skipped: first split could not be written"},
        ]
        assert [t.id for t in store.get_tasks()] == ["orig"]
        assert store.get_task("orig") == original


class TestMerge:

    def test_not_a_split(self):
        store = InMemoryTaskStore([Task(id="a")])
        assert merge_split_group(store, "a") is None

    def test_completed_split_keeps_its_time(self):
        store = InMemoryTaskStore([
            _split("orig", 0, 2, time_estimate=2 * MS_PER_HOUR, time_spent=2 * MS_PER_HOUR, is_done=True),
            _split("n1", 1, 2, time_estimate=2 * MS_PER_HOUR),
        ])
        out = merge_split_group(store, "orig")
        assert out["merged_task_id"] == "n1"
        assert out["total_time_estimate"] == 2 * MS_PER_HOUR
        (merged,) = store.get_tasks()
        assert merged.id == "n1"
        assert merged.title == "Report"
        assert merged.time_spent == 2 * MS_PER_HOUR
        assert merged.notes == ""

    def test_delete_failure_marks_done(self):
        store = NoDeleteStore([
            _split("orig", 0, 3, time_estimate=MS_PER_HOUR),
            _split("n1", 1, 3, time_estimate=MS_PER_HOUR),
            _split("n2", 2, 3, time_estimate=MS_PER_HOUR, is_done=True),
        ])
        out = merge_split_group(store, "n1")
        assert out["merged_task_id"] == "orig"
        fallback = store.get_task("n1")
        assert fallback.is_done
        assert "[AutoPlan]" not in fallback.notes
        assert [e["task_id"] for e in out["errors"]] == ["n2"]

    def test_orphan(self):
        store = InMemoryTaskStore([_split("n1", 1, 3, time_estimate=MS_PER_HOUR)])
        out = merge_split_group(store, "n1")
        assert out["orphan"]
        assert store.get_task("n1").title == "Report"
        assert store.get_task("n1").notes == ""


class TestFullCycle:
    """Test run_autoplan and clear_planning end to end"""

    def test_run_then_clear_restores_task(self, original):
        store = InMemoryTaskStore([original])
        plan = run_autoplan(store, PlannerConfig(), now=MONDAY_9)
        assert plan.applied
        assert plan.errors == []
        assert len(store.get_tasks()) == 2

        out = clear_planning(store, PlannerConfig())
        assert out == {"merged": 1, "cleared": 1, "errors": []}
        (restored,) = store.get_tasks()
        assert restored.to_dict() == original.to_dict()

    def test_dry_run_leaves_store_untouched(self, original):
        split_a = _split("s1", 0, 2, title="Old", original_id="s1", time_estimate=MS_PER_HOUR)
        split_b = _split("s2", 1, 2, title="Old", original_id="s1", time_estimate=MS_PER_HOUR)
        store = InMemoryTaskStore([original, split_a, split_b])
        before = [t.to_dict() for t in store.get_tasks()]

        plan = run_autoplan(store, PlannerConfig(), now=MONDAY_9, dry_run=True)
        assert not plan.applied
        assert plan.apply_result is None
        assert [t.to_dict() for t in store.get_tasks()] == before
        assert {t.id for t in plan.eligible_tasks} == {"orig", "s1"}
        assert next(t for t in plan.eligible_tasks if t.id == "s1").time_estimate == 2 * MS_PER_HOUR

    def test_real_runs_are_idempotent(self, original):
        other = Task(id="b", title="Other", time_estimate=3 * MS_PER_HOUR, due_date=datetime(2026, 3, 4))
        store = InMemoryTaskStore([original, other])

        def layout():
            return sorted((t.title, t.time_estimate, t.due_with_time) for t in store.get_tasks())

        run_autoplan(store, PlannerConfig(), now=MONDAY_9)
        first = layout()
        run_autoplan(store, PlannerConfig(), now=MONDAY_9)
        assert layout() == first

    def test_fixed_tasks_not_moved(self):
        meeting = Task(
            id="m", title="Standup", tag_ids=["t-fixed"], time_estimate=MS_PER_HOUR,
            due_with_time=datetime(2026, 3, 2, 9, 0),
        )
        work = Task(id="w", title="Work", time_estimate=8 * MS_PER_HOUR)
        cfg = PlannerConfig(do_not_reschedule_tag_id="t-fixed")
        store = InMemoryTaskStore([meeting, work], tags=[Tag("t-fixed", "fixed")])

        plan = run_autoplan(store, cfg, now=MONDAY_9)
        assert [t.id for t in plan.fixed_tasks] == ["m"]
        assert all(e.block.task_id == "w" for e in plan.entries)
        monday = sum(e.minutes for e in plan.entries if e.start.date() == MONDAY_9.date())
        assert monday == 420
        assert store.get_task("m").due_with_time == datetime(2026, 3, 2, 9, 0)

        clear_planning(store, cfg)
        assert store.get_task("m").due_with_time == datetime(2026, 3, 2, 9, 0)

    def test_parents_skipped(self):
        parent = Task(id="p", title="Epic", time_estimate=10 * MS_PER_HOUR)
        child = Task(id="c", title="Story", parent_id="p", time_estimate=MS_PER_HOUR)
        store = InMemoryTaskStore([parent, child])
        plan = run_autoplan(store, PlannerConfig(), now=MONDAY_9, dry_run=True)
        assert [t.id for t in plan.skipped_parents] == ["p"]
        assert [e.block.task_id for e in plan.entries] == ["c"]
