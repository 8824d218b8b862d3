"""
Tests for the greedy scheduler (capacity, ordering, dynamic splitting) and
the deadline monitor
"""

import sys
from datetime import date, datetime
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autoplan.config import DeadlineFormula, DurationFormula, OldnessFormula, PlannerConfig
from autoplan.deadline_monitor import check_deadline_misses
from autoplan.models import MS_PER_HOUR, Tag, Task, TimeMap
from autoplan.priority import PriorityContext
from autoplan.scheduler import BlockArena, schedule_blocks
from autoplan.splitter import process_all_tasks, split_task

MONDAY_9 = datetime(2026, 3, 2, 9, 0)
MONDAY = MONDAY_9.date()
TUESDAY = date(2026, 3, 3)


def _plan(tasks, config, start=MONDAY_9, tags=(), fixed=()):
    blocks = process_all_tasks(tasks, config.block_size_minutes, config).blocks
    context = PriorityContext.build(tasks, tags)
    return blocks, schedule_blocks(blocks, config, context, start, fixed)


def _slots(result):
    return [(e.block.key, e.start, e.end) for e in result.entries]


@pytest.fixture
def config():
    return PlannerConfig(skip_days=[])


@pytest.fixture
def quiet_config():
    return PlannerConfig(
        skip_days=[],
        duration_formula=DurationFormula.NONE,
        oldness_formula=OldnessFormula.NONE,
        deadline_formula=DeadlineFormula.NONE,
    )


class TestCapacity:
    """Test window filling and day rollover"""

    def test_twelve_hours_over_two_days(self, config):
        task = Task(id="t", title="Big", time_estimate=12 * MS_PER_HOUR)
        _, result = _plan([task], config)

        assert len(result.entries) == 6
        monday = [e for e in result.entries if e.start.date() == MONDAY]
        tuesday = [e for e in result.entries if e.start.date() == TUESDAY]
        assert [e.start.hour for e in monday] == [9, 11, 13, 15]
        assert monday[-1].end == datetime(2026, 3, 2, 17, 0)
        assert [(e.start.hour, e.end.hour) for e in tuesday] == [(9, 11), (11, 13)]
        assert [e.block.split_index for e in result.entries] == list(range(6))
        assert result.unscheduled == []

    def test_weekend_skipped(self):
        task = Task(id="t", time_estimate=2 * MS_PER_HOUR)
        saturday = datetime(2026, 3, 7, 9, 0)
        _, result = _plan([task], PlannerConfig(), start=saturday)
        assert result.entries[0].start == datetime(2026, 3, 9, 9, 0)

    def test_fixed_task_reduces_capacity(self, config):
        meeting = Task(id="m", due_with_time=datetime(2026, 3, 2, 9, 0), time_estimate=MS_PER_HOUR)
        work = Task(id="w", title="Work", time_estimate=8 * MS_PER_HOUR)
        _, result = _plan([work], config, fixed=[meeting])

        per_day = {}
        for entry in result.entries:
            per_day[entry.start.date()] = per_day.get(entry.start.date(), 0) + entry.minutes
        assert per_day == {MONDAY: 420, TUESDAY: 60}
        for (map_id, day), used in result.used_minutes.items():
            assert used <= result.registry.available_minutes(map_id, day)

    def test_leftover_below_minimum_moves_to_next_day(self, config):
        meeting = Task(id="m", due_with_time=datetime(2026, 3, 2, 9, 0), time_estimate=460 * 60 * 1000)
        work = Task(id="w", time_estimate=MS_PER_HOUR)
        _, result = _plan([work], config, fixed=[meeting])
        assert result.registry.available_minutes("default", MONDAY) == 20
        assert result.entries[0].start == datetime(2026, 3, 3, 9, 0)

    def test_mid_day_start(self, config):
        task = Task(id="t", time_estimate=8 * MS_PER_HOUR)
        _, result = _plan([task], config, start=datetime(2026, 3, 2, 13, 0))
        assert [(e.start, e.end.hour) for e in result.entries] == [
            (datetime(2026, 3, 2, 13, 0), 15),
            (datetime(2026, 3, 2, 15, 0), 17),
            (datetime(2026, 3, 3, 9, 0), 11),
            (datetime(2026, 3, 3, 11, 0), 13),
        ]

    def test_horizon_limit(self):
        cfg = PlannerConfig(skip_days=[], max_days_ahead=1)
        task = Task(id="t", time_estimate=12 * MS_PER_HOUR)
        _, result = _plan([task], cfg)
        assert len(result.entries) == 4
        assert [b.split_index for b in result.unscheduled] == [4, 5]

    def test_project_map_only(self):
        cfg = PlannerConfig(
            skip_days=[],
            time_maps={"evenings": TimeMap.from_dict("evenings", {"days": [{"startHour": 18, "endHour": 21}] * 7})},
            project_time_maps={"p-home": "evenings"},
        )
        home = Task(id="h", project_id="p-home", time_estimate=4 * MS_PER_HOUR)
        work = Task(id="w", time_estimate=2 * MS_PER_HOUR)
        _, result = _plan([home, work], cfg)
        by_task = {}
        for entry in result.entries:
            by_task.setdefault(entry.block.task_id, set()).add(entry.time_map_id)
        assert by_task == {"h": {"evenings"}, "w": {"default"}}
        first_home = min(e.start for e in result.entries if e.block.task_id == "h")
        assert first_home == datetime(2026, 3, 2, 18, 0)

    def test_block_eligible_for_two_maps(self):
        cfg = PlannerConfig(
            skip_days=[],
            time_maps={
                "a": TimeMap.from_dict("a", {"days": [{"startHour": 9, "endHour": 10}] * 7}),
                "b": TimeMap.from_dict("b", {"days": [{"startHour": 18, "endHour": 19}] * 7}),
            },
            tag_time_maps={"t1": "a", "t2": "b"},
        )
        task = Task(id="t", title="Both", time_estimate=4 * MS_PER_HOUR, tag_ids=["t1", "t2"])
        _, result = _plan([task], cfg)

        keys = [e.block.key for e in result.entries]
        assert len(keys) == len(set(keys))
        assert sum(e.minutes for e in result.entries) == 240
        assert {e.time_map_id for e in result.entries} == {"a", "b"}
        assert [(e.start, e.time_map_id) for e in result.entries] == [
            (datetime(2026, 3, 2, 9, 0), "a"),
            (datetime(2026, 3, 2, 18, 0), "b"),
            (datetime(2026, 3, 3, 9, 0), "a"),
            (datetime(2026, 3, 3, 18, 0), "b"),
        ]
        assert result.unscheduled == []

    @pytest.mark.parametrize("minimum", [0, -5])
    def test_non_positive_minimum_block_uses_default(self, minimum):
        cfg = PlannerConfig(skip_days=[], minimum_block_size_minutes=minimum, max_days_ahead=2)
        task = Task(id="t", time_estimate=10 * MS_PER_HOUR)
        _, result = _plan([task], cfg)

        assert sum(e.minutes for e in result.entries) == 600
        assert [e.start.hour for e in result.entries if e.start.date() == MONDAY] == [9, 11, 13, 15]
        assert [e.start.hour for e in result.entries if e.start.date() == TUESDAY] == [9]
        assert result.unscheduled == []

    def test_empty_input(self, config):
        result = schedule_blocks([], config, PriorityContext.build([]), MONDAY_9)
        assert result.entries == []
        assert result.deadline_misses == []


class TestOrdering:
    """Test urgency order and deterministic tie-breaks"""

    def test_tag_boost_goes_first(self, config):
        config.tag_priorities = {"hot": 10}
        a = Task(id="a", time_estimate=2 * MS_PER_HOUR)
        b = Task(id="b", time_estimate=2 * MS_PER_HOUR, tag_ids=["t-hot"])
        _, result = _plan([a, b], config, tags=[Tag("t-hot", "hot")])
        assert [e.block.task_id for e in result.entries] == ["b", "a"]

    def test_closer_deadline_goes_first(self, config):
        later = Task(id="a", time_estimate=2 * MS_PER_HOUR, due_date=datetime(2026, 3, 12))
        sooner = Task(id="z", time_estimate=2 * MS_PER_HOUR, due_date=datetime(2026, 3, 4))
        _, result = _plan([later, sooner], config)
        assert [e.block.task_id for e in result.entries] == ["z", "a"]

    def test_older_task_breaks_tie(self, quiet_config):
        newer = Task(id="a", time_estimate=MS_PER_HOUR, created=datetime(2026, 2, 20))
        older = Task(id="b", time_estimate=MS_PER_HOUR, created=datetime(2026, 2, 10))
        _, result = _plan([newer, older], quiet_config)
        assert [e.block.task_id for e in result.entries] == ["b", "a"]

    def test_task_id_breaks_remaining_tie(self, quiet_config):
        tasks = [Task(id=i, time_estimate=MS_PER_HOUR) for i in ("c", "a", "b")]
        _, result = _plan(tasks, quiet_config)
        assert [e.block.task_id for e in result.entries] == ["a", "b", "c"]

    def test_components_add_up(self, config):
        task = Task(id="t", time_estimate=3 * MS_PER_HOUR, created=datetime(2026, 2, 1), due_date=datetime(2026, 3, 5))
        _, result = _plan([task], config)
        for entry in result.entries:
            assert entry.urgency == pytest.approx(sum(entry.components.values()))

    def test_deterministic(self, config):
        tasks = [
            Task(id="a", time_estimate=5 * MS_PER_HOUR, created=datetime(2026, 2, 1)),
            Task(id="b", time_estimate=3 * MS_PER_HOUR, due_date=datetime(2026, 3, 3)),
        ]
        _, first = _plan(tasks, config)
        _, second = _plan(tasks, config)
        assert _slots(first) == _slots(second)


class TestDynamicSplit:
    """Test splitting a block that does not fit the remaining window"""

    @pytest.fixture
    def short_day(self):
        return PlannerConfig(
            skip_days=[],
            block_size_minutes=180,
            time_maps={"default": TimeMap.from_dict("default", {"days": [{"startHour": 9, "endHour": 11}] * 7})},
        )

    def test_remainder_rolls_to_next_day(self, short_day):
        task = Task(id="t", title="Deep work", time_estimate=3 * MS_PER_HOUR)
        blocks, result = _plan([task], short_day)

        assert [(e.start, e.minutes) for e in result.entries] == [
            (datetime(2026, 3, 2, 9, 0), 120),
            (datetime(2026, 3, 3, 9, 0), 60),
        ]
        first, second = sorted(result.blocks, key=lambda b: b.split_index)
        assert first.total_splits == second.total_splits == 2
        assert first.next_split_index == 1
        assert second.prev_split_index == 0
        assert second.title == "Deep work <II>"
        assert sum(b.estimated_minutes for b in result.blocks) == 180

    def test_input_blocks_not_mutated(self, short_day):
        task = Task(id="t", title="Deep work", time_estimate=3 * MS_PER_HOUR)
        blocks, _ = _plan([task], short_day)
        assert len(blocks) == 1
        assert blocks[0].estimated_minutes == 180
        assert blocks[0].total_splits == 1
        assert blocks[0].next_split_index is None

    def test_arena_split_links_to_tail(self):
        task = Task(id="t", title="T", time_estimate=6 * MS_PER_HOUR)
        arena = BlockArena(split_task(task, 120, PlannerConfig()))
        new = arena.split_block(("t", 0), 90, PlannerConfig())
        assert new.split_index == 3
        assert new.prev_split_index == 2
        assert arena[("t", 2)].next_split_index == 3
        assert arena[("t", 0)].estimated_minutes == 90
        assert all(b.total_splits == 4 for b in arena.siblings("t"))
        assert arena.remaining_minutes("t") == 360


class TestDeadlineMonitor:
    """Test post-hoc deadline checks"""

    def test_late_completion(self, config):
        task = Task(id="t", title="Late", time_estimate=6 * MS_PER_HOUR, notes="Deadline: 2026-03-02 12:00")
        _, result = _plan([task], config)
        (miss,) = result.deadline_misses
        assert miss.scheduled_completion == datetime(2026, 3, 2, 15, 0)
        assert miss.missed_by_days == 1
        assert miss.unscheduled_blocks == 0

    def test_partially_unscheduled(self):
        cfg = PlannerConfig(skip_days=[], max_days_ahead=1)
        task = Task(id="t", time_estimate=12 * MS_PER_HOUR, due_date=datetime(2026, 3, 20))
        _, result = _plan([task], cfg)
        (miss,) = result.deadline_misses
        assert miss.unscheduled_blocks == 2
        assert miss.total_blocks == 6
        assert miss.missed_by_days is None

    def test_never_scheduled(self):
        cfg = PlannerConfig(skip_days=[0, 1, 2, 3, 4, 5, 6])
        task = Task(id="t", title="Nowhere", time_estimate=MS_PER_HOUR, due_date=datetime(2026, 3, 3))
        _, result = _plan([task], cfg)
        (miss,) = result.deadline_misses
        assert miss.scheduled_completion is None
        assert miss.unscheduled_blocks == miss.total_blocks == 1
        assert "never" in str(miss)

    def test_no_deadline_no_miss(self):
        cfg = PlannerConfig(skip_days=[], max_days_ahead=1)
        task = Task(id="t", time_estimate=12 * MS_PER_HOUR)
        _, result = _plan([task], cfg)
        assert result.unscheduled
        assert result.deadline_misses == []

    def test_on_time(self, config):
        task = Task(id="t", time_estimate=2 * MS_PER_HOUR, notes="Deadline: 2026-03-02 11:00")
        blocks, result = _plan([task], config)
        assert check_deadline_misses(result.entries, result.blocks) == []
