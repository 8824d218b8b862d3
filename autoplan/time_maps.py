"""
time_maps.py — Time Map Registry

A time map is a weekly template of working windows. Each task is eligible for
one or more maps:

  1. project → map assignment
  2. tag → map assignment(s), one per mapped tag (real or inherited)
  3. otherwise the configured default map

When the default map id is not configured, it is synthesized from the legacy
single-window settings (workday_start_hour, workday_hours, skip_days).

Available minutes for (map, day) = window width − minutes of fixed tasks
(do-not-reschedule / calendar-imported) whose [due_with_time, +estimate)
overlaps that day's window.
"""

import logging
import math
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Set

from autoplan.config import PlannerConfig
from autoplan.models import MS_PER_MINUTE, Block, DayWindow, Task, TimeMap

logger = logging.getLogger(__name__)

ICAL_ISSUE_TYPE = "ICAL"


def create_time_map_from_legacy(config: PlannerConfig, map_id: Optional[str] = None) -> TimeMap:
    start = config.workday_start_hour
    end = start + config.workday_hours
    skip = set(config.skip_days)
    days = tuple(None if weekday in skip else DayWindow(start, end) for weekday in range(7))
    return TimeMap(id=map_id or config.default_time_map, name="Default", days=days)


def resolve_time_maps(config: PlannerConfig) -> Dict[str, TimeMap]:
    maps = dict(config.time_maps)
    if config.default_time_map not in maps:
        maps[config.default_time_map] = create_time_map_from_legacy(config)
    return maps


def get_time_map_ids_for_task(task: Task, config: PlannerConfig, tag_ids: Optional[Iterable[str]] = None) -> List[str]:
    """Explicitly assigned map ids (project first, then tags). Empty → default applies."""
    ids: List[str] = []
    if task.project_id and config.project_time_maps.get(task.project_id):
        ids.append(config.project_time_maps[task.project_id])
    for tag_id in (task.tag_ids if tag_ids is None else tag_ids):
        map_id = config.tag_time_maps.get(tag_id)
        if map_id and map_id not in ids:
            ids.append(map_id)
    return ids


def is_fixed_task(task: Task, config: PlannerConfig) -> bool:
    """Tasks the planner never moves: tagged do-not-reschedule, or calendar imports."""
    if config.do_not_reschedule_tag_id and config.do_not_reschedule_tag_id in task.tag_ids:
        return True
    return config.treat_ical_as_fixed and task.issue_type == ICAL_ISSUE_TYPE


def _window_bounds(day: date, window: DayWindow):
    midnight = datetime.combine(day, time())
    return (
        midnight + timedelta(minutes=window.start_hour * 60),
        midnight + timedelta(minutes=window.end_hour * 60),
    )


def calculate_fixed_minutes(
    fixed_tasks: Iterable[Task],
    time_maps: Dict[str, TimeMap],
) -> Dict[str, Dict[date, int]]:
    """
    {map_id: {day: minutes}} occupied by fixed tasks inside each map's window.

    A fixed task spanning midnight is counted on every day it touches.
    """
    fixed: Dict[str, Dict[date, int]] = {map_id: defaultdict(int) for map_id in time_maps}

    for task in fixed_tasks:
        if task.due_with_time is None or task.time_estimate <= 0:
            continue
        event_start = task.due_with_time
        event_end = event_start + timedelta(milliseconds=task.time_estimate)

        day = event_start.date()
        while day <= event_end.date():
            for map_id, time_map in time_maps.items():
                window = time_map.window(day)
                if window is None:
                    continue
                work_start, work_end = _window_bounds(day, window)
                overlap_start = max(event_start, work_start)
                overlap_end = min(event_end, work_end)
                if overlap_end > overlap_start:
                    minutes = math.ceil((overlap_end - overlap_start).total_seconds() * 1000 / MS_PER_MINUTE)
                    fixed[map_id][day] += minutes
            day += timedelta(days=1)

    return {map_id: dict(per_day) for map_id, per_day in fixed.items()}


class TimeMapRegistry:
    """Resolved maps plus fixed-task load for one scheduling run."""

    def __init__(self, config: PlannerConfig, fixed_tasks: Iterable[Task] = ()):
        self.config = config
        self.maps = resolve_time_maps(config)
        self.default_id = config.default_time_map
        self.fixed_minutes = calculate_fixed_minutes(fixed_tasks, self.maps)
        self._warned: Set[str] = set()

    def map_ids(self) -> List[str]:
        return list(self.maps)

    def maps_for_block(self, block: Block) -> List[str]:
        requested = get_time_map_ids_for_task(block.task, self.config, block.tag_ids)
        known = []
        for map_id in requested:
            if map_id in self.maps:
                known.append(map_id)
            elif map_id not in self._warned:
                self._warned.add(map_id)
                logger.warning(f"Time map '{map_id}' is assigned but not configured — ignored")
        return known or [self.default_id]

    def window(self, map_id: str, day: date) -> Optional[DayWindow]:
        return self.maps[map_id].window(day)

    def window_start(self, map_id: str, day: date) -> Optional[datetime]:
        window = self.window(map_id, day)
        if window is None:
            return None
        return _window_bounds(day, window)[0]

    def available_minutes(self, map_id: str, day: date) -> float:
        window = self.window(map_id, day)
        if window is None:
            return 0.0
        fixed = self.fixed_minutes.get(map_id, {}).get(day, 0)
        return max(0.0, window.width_minutes - fixed)

    def elapsed_minutes(self, map_id: str, now: datetime) -> float:
        """Minutes of today's window already behind `now` (0 before start, full width after end)."""
        window = self.window(map_id, now.date())
        if window is None:
            return 0.0
        start, end = _window_bounds(now.date(), window)
        if now <= start:
            return 0.0
        if now >= end:
            return window.width_minutes
        return float((now - start).total_seconds() // 60)
