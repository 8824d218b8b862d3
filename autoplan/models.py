"""
models.py — Data model for the AutoPlan scheduling engine

Host-owned records:
  - Task:     one task from the host store (estimate/spent in milliseconds)
  - Tag:      {id, title}
  - Project:  {id, title}

Capacity templates:
  - DayWindow: {start_hour, end_hour} working window for one weekday
  - TimeMap:   7-slot weekly template (Monday=0 … Sunday=6, None = non-working)

Per-run, core-internal records (never persisted by the core):
  - Block:          one schedulable unit of a task's estimated work
  - ScheduleEntry:  a Block placed at concrete start/end times
  - DeadlineMiss:   report for a task that cannot be confirmed before its deadline

TaskIndex precomputes the parent index once per run so tag inheritance walks
the ancestor chain by dict lookup instead of scanning the task list.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

BlockKey = Tuple[str, int]   # (task_id, split_index)


# ---------------------------------------------------------------------------
# Field coercion helpers (host records arrive as loosely-typed JSON)
# ---------------------------------------------------------------------------

def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data and data[snake] is not None:
        return data[snake]
    if camel in data and data[camel] is not None:
        return data[camel]
    return default


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a host timestamp to a naive local datetime.

    Accepts datetime, date, epoch milliseconds (int/float) and ISO strings.
    Timezone-aware values are converted to local wall-clock time.
    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and value != value:   # NaN from pandas
            return None
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable timestamp {value!r} — ignored")
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def _to_ms(value: Any) -> int:
    try:
        ms = int(float(value or 0))
    except (TypeError, ValueError):
        return 0
    return max(ms, 0)


def _id_list(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(";") if p.strip()]
    return [str(t) for t in raw]


# ---------------------------------------------------------------------------
# Host records
# ---------------------------------------------------------------------------

@dataclass
class Task:
    id: str
    title: str = ""
    time_estimate: int = 0                  # ms
    time_spent: int = 0                     # ms
    time_spent_on_day: Dict[str, int] = field(default_factory=dict)
    project_id: Optional[str] = None
    tag_ids: List[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    created: Optional[datetime] = None
    is_done: bool = False
    notes: str = ""
    due_date: Optional[datetime] = None     # all-day due date (deadline semantics)
    due_with_time: Optional[datetime] = None  # scheduled start (planning semantics)
    issue_type: Optional[str] = None        # "ICAL" for calendar-imported tasks

    @property
    def estimated_minutes(self) -> float:
        return self.time_estimate / MS_PER_MINUTE

    @property
    def remaining_minutes(self) -> float:
        return max(0.0, (self.time_estimate - self.time_spent) / MS_PER_MINUTE)

    @property
    def remaining_hours(self) -> float:
        return self.remaining_minutes / 60.0

    def age_in_days(self, now: datetime) -> float:
        if self.created is None:
            return 0.0
        return abs((now - self.created).total_seconds()) / 86400.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        ledger = _pick(data, "time_spent_on_day", "timeSpentOnDay", {}) or {}
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            time_estimate=_to_ms(_pick(data, "time_estimate", "timeEstimate", 0)),
            time_spent=_to_ms(_pick(data, "time_spent", "timeSpent", 0)),
            time_spent_on_day={str(k): _to_ms(v) for k, v in dict(ledger).items()},
            project_id=_pick(data, "project_id", "projectId"),
            tag_ids=_id_list(_pick(data, "tag_ids", "tagIds", [])),
            parent_id=_pick(data, "parent_id", "parentId"),
            created=to_datetime(data.get("created")),
            is_done=bool(_pick(data, "is_done", "isDone", False)),
            notes=str(data.get("notes") or ""),
            due_date=to_datetime(_pick(data, "due_date", "dueDate")),
            due_with_time=to_datetime(_pick(data, "due_with_time", "dueWithTime")),
            issue_type=_pick(data, "issue_type", "issueType"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in the host's camelCase record format."""
        def _iso(dt: Optional[datetime]) -> Optional[str]:
            return dt.isoformat() if dt else None

        return {
            "id": self.id,
            "title": self.title,
            "timeEstimate": self.time_estimate,
            "timeSpent": self.time_spent,
            "timeSpentOnDay": dict(self.time_spent_on_day),
            "projectId": self.project_id,
            "tagIds": list(self.tag_ids),
            "parentId": self.parent_id,
            "created": _iso(self.created),
            "isDone": self.is_done,
            "notes": self.notes,
            "dueDate": _iso(self.due_date),
            "dueWithTime": _iso(self.due_with_time),
            "issueType": self.issue_type,
        }


@dataclass(frozen=True)
class Tag:
    id: str
    title: str


@dataclass(frozen=True)
class Project:
    id: str
    title: str


# ---------------------------------------------------------------------------
# Time maps
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DayWindow:
    start_hour: float
    end_hour: float

    @property
    def width_minutes(self) -> float:
        return max(0.0, (self.end_hour - self.start_hour) * 60.0)


@dataclass(frozen=True)
class TimeMap:
    """Weekly capacity template. days[weekday] is a DayWindow or None."""
    id: str
    name: str
    days: Tuple[Optional[DayWindow], ...]

    def window(self, day: date) -> Optional[DayWindow]:
        return self.days[day.weekday()]

    @classmethod
    def from_dict(cls, map_id: str, data: Dict[str, Any]) -> "TimeMap":
        """
        Build from a config blob:
          {"name": "Work", "days": {"0": {"startHour": 9, "endHour": 17}, "5": null, ...}}
        "days" may also be a 7-item list. Missing weekdays are non-working.
        """
        raw_days = data.get("days") or {}
        if isinstance(raw_days, (list, tuple)):
            raw_days = {i: v for i, v in enumerate(raw_days)}

        days: List[Optional[DayWindow]] = []
        for weekday in range(7):
            slot = raw_days.get(weekday, raw_days.get(str(weekday)))
            if not slot:
                days.append(None)
                continue
            try:
                start = float(_pick(slot, "start_hour", "startHour"))
                end = float(_pick(slot, "end_hour", "endHour"))
            except (TypeError, ValueError):
                logger.warning(f"Time map '{map_id}': bad window for weekday {weekday} — treated as non-working")
                days.append(None)
                continue
            days.append(DayWindow(start, end) if end > start else None)
        return cls(id=map_id, name=str(data.get("name") or map_id), days=tuple(days))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "days": {
                str(i): ({"startHour": w.start_hour, "endHour": w.end_hour} if w else None)
                for i, w in enumerate(self.days)
            },
        }


# ---------------------------------------------------------------------------
# Core-internal records
# ---------------------------------------------------------------------------

@dataclass
class Block:
    task: Task
    split_index: int
    total_splits: int
    estimated_minutes: float
    title: str
    time_spent: int = 0                      # only the first block carries this
    time_spent_on_day: Dict[str, int] = field(default_factory=dict)
    real_tag_ids: List[str] = field(default_factory=list)
    virtual_tag_ids: List[str] = field(default_factory=list)
    prev_split_index: Optional[int] = None
    next_split_index: Optional[int] = None

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def key(self) -> BlockKey:
        return (self.task.id, self.split_index)

    @property
    def tag_ids(self) -> List[str]:
        """Real ∪ virtual tags, duplicates removed, real first."""
        return list(dict.fromkeys(self.real_tag_ids + self.virtual_tag_ids))

    @property
    def estimated_ms(self) -> int:
        return int(round(self.estimated_minutes * MS_PER_MINUTE))


@dataclass
class ScheduleEntry:
    block: Block
    start: datetime
    end: datetime
    urgency: float
    components: Dict[str, float]
    time_map_id: str

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


@dataclass
class DeadlineMiss:
    task_id: str
    task_title: str
    due_date: datetime
    scheduled_completion: Optional[datetime]
    unscheduled_blocks: int
    total_blocks: int
    missed_by_days: Optional[int] = None

    def __str__(self) -> str:
        done = self.scheduled_completion.strftime("%Y-%m-%d %H:%M") if self.scheduled_completion else "never"
        parts = [
            f"[DEADLINE] {self.task_title}",
            f"due={self.due_date:%Y-%m-%d %H:%M}",
            f"done={done}",
        ]
        if self.unscheduled_blocks:
            parts.append(f"unscheduled={self.unscheduled_blocks}/{self.total_blocks}")
        if self.missed_by_days is not None:
            parts.append(f"late by {self.missed_by_days}d")
        return " | ".join(parts)


# ---------------------------------------------------------------------------
# Parent index / tag inheritance
# ---------------------------------------------------------------------------

class TaskIndex:
    """id → Task lookup built once per run over the full task snapshot."""

    def __init__(self, tasks: Iterable[Task]):
        self._by_id: Dict[str, Task] = {t.id: t for t in tasks}

    def get(self, task_id: Optional[str]) -> Optional[Task]:
        if task_id is None:
            return None
        return self._by_id.get(task_id)

    def real_tag_ids(self, task: Task) -> List[str]:
        return list(dict.fromkeys(task.tag_ids))

    def virtual_tag_ids(self, task: Task) -> List[str]:
        """Tags inherited from the ancestor chain (nearest parent first)."""
        inherited: List[str] = []
        seen: Set[str] = {task.id}
        parent = self.get(task.parent_id)
        while parent is not None and parent.id not in seen:
            seen.add(parent.id)
            inherited.extend(parent.tag_ids)
            parent = self.get(parent.parent_id)
        return list(dict.fromkeys(inherited))

    def effective_tag_ids(self, task: Task) -> List[str]:
        return list(dict.fromkeys(self.real_tag_ids(task) + self.virtual_tag_ids(task)))
