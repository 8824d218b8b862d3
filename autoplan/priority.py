"""
priority.py — Urgency model

urgency(task, now) = (tag + project + duration + oldness) × urgency_weight + deadline

  tag       sum of configured boosts over the task's effective tag titles
  project   configured boost for the task's project title
  duration  f(remaining hours):  linear h | inverse 1/(h+1) | log ln(h+1) | none
  oldness   f(age in days):      linear d | log ln(d+1) | exponential 1.1^min(d,100) | none
  deadline  factor(days until due) × deadline_weight, factor ∈ [0.2, 1.0]

Deadline stays outside urgency_weight so the auto-adjust loop can shift
emphasis toward deadlines without touching the deadline curve itself.
All functions are pure: same task, config and `now` → same score.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional

from autoplan.config import DeadlineFormula, DurationFormula, OldnessFormula, PlannerConfig
from autoplan.models import MS_PER_DAY, Project, Tag, Task, TaskIndex
from autoplan.notes import end_of_day_if_midnight, parse_deadline_from_notes

OLDNESS_EXPONENTIAL_BASE = 1.1
OLDNESS_EXPONENTIAL_CAP_DAYS = 100
DEADLINE_OVERDUE_THRESHOLD_DAYS = 7
DEADLINE_LINEAR_RANGE_DAYS = 21
DEADLINE_MIN_FACTOR = 0.2
DEADLINE_MAX_FACTOR = 1.0


@dataclass
class UrgencyScore:
    total: float
    components: Dict[str, float] = field(default_factory=dict)


class PriorityContext:
    """Per-run lookups: parent index plus tag/project id → title."""

    def __init__(self, index: TaskIndex, tag_titles: Dict[str, str], project_titles: Dict[str, str]):
        self.index = index
        self.tag_titles = tag_titles
        self.project_titles = project_titles

    @classmethod
    def build(
        cls,
        tasks: Iterable[Task],
        tags: Iterable[Tag] = (),
        projects: Iterable[Project] = (),
    ) -> "PriorityContext":
        return cls(
            TaskIndex(tasks),
            {t.id: t.title for t in tags},
            {p.id: p.title for p in projects},
        )


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------

def resolve_due_date(task: Task) -> Optional[datetime]:
    """
    Deadline from the notes first, then the all-day due_date field.
    due_with_time is never a deadline: the planner writes it as the start time.
    """
    from_notes = parse_deadline_from_notes(task.notes)
    if from_notes is not None:
        return from_notes
    if task.due_date is not None:
        return end_of_day_if_midnight(task.due_date)
    return None


def deadline_factor(days_until_due: float, formula: DeadlineFormula) -> float:
    threshold = DEADLINE_OVERDUE_THRESHOLD_DAYS
    u = days_until_due

    if formula == DeadlineFormula.NONE:
        return 0.0

    if formula == DeadlineFormula.AGGRESSIVE:
        if u <= -threshold:
            return 1.0
        if u <= 0:
            return 0.9 + (-u / threshold) * 0.1
        if u <= threshold:
            return 0.9 - (u / threshold) * 0.4
        if u <= threshold * 2:
            return 0.5 - ((u - threshold) / threshold) * 0.3
        return DEADLINE_MIN_FACTOR

    # LINEAR: [-7, 14] days → [1.0, 0.2]
    if u <= -threshold:
        return DEADLINE_MAX_FACTOR
    if u >= threshold * 2:
        return DEADLINE_MIN_FACTOR
    return 1.0 - ((u + threshold) / DEADLINE_LINEAR_RANGE_DAYS) * 0.8


def deadline_priority(task: Task, formula: DeadlineFormula, weight: float, now: datetime) -> float:
    if formula == DeadlineFormula.NONE or weight <= 0:
        return 0.0
    due = resolve_due_date(task)
    if due is None:
        return 0.0
    days_until_due = (due - now).total_seconds() * 1000 / MS_PER_DAY
    return deadline_factor(days_until_due, formula) * weight


# ---------------------------------------------------------------------------
# Other components
# ---------------------------------------------------------------------------

def tag_priority(task: Task, tag_priorities: Dict[str, float], context: PriorityContext) -> float:
    if not tag_priorities:
        return 0.0
    boost = 0.0
    for tag_id in context.index.effective_tag_ids(task):
        title = context.tag_titles.get(tag_id)
        if title is not None and title in tag_priorities:
            boost += tag_priorities[title]
    return boost


def project_priority(task: Task, project_priorities: Dict[str, float], context: PriorityContext) -> float:
    if not task.project_id or not project_priorities:
        return 0.0
    title = context.project_titles.get(task.project_id)
    if title is None:
        return 0.0
    return project_priorities.get(title, 0.0)


def duration_priority(remaining_hours: float, formula: DurationFormula, weight: float) -> float:
    if remaining_hours <= 0 or weight <= 0 or formula == DurationFormula.NONE:
        return 0.0
    if formula == DurationFormula.INVERSE:
        factor = 1.0 / (remaining_hours + 1)
    elif formula == DurationFormula.LOG:
        factor = math.log(remaining_hours + 1)
    else:
        factor = remaining_hours
    return factor * weight


def oldness_priority(age_days: float, formula: OldnessFormula, weight: float) -> float:
    if age_days <= 0 or weight <= 0 or formula == OldnessFormula.NONE:
        return 0.0
    if formula == OldnessFormula.EXPONENTIAL:
        factor = OLDNESS_EXPONENTIAL_BASE ** min(age_days, OLDNESS_EXPONENTIAL_CAP_DAYS)
    elif formula == OldnessFormula.LOG:
        factor = math.log(age_days + 1)
    else:
        factor = age_days
    return factor * weight


# ---------------------------------------------------------------------------
# Total
# ---------------------------------------------------------------------------

def calculate_urgency(
    task: Task,
    config: PlannerConfig,
    context: PriorityContext,
    now: datetime,
    remaining_hours: Optional[float] = None,
) -> UrgencyScore:
    """
    Score one task at simulated time `now`.

    `remaining_hours` overrides the task's own estimate − spent; the scheduler
    passes the sum over all still-unscheduled blocks of the task.
    Components are reported after weighting, so they sum to the total.
    """
    hours = task.remaining_hours if remaining_hours is None else remaining_hours
    weight = config.urgency_weight

    tag = tag_priority(task, config.tag_priorities, context)
    project = project_priority(task, config.project_priorities, context)
    duration = duration_priority(hours, config.duration_formula, config.duration_weight)
    oldness = oldness_priority(task.age_in_days(now), config.oldness_formula, config.oldness_weight)
    deadline = deadline_priority(task, config.deadline_formula, config.deadline_weight, now)

    components = {
        "tag": tag * weight,
        "project": project * weight,
        "duration": duration * weight,
        "oldness": oldness * weight,
        "deadline": deadline,
    }
    return UrgencyScore(total=(tag + project + duration + oldness) * weight + deadline, components=components)
