"""
config.py — Configuration Module for the AutoPlan scheduling engine

Holds the PlannerConfig value threaded through every scheduling function,
the closed formula variants per urgency axis, and loaders for the persisted
config blob and task snapshots (JSON or CSV).

Config blobs written by the host use camelCase keys (blockSizeMinutes,
tagTimeMaps, ...); snake_case is accepted too. Invalid values never abort
a run: they fall back to the defaults below with a warning.
"""

import json
import logging
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from autoplan.models import Project, Tag, Task, TimeMap

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "autoplan_config.json"
DEFAULT_TASKS_PATH = DEFAULT_CONFIG_DIR / "sample_tasks.json"

DEFAULT_BLOCK_SIZE_MINUTES = 120
DEFAULT_MINIMUM_BLOCK_SIZE_MINUTES = 30
DEFAULT_DEADLINE_WEIGHT = 12.0
DEFAULT_URGENCY_WEIGHT = 1.0
DEFAULT_TIME_MAP_ID = "default"


# ---------------------------------------------------------------------------
# Formula variants
# ---------------------------------------------------------------------------

class _Formula(Enum):

    @classmethod
    def parse(cls, value: Any, default: "_Formula") -> "_Formula":
        """
        Missing → default. Unrecognized legacy strings → LINEAR, which is what
        older configs silently ran with.
        """
        if value is None or value == "":
            return default
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown {cls.__name__} {value!r} — using 'linear'")
            return cls("linear")


class DurationFormula(_Formula):
    LINEAR = "linear"
    INVERSE = "inverse"
    LOG = "log"
    NONE = "none"


class OldnessFormula(_Formula):
    LINEAR = "linear"
    LOG = "log"
    EXPONENTIAL = "exponential"
    NONE = "none"


class DeadlineFormula(_Formula):
    LINEAR = "linear"
    AGGRESSIVE = "aggressive"
    NONE = "none"


# ---------------------------------------------------------------------------
# PlannerConfig
# ---------------------------------------------------------------------------

@dataclass
class PlannerConfig:
    block_size_minutes: int = DEFAULT_BLOCK_SIZE_MINUTES
    minimum_block_size_minutes: int = DEFAULT_MINIMUM_BLOCK_SIZE_MINUTES
    tag_priorities: Dict[str, float] = field(default_factory=dict)        # tag title → boost
    project_priorities: Dict[str, float] = field(default_factory=dict)    # project title → boost
    duration_formula: DurationFormula = DurationFormula.LINEAR
    duration_weight: float = 1.0
    oldness_formula: OldnessFormula = OldnessFormula.LINEAR
    oldness_weight: float = 1.0
    deadline_formula: DeadlineFormula = DeadlineFormula.LINEAR
    deadline_weight: float = DEFAULT_DEADLINE_WEIGHT
    urgency_weight: float = DEFAULT_URGENCY_WEIGHT
    auto_adjust_urgency: bool = True
    max_days_ahead: int = 30
    split_prefix: str = ""
    split_suffix: bool = True
    # Legacy single window, used only when no time map is configured
    workday_start_hour: float = 9
    workday_hours: float = 8
    skip_days: List[int] = field(default_factory=lambda: [5, 6])   # Sat, Sun
    time_maps: Dict[str, TimeMap] = field(default_factory=dict)
    project_time_maps: Dict[str, str] = field(default_factory=dict)  # project id → map id
    tag_time_maps: Dict[str, str] = field(default_factory=dict)      # tag id → map id
    default_time_map: str = DEFAULT_TIME_MAP_ID
    do_not_reschedule_tag_id: Optional[str] = None
    treat_ical_as_fixed: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PlannerConfig":
        """Merge a persisted blob over the defaults."""
        data = data or {}
        defaults = cls()
        raw: Dict[str, Any] = {}
        for f in fields(cls):
            camel = _snake_to_camel(f.name)
            if f.name in data:
                raw[f.name] = data[f.name]
            elif camel in data:
                raw[f.name] = data[camel]

        cfg = cls()
        cfg.block_size_minutes = _positive_int(raw.get("block_size_minutes"), defaults.block_size_minutes, "blockSizeMinutes")
        cfg.minimum_block_size_minutes = _positive_int(
            raw.get("minimum_block_size_minutes"), defaults.minimum_block_size_minutes, "minimumBlockSizeMinutes"
        )
        cfg.tag_priorities = _boost_map(raw.get("tag_priorities"))
        cfg.project_priorities = _boost_map(raw.get("project_priorities"))
        cfg.duration_formula = DurationFormula.parse(raw.get("duration_formula"), defaults.duration_formula)
        cfg.oldness_formula = OldnessFormula.parse(raw.get("oldness_formula"), defaults.oldness_formula)
        cfg.deadline_formula = DeadlineFormula.parse(raw.get("deadline_formula"), defaults.deadline_formula)
        for name in ("duration_weight", "oldness_weight", "deadline_weight", "urgency_weight",
                     "workday_start_hour", "workday_hours"):
            setattr(cfg, name, _as_float(raw.get(name), getattr(defaults, name), name))
        cfg.max_days_ahead = _positive_int(raw.get("max_days_ahead"), defaults.max_days_ahead, "maxDaysAhead")
        cfg.auto_adjust_urgency = _parse_yes_no(raw.get("auto_adjust_urgency", defaults.auto_adjust_urgency))
        cfg.split_suffix = _parse_yes_no(raw.get("split_suffix", defaults.split_suffix))
        cfg.treat_ical_as_fixed = _parse_yes_no(raw.get("treat_ical_as_fixed", defaults.treat_ical_as_fixed))
        cfg.split_prefix = str(raw.get("split_prefix") or "")

        skip_days = raw.get("skip_days")
        if isinstance(skip_days, (list, tuple)):
            cfg.skip_days = [int(d) for d in skip_days if str(d).strip().lstrip("-").isdigit() and 0 <= int(d) <= 6]

        raw_maps = raw.get("time_maps") or {}
        if isinstance(raw_maps, dict):
            cfg.time_maps = {
                str(map_id): (m if isinstance(m, TimeMap) else TimeMap.from_dict(str(map_id), m or {}))
                for map_id, m in raw_maps.items()
            }
        cfg.project_time_maps = {str(k): str(v) for k, v in dict(raw.get("project_time_maps") or {}).items() if v}
        cfg.tag_time_maps = {str(k): str(v) for k, v in dict(raw.get("tag_time_maps") or {}).items() if v}
        cfg.default_time_map = str(raw.get("default_time_map") or DEFAULT_TIME_MAP_ID)
        tag_id = raw.get("do_not_reschedule_tag_id")
        cfg.do_not_reschedule_tag_id = str(tag_id) if tag_id else None
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        """camelCase blob, the format the host persists."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif f.name == "time_maps":
                value = {k: m.to_dict() for k, m in value.items()}
            out[_snake_to_camel(f.name)] = value
        return out


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _snake_to_camel(name: str) -> str:
    return re.sub(r"_([a-z])", lambda m: m.group(1).upper(), name)


def _parse_yes_no(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "true", "1", "y")


def _as_float(value: Any, default: float, name: str) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Config {name}={value!r} is not a number — using {default}")
        return default


def _positive_int(value: Any, default: int, name: str) -> int:
    if value is None:
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        number = 0
    if number <= 0:
        logger.warning(f"Config {name}={value!r} must be positive — using {default}")
        return default
    return number


def _boost_map(raw: Any) -> Dict[str, float]:
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, float] = {}
    for name, boost in raw.items():
        try:
            out[str(name)] = float(boost)
        except (TypeError, ValueError):
            out[str(name)] = 0.0
    return out


# ---------------------------------------------------------------------------
# Config blob
# ---------------------------------------------------------------------------

def load_config(config_path: Optional[Path] = None) -> PlannerConfig:
    """Load the JSON config blob. Returns defaults if file missing."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        logger.warning(f"Config not found: {path}. Using defaults.")
        return PlannerConfig()
    with open(path) as f:
        data = json.load(f)
    config = PlannerConfig.from_dict(data)
    logger.info(f"Loaded config from {path}: {len(config.time_maps)} time maps")
    return config


def save_config(config: PlannerConfig, config_path: Optional[Path] = None) -> None:
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
    logger.info(f"Config saved to {path}")


# ---------------------------------------------------------------------------
# Task snapshot
# ---------------------------------------------------------------------------

@dataclass
class TaskSnapshot:
    tasks: List[Task] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)


def load_tasks(tasks_path: Optional[Path] = None) -> TaskSnapshot:
    """
    Load a host snapshot.

    JSON: either a list of task records, or
          {"tasks": [...], "tags": [{id,title}], "projects": [{id,title}]}.
    CSV:  one row per task. Columns:
          id, title, estimate_hours, spent_hours, project_id, tag_ids (semicolon-sep),
          parent_id, created, is_done, notes, due_date, due_with_time
    """
    path = Path(tasks_path) if tasks_path else DEFAULT_TASKS_PATH
    if not path.exists():
        raise FileNotFoundError(f"Task snapshot not found: {path}")

    if path.suffix.lower() == ".csv":
        snapshot = TaskSnapshot(tasks=_load_tasks_csv(path))
    else:
        with open(path) as f:
            data = json.load(f)
        if isinstance(data, list):
            data = {"tasks": data}
        snapshot = TaskSnapshot(
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            tags=[Tag(str(t["id"]), str(t.get("title") or t["id"])) for t in data.get("tags", [])],
            projects=[Project(str(p["id"]), str(p.get("title") or p["id"])) for p in data.get("projects", [])],
        )

    logger.info(
        f"Loaded {len(snapshot.tasks)} tasks, {len(snapshot.tags)} tags, "
        f"{len(snapshot.projects)} projects from {path}"
    )
    return snapshot


def _load_tasks_csv(path: Path) -> List[Task]:
    import pandas as pd

    df = pd.read_csv(path, dtype={"id": str, "project_id": str, "parent_id": str, "tag_ids": str})
    df = df.astype(object).where(pd.notna(df), None)

    tasks: List[Task] = []
    for _, row in df.iterrows():
        record = {
            "id": row["id"],
            "title": row.get("title"),
            "time_estimate": float(row.get("estimate_hours") or 0) * 3600 * 1000,
            "time_spent": float(row.get("spent_hours") or 0) * 3600 * 1000,
            "project_id": row.get("project_id"),
            "tag_ids": row.get("tag_ids"),
            "parent_id": row.get("parent_id"),
            "created": row.get("created"),
            "is_done": _parse_yes_no(row.get("is_done") or False),
            "notes": row.get("notes"),
            "due_date": row.get("due_date"),
            "due_with_time": row.get("due_with_time"),
        }
        tasks.append(Task.from_dict(record))
    return tasks


# ---------------------------------------------------------------------------
# Quick validation on import
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cfg = load_config()
    print(json.dumps(cfg.to_dict(), indent=2))
