"""
dry_run.py — Safe Schedule Preview (no host writes)

Full orchestration:
  1. Load config blob and task snapshot (JSON or CSV)
  2. Validate inputs (duplicate ids, unknown time-map references)
  3. Merge previous splits, split, schedule with auto-adjust
  4. Check deadlines and capacity
  5. Export CSV, Excel, deadline report (and the post-apply snapshot with
     --apply-preview)
  6. Print summary to console

Usage:
  python -m autoplan.dry_run --tasks config/sample_tasks.json
  python -m autoplan.dry_run --tasks tasks.csv --start "2026-03-02 09:00" --visual
"""

import argparse
import json
import logging
import sys
from collections import Counter, defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from autoplan.config import PlannerConfig, TaskSnapshot, load_config, load_tasks
from autoplan.exporter import (
    calculate_capacity_metrics,
    export_deadline_report,
    export_to_csv,
    export_to_excel,
)
from autoplan.host import InMemoryTaskStore, PlanResult, run_autoplan

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

OUTPUTS_DIR = PROJECT_ROOT / "outputs"


# ---------------------------------------------------------------------------
# Visual analysis (matplotlib)
# ---------------------------------------------------------------------------

def _generate_visual_analysis(capacity: Dict[str, Any], output_dir: Path, prefix: str) -> None:
    """Stacked bar chart of scheduled minutes per day and time map, with capacity markers."""
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        logger.warning("matplotlib not installed — skip visual analysis. Install with: pip install matplotlib")
        return

    per_day = capacity.get("per_day", {})
    if not per_day:
        return

    days = sorted(per_day)
    map_ids = sorted({m for maps in per_day.values() for m in maps})
    x = range(len(days))

    fig, ax = plt.subplots(figsize=(13, 5))
    bottom = [0.0] * len(days)
    for map_id in map_ids:
        hours = [per_day[d].get(map_id, {}).get("scheduled", 0) / 60 for d in days]
        ax.bar(x, hours, bottom=bottom, alpha=0.85, width=0.65, label=map_id)
        bottom = [b + h for b, h in zip(bottom, hours)]

    available = [sum(row["available"] for row in per_day[d].values()) / 60 for d in days]
    ax.plot(list(x), available, color="crimson", linewidth=1.5, linestyle="--", marker="_", label="Available")
    ax.set_xticks(list(x))
    ax.set_xticklabels(days, rotation=40, ha="right", fontsize=9)
    ax.set_ylabel("Hours")
    ax.set_title(
        f"Daily Load by Time Map (dry_run)\nUtilisation = {capacity.get('utilization', 0):.1f}%",
        fontsize=13, fontweight="bold",
    )
    ax.legend()
    ax.grid(axis="y", alpha=0.3)
    fig.tight_layout()
    fig.savefig(output_dir / f"{prefix}_daily_load.png", dpi=150)
    plt.close(fig)
    print(f"  ✓ Visual  → {prefix}_daily_load.png")


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def validate_inputs(snapshot: TaskSnapshot, config: PlannerConfig) -> List[str]:
    """Problems worth a warning; none of them stop the run."""
    warnings: List[str] = []

    id_counts = Counter(t.id for t in snapshot.tasks)
    for task_id, count in id_counts.items():
        if count > 1:
            warnings.append(f"Duplicate task id '{task_id}' ({count} records)")

    known_maps = set(config.time_maps) | {config.default_time_map}
    for source, mapping in (("project", config.project_time_maps), ("tag", config.tag_time_maps)):
        for key, map_id in mapping.items():
            if map_id not in known_maps:
                warnings.append(f"{source} '{key}' → unknown time map '{map_id}' (falls back to default)")

    ids = set(id_counts)
    for task in snapshot.tasks:
        if task.parent_id and task.parent_id not in ids:
            warnings.append(f"Task '{task.id}' has unknown parent '{task.parent_id}'")

    return warnings


# ---------------------------------------------------------------------------
# Main orchestrator
# ---------------------------------------------------------------------------

def run_dry_run(
    tasks_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    start: Optional[datetime] = None,
    output_dir: Path = OUTPUTS_DIR,
    apply_preview: bool = False,
    visual: bool = False,
) -> Dict[str, Any]:
    """
    Plan a task snapshot without touching the real host.

    Args:
        tasks_path:    Snapshot file (.json or .csv)
        config_path:   Config blob (.json); defaults when missing
        start:         Simulated "now" (default: current minute)
        output_dir:    Directory for output files
        apply_preview: Also apply to the in-memory store and dump the result
        visual:        Write a matplotlib daily-load chart

    Returns:
        Dict with plan result, capacity metrics and output paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    start = start or datetime.now().replace(second=0, microsecond=0)
    prefix = f"dry_run_{start:%Y-%m-%d_%H%M}"
    sep = "=" * 70

    print(f"\n{sep}")
    print(f"  DRY RUN MODE — No changes written to the task store")
    print(f"  Start: {start:%Y-%m-%d %H:%M}")
    print(f"{sep}\n")

    # ── 1. Load configuration ──────────────────────────────────────────────
    print("Step 1/5: Loading configuration...")
    config = load_config(config_path)
    snapshot = load_tasks(tasks_path)
    print(
        f"  ✓ {len(snapshot.tasks)} tasks | {len(snapshot.tags)} tags | "
        f"{len(snapshot.projects)} projects | {len(config.time_maps) or 1} time maps"
    )

    # ── 2. Validate inputs ─────────────────────────────────────────────────
    print("\nStep 2/5: Validating inputs...")
    warnings = validate_inputs(snapshot, config)
    for w in warnings:
        print(f"  ⚠ WARNING: {w}")
    if not warnings:
        print("  ✓ Inputs valid")

    # ── 3. Plan ────────────────────────────────────────────────────────────
    print("\nStep 3/5: Splitting and scheduling...")
    store = InMemoryTaskStore(snapshot.tasks, snapshot.tags, snapshot.projects)
    plan: PlanResult = run_autoplan(store, config, now=start, dry_run=not apply_preview)
    schedule = plan.adjust.schedule
    print(
        f"  ✓ {len(plan.eligible_tasks)} eligible tasks → {len(schedule.blocks)} blocks | "
        f"{len(plan.fixed_tasks)} fixed | {len(plan.skipped_parents)} parents skipped"
    )
    print(f"  ✓ {len(plan.entries)} blocks scheduled, {len(plan.unscheduled)} unscheduled")

    # ── 4. Deadlines and capacity ──────────────────────────────────────────
    print("\nStep 4/5: Checking deadlines and capacity...")
    capacity = calculate_capacity_metrics(schedule)
    miss_count = len(plan.deadline_misses)
    status = "✓" if miss_count == 0 else "✗"
    print(f"  {status} Deadline misses: {miss_count}")
    for miss in plan.deadline_misses:
        print(f"    {miss}")
    print(
        f"    Weights: urgency={plan.adjust.final_urgency_weight:.1f} "
        f"deadline={plan.adjust.final_deadline_weight:.1f} (attempts: {plan.adjust.attempts})"
    )
    cap_icon = "✓" if not capacity["over_capacity"] else "✗"
    print(f"  {cap_icon} Capacity used: {capacity['total_scheduled']:.0f} / {capacity['total_available']:.0f} min")

    # ── 5. Export ──────────────────────────────────────────────────────────
    print("\nStep 5/5: Exporting outputs...")
    csv_path    = output_dir / f"{prefix}_schedule.csv"
    xlsx_path   = output_dir / f"{prefix}_schedule.xlsx"
    report_path = output_dir / f"{prefix}_deadline_report.txt"

    export_to_csv(plan.entries, csv_path)
    export_to_excel(
        plan.entries, xlsx_path, pivot=True,
        map_order=[config.default_time_map] + sorted(config.time_maps),
    )
    export_deadline_report(
        plan.deadline_misses, report_path,
        urgency_weight=plan.adjust.final_urgency_weight,
        deadline_weight=plan.adjust.final_deadline_weight,
        attempts=plan.adjust.attempts,
        capacity=capacity,
        unscheduled_titles=[b.title for b in plan.unscheduled],
    )
    outputs = {"csv": csv_path, "excel": xlsx_path, "report": report_path}

    if apply_preview:
        preview_path = output_dir / f"{prefix}_applied_tasks.json"
        with open(preview_path, "w") as f:
            json.dump({"tasks": [t.to_dict() for t in store.get_tasks()]}, f, indent=2)
        outputs["applied"] = preview_path
        print(f"  ✓ Applied:   {preview_path.name} ({len(plan.errors)} errors)")

    print(f"  ✓ CSV:       {csv_path.name}")
    print(f"  ✓ Excel:     {xlsx_path.name}")
    print(f"  ✓ Report:    {report_path.name}")

    # ── Summary ────────────────────────────────────────────────────────────
    print(f"\n{sep}")
    print("  SUMMARY")
    print(f"{sep}")
    if plan.entries:
        first = min(e.start for e in plan.entries)
        last = max(e.end for e in plan.entries)
        print(f"  Span:              {first:%Y-%m-%d %H:%M} → {last:%Y-%m-%d %H:%M}")
    print(f"  Blocks scheduled:  {len(plan.entries)}")
    print(f"  Unscheduled:       {len(plan.unscheduled)}")
    print(f"  Deadline misses:   {miss_count}  {status}")
    print(f"  Utilisation:       {capacity['utilization']:.1f}%")

    hours_by_task: Dict[str, float] = defaultdict(float)
    for entry in plan.entries:
        hours_by_task[entry.block.task.title] += entry.minutes / 60
    print(f"\n  Top 5 tasks by scheduled hours:")
    for title, hours in sorted(hours_by_task.items(), key=lambda x: x[1], reverse=True)[:5]:
        print(f"    {title[:40]:<40} {hours:5.1f}h")

    if visual:
        _generate_visual_analysis(capacity, output_dir, prefix)

    print(f"\n{sep}\n")

    return {
        "plan":     plan,
        "capacity": capacity,
        "warnings": warnings,
        "outputs":  outputs,
    }


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(
        description="Dry-run AutoPlan scheduling (no task store writes)"
    )
    parser.add_argument("--tasks",         default=None, help="Task snapshot .json/.csv (default: config/sample_tasks.json)")
    parser.add_argument("--config",        default=None, help="Config blob .json (default: config/autoplan_config.json)")
    parser.add_argument("--start",         default=None, help='Simulated now, "YYYY-MM-DD HH:MM" or YYYY-MM-DD')
    parser.add_argument("--output-dir",    default=None, help="Output directory (default: outputs/)")
    parser.add_argument("--apply-preview", action="store_true", help="Apply to an in-memory copy and dump the resulting tasks")
    parser.add_argument("--visual",        action="store_true", help="Generate matplotlib daily-load chart")
    args = parser.parse_args()

    start = None
    if args.start:
        try:
            start = datetime.strptime(args.start, "%Y-%m-%d %H:%M")
        except ValueError:
            try:
                start = datetime.strptime(args.start, "%Y-%m-%d").replace(hour=0, minute=0)
            except ValueError as e:
                print(f"Invalid start format: {e}")
                sys.exit(1)

    try:
        run_dry_run(
            tasks_path=Path(args.tasks) if args.tasks else None,
            config_path=Path(args.config) if args.config else None,
            start=start,
            output_dir=Path(args.output_dir) if args.output_dir else OUTPUTS_DIR,
            apply_preview=args.apply_preview,
            visual=args.visual,
        )
    except (FileNotFoundError, json.JSONDecodeError) as e:
        print(f"Error: cannot read input: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
