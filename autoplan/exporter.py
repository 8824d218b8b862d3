"""
exporter.py — Export Layer for AutoPlan schedules

Outputs:
  - CSV: one row per schedule entry (date, start, end, time map, block, urgency)
  - Excel (.xlsx): formatted date × time-map grid with block titles
  - Deadline report (.txt): misses, final weights, adjustment attempts, and
    per-day capacity utilisation

Usage:
  from autoplan.exporter import export_to_csv, export_to_excel, export_deadline_report
"""

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from autoplan.models import DeadlineMiss, ScheduleEntry
from autoplan.scheduler import ScheduleResult

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    "date", "start", "end", "time_map", "task_id", "title",
    "split", "minutes", "urgency", "deadline_urgency",
]


def _entry_row(entry: ScheduleEntry) -> Dict[str, Any]:
    block = entry.block
    return {
        "date": entry.start.strftime("%Y-%m-%d"),
        "start": entry.start.strftime("%H:%M"),
        "end": entry.end.strftime("%H:%M"),
        "time_map": entry.time_map_id,
        "task_id": block.task_id,
        "title": block.title,
        "split": f"{block.split_index + 1}/{block.total_splits}",
        "minutes": round(entry.minutes, 1),
        "urgency": round(entry.urgency, 3),
        "deadline_urgency": round(entry.components.get("deadline", 0.0), 3),
    }


# ---------------------------------------------------------------------------
# CSV Export
# ---------------------------------------------------------------------------

def export_to_csv(entries: List[ScheduleEntry], output_path: Path) -> None:
    """
    Export schedule to flat CSV, one row per placed block, in start order.

    Args:
        entries:     ScheduleEntry list from a scheduling run
        output_path: .csv file path
    """
    import csv
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for entry in sorted(entries, key=lambda e: (e.start, e.time_map_id)):
            writer.writerow(_entry_row(entry))

    logger.info(f"CSV exported → {output_path}")


# ---------------------------------------------------------------------------
# Excel Export
# ---------------------------------------------------------------------------

def export_to_excel(
    entries: List[ScheduleEntry],
    output_path: Path,
    pivot: bool = True,
    map_order: Optional[List[str]] = None,
) -> None:
    """
    Export schedule to formatted Excel grid.

    Pivot mode (default): rows=date, columns=time map,
    cells="HH:MM–HH:MM title" joined by newlines.
    Flat mode: the CSV columns.
    """
    import pandas as pd

    output_path.parent.mkdir(parents=True, exist_ok=True)

    rows = [_entry_row(e) for e in sorted(entries, key=lambda e: (e.start, e.time_map_id))]
    df = pd.DataFrame(rows, columns=CSV_FIELDS)
    if df.empty:
        df.to_excel(output_path, index=False)
        return

    if pivot:
        df["slot"] = df["start"] + "–" + df["end"] + " " + df["title"]
        grid = df.pivot_table(
            index="date",
            columns="time_map",
            values="slot",
            aggfunc=lambda x: "\n".join(x),
        ).fillna("")
        if map_order:
            available = [m for m in map_order if m in grid.columns]
            rest = [m for m in grid.columns if m not in map_order]
            grid = grid[available + rest]

        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            grid.to_excel(writer, sheet_name="Schedule")
            _format_excel_grid(writer, "Schedule")
            df.drop(columns=["slot"]).to_excel(writer, sheet_name="Entries", index=False)
            _format_excel_grid(writer, "Entries")
    else:
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Entries", index=False)
            _format_excel_grid(writer, "Entries")

    logger.info(f"Excel exported → {output_path}")


def _format_excel_grid(writer: Any, sheet_name: str) -> None:
    """Header fill, column widths, wrapped cells, alternate row shading."""
    try:
        from openpyxl.styles import Alignment, Font, PatternFill
        ws = writer.sheets[sheet_name]
        header_fill = PatternFill("solid", fgColor="1F4E79")
        header_font = Font(bold=True, color="FFFFFF")

        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center")

        for col in ws.columns:
            longest = max(
                (max(len(line) for line in str(c.value).split("\n")) for c in col if c.value),
                default=8,
            )
            ws.column_dimensions[col[0].column_letter].width = min(longest + 2, 45)

        alt = PatternFill("solid", fgColor="EBF3FB")
        for i, row in enumerate(ws.iter_rows(min_row=2), start=2):
            for cell in row:
                cell.alignment = Alignment(wrap_text=True, vertical="top")
                if i % 2 == 0:
                    cell.fill = alt

    except Exception as e:
        logger.warning(f"Excel formatting failed (non-critical): {e}")


# ---------------------------------------------------------------------------
# Capacity metrics
# ---------------------------------------------------------------------------

def calculate_capacity_metrics(result: ScheduleResult) -> Dict[str, Any]:
    """
    Scheduled vs available minutes per (day, time map).

    Returns:
        {
          "per_day": {date_str: {map_id: {"available", "scheduled", "utilization"}}},
          "total_available": float,
          "total_scheduled": float,
          "utilization": float,        # percent
          "over_capacity": [(date_str, map_id), ...],   # must stay empty
        }
    """
    scheduled: Dict[tuple, float] = defaultdict(float)
    for entry in result.entries:
        scheduled[(entry.start.date(), entry.time_map_id)] += entry.minutes

    per_day: Dict[str, Dict[str, Dict[str, float]]] = {}
    over: List[tuple] = []
    total_available = 0.0
    total_scheduled = 0.0

    days = sorted({d for d, _ in scheduled} | {d for _, d in result.used_minutes})
    registry = result.registry
    for day in days:
        day_key = day.strftime("%Y-%m-%d")
        map_ids = registry.map_ids() if registry else sorted({m for _, m in scheduled})
        for map_id in map_ids:
            available = registry.available_minutes(map_id, day) if registry else 0.0
            done = scheduled.get((day, map_id), 0.0)
            if available == 0 and done == 0:
                continue
            per_day.setdefault(day_key, {})[map_id] = {
                "available": available,
                "scheduled": round(done, 1),
                "utilization": round(done / available * 100, 1) if available else 0.0,
            }
            total_available += available
            total_scheduled += done
            if registry and done > available + 1e-6:
                over.append((day_key, map_id))

    return {
        "per_day": per_day,
        "total_available": total_available,
        "total_scheduled": round(total_scheduled, 1),
        "utilization": round(total_scheduled / total_available * 100, 1) if total_available else 0.0,
        "over_capacity": over,
    }


# ---------------------------------------------------------------------------
# Deadline Report
# ---------------------------------------------------------------------------

def export_deadline_report(
    misses: List[DeadlineMiss],
    output_path: Path,
    urgency_weight: float,
    deadline_weight: float,
    attempts: int = 0,
    capacity: Optional[Dict[str, Any]] = None,
    unscheduled_titles: Optional[List[str]] = None,
) -> str:
    """
    Export deadline audit report (text format).

    Includes:
      - Final urgency / deadline weights and auto-adjust attempts
      - One line per deadline miss (due, planned completion, lateness)
      - Blocks left unscheduled within the horizon
      - Per-day capacity utilisation, if `capacity` is given
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    sep = "=" * 70

    status = "✓ ALL DEADLINES MET" if not misses else f"✗ {len(misses)} DEADLINE MISS(ES)"
    lines = [
        sep,
        "  AUTOPLAN DEADLINE REPORT",
        sep,
        "",
        f"  Status:                {status}",
        f"  Final urgency weight:  {urgency_weight:.1f}",
        f"  Final deadline weight: {deadline_weight:.1f}",
        f"  Adjustment attempts:   {attempts}",
        "",
        "─" * 70,
        "  Deadline Misses",
        "─" * 70,
        f"  {'Task':<30} {'Due':>16} {'Completes':>16} {'Late':>6}",
    ]

    if misses:
        for miss in misses:
            done = miss.scheduled_completion.strftime("%Y-%m-%d %H:%M") if miss.scheduled_completion else "never"
            late = f"{miss.missed_by_days}d" if miss.missed_by_days is not None else "?"
            lines.append(f"  {miss.task_title[:30]:<30} {miss.due_date:%Y-%m-%d %H:%M} {done:>16} {late:>6}")
            if miss.unscheduled_blocks:
                lines.append(f"  {'':<30} {miss.unscheduled_blocks}/{miss.total_blocks} blocks unscheduled")
    else:
        lines.append("  (none)")

    lines += ["", "─" * 70, "  Unscheduled Blocks", "─" * 70]
    if unscheduled_titles:
        lines.extend(f"  {title}" for title in unscheduled_titles)
    else:
        lines.append("  (none)")

    if capacity:
        lines += [
            "",
            "─" * 70,
            f"  Capacity  {capacity['total_scheduled']:.0f} / {capacity['total_available']:.0f} min "
            f"({capacity['utilization']:.1f}%)",
            "─" * 70,
        ]
        for day_key, maps in sorted(capacity["per_day"].items()):
            for map_id, row in maps.items():
                lines.append(
                    f"  {day_key}  {map_id:<16} {row['scheduled']:>6.0f} / {row['available']:>4.0f} min "
                    f"({row['utilization']:5.1f}%)"
                )

    lines.append("")
    lines.append(sep)

    report_text = "\n".join(lines)
    with open(output_path, "w") as f:
        f.write(report_text)

    logger.info(f"Deadline report exported → {output_path}")
    return report_text
