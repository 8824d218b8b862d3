"""
notes.py — Notes-field grammar owned by AutoPlan

The task notes field is the only durable channel the planner writes to.
Everything that reads or writes free text lives here:

  Split markers (bit-exact wire format):
    [AutoPlan] Split <i>/<n> of "<title, with \\ and \\" backslash-escaped>"
    <blank line>
    [AutoPlan] Original Task ID: <id>

  Deadlines embedded by the user:
    Deadline: 2024-01-20            ISO
    Deadline: Jan 20, 2024          named month
    Deadline: 20/01/2024            slash (first > 12 ⇒ day first, else month first)
    … each optionally followed by " 9.15" or " 9:15"

  Block title suffix: " <I>", " <II>", … (Roman numeral, 1-based)

Parsing never raises: text that does not match the full grammar is simply
"not a marker" / "no deadline".
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

MARKER_PREFIX = "[AutoPlan]"
MAX_ROMAN_NUMERAL = 3999

_SPLIT_RE = re.compile(r'\[AutoPlan\] Split (\d+)/(\d+) of "((?:[^"\\]|\\.)*)"')
_ESCAPED_CHAR_RE = re.compile(r"\\(.)", re.DOTALL)
_ORIGINAL_ID_RE = re.compile(r"\[AutoPlan\] Original Task ID: ([^\n\s]+)")
_BARE_SPLIT_LINE_RE = re.compile(r'^Split \d+/\d+ of "')
_ROMAN_SUFFIX_RE = re.compile(r" <[IVXLCDM]+>$")

_TIME_SUFFIX = r"(?:\s+(\d{1,2})[.:](\d{2}))?"
_DEADLINE_PATTERNS = [
    ("iso",   re.compile(r"deadline\s*:\s*(\d{4}-\d{2}-\d{2})" + _TIME_SUFFIX, re.IGNORECASE)),
    ("named", re.compile(r"deadline\s*:\s*([A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4})" + _TIME_SUFFIX, re.IGNORECASE)),
    ("slash", re.compile(r"deadline\s*:\s*(\d{1,2}/\d{1,2}/\d{4})" + _TIME_SUFFIX, re.IGNORECASE)),
]

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ROMAN_NUMERALS: List[Tuple[str, int]] = [
    ("M", 1000), ("CM", 900), ("D", 500), ("CD", 400),
    ("C", 100), ("XC", 90), ("L", 50), ("XL", 40),
    ("X", 10), ("IX", 9), ("V", 5), ("IV", 4), ("I", 1),
]


# ---------------------------------------------------------------------------
# Roman numerals
# ---------------------------------------------------------------------------

def to_roman(num: int) -> str:
    """1 → 'I'. Values ≤ 0 clamp to 'I'; values above 3999 stay decimal."""
    if num <= 0:
        return "I"
    if num > MAX_ROMAN_NUMERAL:
        return str(num)
    out = []
    for letter, value in _ROMAN_NUMERALS:
        while num >= value:
            out.append(letter)
            num -= value
    return "".join(out)


def strip_roman_suffix(title: str) -> str:
    return _ROMAN_SUFFIX_RE.sub("", title or "")


# ---------------------------------------------------------------------------
# Split markers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SplitInfo:
    split_index: int          # zero-based
    total_splits: int
    original_title: str
    original_task_id: str


def escape_title(title: str) -> str:
    # Backslash first, or the quote escapes would be doubled
    return title.replace("\\", "\\\\").replace('"', '\\"')


def unescape_title(title: str) -> str:
    return _ESCAPED_CHAR_RE.sub(r"\1", title)


def is_already_processed(notes: Optional[str]) -> bool:
    return bool(notes) and MARKER_PREFIX in notes


def parse_split_info(notes: Optional[str]) -> Optional[SplitInfo]:
    """Return SplitInfo when BOTH markers are present, else None."""
    if not notes:
        return None
    split_match = _SPLIT_RE.search(notes)
    id_match = _ORIGINAL_ID_RE.search(notes)
    if not split_match or not id_match:
        return None
    return SplitInfo(
        split_index=int(split_match.group(1)) - 1,
        total_splits=int(split_match.group(2)),
        original_title=unescape_title(split_match.group(3)),
        original_task_id=id_match.group(1).strip(),
    )


def clean_autoplan_notes(notes: Optional[str]) -> str:
    """Drop every marker line, keep the user's own text."""
    if not notes:
        return ""
    kept = []
    for line in notes.split("\n"):
        stripped = line.strip()
        if MARKER_PREFIX in stripped:
            continue
        if stripped.startswith("Original Task ID:"):
            continue
        if _BARE_SPLIT_LINE_RE.match(stripped):
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def generate_split_notes(
    split_index: int,
    total_splits: int,
    original_title: str,
    original_task_id: str,
    existing_notes: str = "",
) -> str:
    """User notes first (markers removed), then the two marker lines."""
    marker = (
        f'{MARKER_PREFIX} Split {split_index + 1}/{total_splits} of "{escape_title(original_title)}"'
        f"\n\n{MARKER_PREFIX} Original Task ID: {original_task_id}"
    )
    user_notes = clean_autoplan_notes(existing_notes)
    if user_notes:
        return f"{user_notes}\n\n{marker}"
    return marker


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------

def _is_midnight(dt: datetime) -> bool:
    if dt.hour == 0 and dt.minute == 0 and dt.second == 0:
        return True
    try:
        utc = dt.astimezone(timezone.utc)
    except (OverflowError, OSError, ValueError):
        return False
    return utc.hour == 0 and utc.minute == 0 and utc.second == 0


def end_of_day_if_midnight(dt: datetime) -> datetime:
    """A date-only deadline means 'by the end of that day'."""
    if _is_midnight(dt):
        return dt.replace(hour=23, minute=59, second=59, microsecond=999000)
    return dt


def _parse_date_part(kind: str, text: str) -> Optional[datetime]:
    try:
        if kind == "iso":
            return datetime.strptime(text, "%Y-%m-%d")
        if kind == "named":
            parts = text.replace(",", " ").split()
            month = _MONTHS.get(parts[0][:3].lower())
            if month is None:
                return None
            return datetime(int(parts[2]), month, int(parts[1]))
        first, second, year = (int(p) for p in text.split("/"))
        if first > 12 and 1 <= second <= 12:
            return datetime(year, second, first)
        if 1 <= first <= 12 and 1 <= second <= 31:
            return datetime(year, first, second)
    except (ValueError, IndexError):
        return None
    return None


def parse_deadline_from_notes(notes: Optional[str]) -> Optional[datetime]:
    """
    Find "Deadline: <date>[ time]" in free text.

    Without an explicit time the result is 23:59:59.999 of that day.
    Returns None when nothing parses.
    """
    if not notes or not isinstance(notes, str):
        return None

    for kind, pattern in _DEADLINE_PATTERNS:
        match = pattern.search(notes)
        if not match:
            continue
        parsed = _parse_date_part(kind, match.group(1))
        if parsed is None:
            continue
        if match.group(2) is not None:
            try:
                return parsed.replace(hour=int(match.group(2)), minute=int(match.group(3)))
            except ValueError:
                continue
        return end_of_day_if_midnight(parsed)

    return None
