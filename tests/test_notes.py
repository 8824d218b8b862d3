"""
tests/test_notes.py — Notes grammar: split markers, Roman suffixes, deadlines.
"""

import itertools
import random
import sys
from datetime import datetime
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autoplan.notes import (
    clean_autoplan_notes,
    generate_split_notes,
    is_already_processed,
    parse_deadline_from_notes,
    parse_split_info,
    strip_roman_suffix,
    to_roman,
)


class TestRomanNumerals:

    @pytest.mark.parametrize("num,expected", [
        (1, "I"), (4, "IV"), (9, "IX"), (14, "XIV"), (40, "XL"), (1994, "MCMXCIV"), (3999, "MMMCMXCIX"),
    ])
    def test_to_roman(self, num, expected):
        assert to_roman(num) == expected

    def test_out_of_range(self):
        assert to_roman(0) == "I"
        assert to_roman(-3) == "I"
        assert to_roman(4000) == "4000"

    def test_strip_suffix(self):
        assert strip_roman_suffix("Report <XIV>") == "Report"
        assert strip_roman_suffix("Report <I> draft") == "Report <I> draft"
        assert strip_roman_suffix("Report<II>") == "Report<II>"
        assert strip_roman_suffix("Report <abc>") == "Report <abc>"


class TestSplitMarkers:

    def test_exact_wire_format(self):
        notes = generate_split_notes(0, 3, 'Say "hi"', "abc")
        assert notes == '[AutoPlan] Split 1/3 of "Say \\"hi\\""\n\n[AutoPlan] Original Task ID: abc'

    def test_user_notes_first(self):
        notes = generate_split_notes(1, 2, "Write", "t1", "Remember the charts")
        assert notes.startswith("Remember the charts\n\n[AutoPlan] Split 2/2 of \"Write\"")

    def test_existing_markers_not_duplicated(self):
        first = generate_split_notes(0, 2, "Write", "t1", "keep me")
        again = generate_split_notes(1, 2, "Write", "t1", first)
        assert again.count("[AutoPlan] Split") == 1
        assert again.count("Original Task ID") == 1
        assert again.startswith("keep me")

    def test_parse_round_trip_with_quotes(self):
        notes = generate_split_notes(4, 7, 'The "big" one', "task-42", "user text")
        info = parse_split_info(notes)
        assert info is not None
        assert info.split_index == 4
        assert info.total_splits == 7
        assert info.original_title == 'The "big" one'
        assert info.original_task_id == "task-42"

    @pytest.mark.parametrize("title", [
        "C:\\temp\\",
        'ends with \\"',
        '\\\\"',
        "\\n is not a newline",
    ])
    def test_parse_round_trip_with_backslashes(self, title):
        info = parse_split_info(generate_split_notes(0, 2, title, "t1"))
        assert info is not None
        assert info.original_title == title

    def test_generated_titles_round_trip(self):
        alphabet = ['a', '"', '\\', ' ', '<', 'I', '>']
        titles = ["".join(chars) for n in range(1, 5) for chars in itertools.product(alphabet, repeat=n)]
        rng = random.Random(20260302)
        titles += ["".join(rng.choice(alphabet + ["é", "\t"]) for _ in range(rng.randint(5, 40))) for _ in range(500)]

        for i, title in enumerate(titles):
            notes = generate_split_notes(i % 9, 9, title, f"task-{i}", "user text")
            info = parse_split_info(notes)
            assert info is not None, title
            assert (info.split_index, info.total_splits) == (i % 9, 9)
            assert info.original_title == title
            assert info.original_task_id == f"task-{i}"
            assert clean_autoplan_notes(notes) == "user text"

    @pytest.mark.parametrize("notes", [
        None,
        "",
        '[AutoPlan] Split 1/2 of "Write"',                       # id marker missing
        "[AutoPlan] Original Task ID: t1",                        # split marker missing
        'Split 1/2 of "Write"\n\nOriginal Task ID: t1',           # no prefix
        '[AutoPlan] Split 1/2 of "Write\n\n[AutoPlan] Original Task ID: t1',  # broken quoting
    ])
    def test_not_a_split(self, notes):
        assert parse_split_info(notes) is None

    def test_clean_notes(self):
        notes = (
            "line one\n"
            "[AutoPlan] Split 1/2 of \"X\"\n"
            "\n"
            "[AutoPlan] Original Task ID: t1\n"
            "Original Task ID: legacy\n"
            "Split 2/3 of \"Y\"\n"
            "line two"
        )
        assert clean_autoplan_notes(notes) == "line one\n\nline two"
        assert clean_autoplan_notes(None) == ""

    def test_already_processed(self):
        assert is_already_processed("foo [AutoPlan] bar")
        assert not is_already_processed("AutoPlan without brackets")
        assert not is_already_processed(None)


class TestDeadlineParsing:

    def test_iso_date_means_end_of_day(self):
        assert parse_deadline_from_notes("Deadline: 2024-01-20") == datetime(2024, 1, 20, 23, 59, 59, 999000)

    @pytest.mark.parametrize("text", ["Deadline: 2024-01-20 9.15", "deadline:2024-01-20 9:15"])
    def test_iso_with_time(self, text):
        assert parse_deadline_from_notes(text) == datetime(2024, 1, 20, 9, 15)

    def test_named_month(self):
        assert parse_deadline_from_notes("stuff\nDEADLINE: Jan 20, 2024") == datetime(2024, 1, 20, 23, 59, 59, 999000)
        assert parse_deadline_from_notes("Deadline: March 3 2025 14:30") == datetime(2025, 3, 3, 14, 30)

    def test_slash_day_first_when_unambiguous(self):
        assert parse_deadline_from_notes("Deadline: 20/01/2024").date() == datetime(2024, 1, 20).date()

    def test_slash_month_first_otherwise(self):
        assert parse_deadline_from_notes("Deadline: 01/02/2024").date() == datetime(2024, 1, 2).date()

    @pytest.mark.parametrize("text", [
        None, "", "no deadline here", "Due: 2024-01-20", "Deadline: 2024-13-45", "Deadline: 13/13/2024",
    ])
    def test_unparseable(self, text):
        assert parse_deadline_from_notes(text) is None
