import pytest

from exambot.services.api_client import ExamMode, ExamResult
from exambot.services.catalog import SubjectProgress
from exambot.services.formatting import (
    format_clock,
    format_progress,
    format_result,
    format_score,
    format_time,
    progress_badge,
)


@pytest.mark.parametrize(
    "seconds,with_hours,expected",
    [
        (10800, True, "03:00:00"),
        (3661, True, "01:01:01"),
        (1800, False, "30:00"),
        (3725, False, "62:05"),
        (0, False, "00:00"),
        (-5, True, "00:00:00"),
    ],
)
def test_format_time(seconds, with_hours, expected):
    assert format_time(seconds, with_hours=with_hours) == expected


def test_clock_depends_on_mode():
    assert format_clock(10799, ExamMode.GROUPED) == "02:59:59"
    assert format_clock(1799, ExamMode.MIXED) == "29:59"


def test_format_score():
    assert format_score(80) == "80%"
    assert format_score(80.54) == "80.5%"


def test_format_result():
    text = format_result(ExamResult(correct_answers=24, wrong_answers=6, total_questions=30, score=80.0))
    assert text.splitlines() == [
        "Test finished!",
        "",
        "Correct: 24",
        "Wrong: 6",
        "Total questions: 30",
        "Score: 80%",
    ]
    with_points = format_result(ExamResult(1, 0, 1, 100.0, total_score=3.1))
    assert with_points.endswith("Points: 3.1")


def test_progress_badges():
    groups = [
        SubjectProgress("Math", 3, 3),
        SubjectProgress("Physics", 1, 2),
        SubjectProgress("History", 0, 5),
    ]
    assert progress_badge(groups[0]) == "✅ Math 3/3"
    assert format_progress(groups).splitlines() == [
        "✅ Math 3/3",
        "🟡 Physics 1/2",
        "⚪ History 0/5",
    ]
