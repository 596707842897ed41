from __future__ import annotations

from typing import Iterable

from exambot.services.api_client import ExamMode, ExamResult
from exambot.services.catalog import SubjectProgress


def format_time(seconds: int, *, with_hours: bool = True) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    mins, secs = divmod(rest, 60)
    if with_hours:
        return f"{hours:02d}:{mins:02d}:{secs:02d}"
    return f"{hours * 60 + mins:02d}:{secs:02d}"


def format_clock(seconds: int, mode: ExamMode) -> str:
    """Grouped tests run for hours, mixed tests for minutes."""
    return format_time(seconds, with_hours=mode is ExamMode.GROUPED)


def format_score(score: float) -> str:
    if float(score).is_integer():
        return f"{int(score)}%"
    return f"{score:.1f}%"


def format_result(result: ExamResult) -> str:
    lines = [
        "Test finished!",
        "",
        f"Correct: {result.correct_answers}",
        f"Wrong: {result.wrong_answers}",
        f"Total questions: {result.total_questions}",
        f"Score: {format_score(result.score)}",
    ]
    if result.total_score is not None:
        lines.append(f"Points: {result.total_score:g}")
    return "\n".join(lines)


def progress_badge(progress: SubjectProgress) -> str:
    if progress.is_complete:
        mark = "✅"
    elif progress.is_started:
        mark = "🟡"
    else:
        mark = "⚪"
    return f"{mark} {progress.subject_name} {progress.answered}/{progress.total}"


def format_progress(groups: Iterable[SubjectProgress]) -> str:
    return "\n".join(progress_badge(group) for group in groups)
