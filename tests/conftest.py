"""
Pytest configuration and shared fixtures for testing.
"""
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from exambot.config import get_settings
from exambot.services.api_client import ExamMode, ExamResult, StartedSession, SubjectSelection
from exambot.services.catalog import Option, Question, QuestionCatalog
from exambot.services.session import SessionController

# Large enough that the event loop never ticks on its own during a test.
MANUAL_TICK_INTERVAL = 3600.0


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for name in ("EXAMBOT_GROUPED_DURATION_SECONDS", "EXAMBOT_MIXED_DURATION_SECONDS", "EXAMBOT_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_question(question_id: str, subject_name: str = "Math", options: int = 4) -> Question:
    return Question(
        id=question_id,
        text=f"Question {question_id}",
        subject_name=subject_name,
        options=tuple(Option(id=f"{question_id}-o{i}", text=f"Option {i}") for i in range(options)),
    )


def make_catalog(*subjects: tuple[str, int]) -> QuestionCatalog:
    """Build a catalog from (subject_name, question_count) pairs."""
    questions = []
    for subject_name, count in subjects:
        for i in range(count):
            questions.append(make_question(f"{subject_name.lower()}-{i}", subject_name))
    return QuestionCatalog(questions)


@pytest.fixture
def sample_result() -> ExamResult:
    return ExamResult(correct_answers=3, wrong_answers=27, total_questions=30, score=10.0)


@pytest.fixture
def make_service(sample_result) -> Callable[..., MagicMock]:
    def factory(catalog: QuestionCatalog | None = None, session_id: str = "session-1") -> MagicMock:
        service = MagicMock()
        service.start_session = AsyncMock(
            return_value=StartedSession(
                session_id=session_id,
                catalog=catalog if catalog is not None else make_catalog(("Math", 30)),
            )
        )
        service.finish_session = AsyncMock(return_value=sample_result)
        return service

    return factory


@pytest.fixture
def mixed_selection() -> SubjectSelection:
    return SubjectSelection(subject_ids=("math",), subject_names={"math": "Math"})


@pytest.fixture
def grouped_selection() -> SubjectSelection:
    return SubjectSelection(subject_ids=("math", "physics"))


@pytest.fixture
def make_controller(make_service) -> Callable[..., SessionController]:
    def factory(
        service: MagicMock | None = None,
        mode: ExamMode = ExamMode.MIXED,
        duration_seconds: int | None = 1800,
        **kwargs,
    ) -> SessionController:
        return SessionController(
            service or make_service(),
            mode,
            duration_seconds=duration_seconds,
            tick_interval=MANUAL_TICK_INTERVAL,
            **kwargs,
        )

    return factory
