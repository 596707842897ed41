from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, ClassVar, Optional, Tuple, Union

from exambot.config import get_settings
from exambot.services.api_client import (
    AnswerEntry,
    AssessmentService,
    ExamMode,
    ExamResult,
    SubjectSelection,
)
from exambot.services.catalog import Question, QuestionCatalog, SubjectProgress
from exambot.services.countdown import CountdownTimer
from exambot.services.errors import (
    AssessmentError,
    InvalidReference,
    InvalidTransition,
    SessionClosed,
    Unavailable,
)
from exambot.services.ledger import AnswerLedger

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Idle:
    status: ClassVar[SessionStatus] = SessionStatus.NOT_STARTED


@dataclass
class Attempt:
    session_id: str
    catalog: QuestionCatalog
    ledger: AnswerLedger
    current_index: int = 0


@dataclass
class Running(Attempt):
    status: ClassVar[SessionStatus] = SessionStatus.IN_PROGRESS


@dataclass
class Closed(Attempt):
    status: ClassVar[SessionStatus] = SessionStatus.FINISHED

    submission: Tuple[AnswerEntry, ...] = ()
    result: Optional[ExamResult] = None
    error: Optional[AssessmentError] = None
    submitting: bool = False


@dataclass(frozen=True)
class Discarded:
    status: ClassVar[SessionStatus] = SessionStatus.ABANDONED


SessionState = Union[Idle, Running, Closed, Discarded]

ExpiryHook = Callable[["SessionController"], Awaitable[None]]


def default_duration(mode: ExamMode) -> int:
    settings = get_settings()
    if mode is ExamMode.GROUPED:
        return settings.grouped_duration_seconds
    return settings.mixed_duration_seconds


class SessionController:
    """Runs one timed attempt: start, answer, navigate, finish or abandon.

    All state lives in ``self.state``, one of ``Idle``, ``Running``,
    ``Closed`` or ``Discarded``. Manual ``finish()`` and timer expiry both go
    through ``_close()``, which checks and swaps the state without awaiting,
    so only one of them ever reaches ``finish_session``.
    """

    def __init__(
        self,
        service: AssessmentService,
        mode: ExamMode,
        *,
        duration_seconds: Optional[int] = None,
        on_expired: Optional[ExpiryHook] = None,
        tick_interval: Optional[float] = None,
    ) -> None:
        self.service = service
        self.mode = mode
        self.duration_seconds = default_duration(mode) if duration_seconds is None else duration_seconds
        if self.duration_seconds < 0:
            raise ValueError("duration_seconds must be >= 0")
        self.on_expired = on_expired
        self.state: SessionState = Idle()
        self.start_in_flight = False
        self.pending_submission: Optional[asyncio.Task] = None
        self._timer = CountdownTimer(
            on_expire=self._on_expire,
            interval=tick_interval or get_settings().tick_interval,
        )

    # -- read side -------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def timer(self) -> CountdownTimer:
        return self._timer

    @property
    def remaining_seconds(self) -> int:
        if isinstance(self.state, Idle):
            return self.duration_seconds
        return self._timer.remaining

    @property
    def session_id(self) -> Optional[str]:
        if isinstance(self.state, Attempt):
            return self.state.session_id
        return None

    @property
    def questions(self) -> Tuple[Question, ...]:
        if isinstance(self.state, Attempt):
            return self.state.catalog.questions
        return ()

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_index(self) -> int:
        if isinstance(self.state, Attempt):
            return self.state.current_index
        return 0

    @property
    def current_question(self) -> Optional[Question]:
        questions = self.questions
        if not questions:
            return None
        return questions[self.current_index]

    @property
    def answered_count(self) -> int:
        if isinstance(self.state, Attempt):
            return self.state.ledger.count_answered()
        return 0

    @property
    def can_go_next(self) -> bool:
        return self.current_index < self.total_questions - 1

    @property
    def can_go_previous(self) -> bool:
        return self.total_questions > 0 and self.current_index > 0

    @property
    def result(self) -> Optional[ExamResult]:
        if isinstance(self.state, Closed):
            return self.state.result
        return None

    @property
    def last_error(self) -> Optional[AssessmentError]:
        if isinstance(self.state, Closed):
            return self.state.error
        return None

    @property
    def submission(self) -> Tuple[AnswerEntry, ...]:
        if isinstance(self.state, Closed):
            return self.state.submission
        return ()

    @property
    def finish_in_flight(self) -> bool:
        return isinstance(self.state, Closed) and self.state.submitting

    def selected_option(self, question_id: str) -> Optional[str]:
        if not isinstance(self.state, Attempt):
            return None
        return self.state.ledger.get(question_id)

    def progress(self) -> list[SubjectProgress]:
        if not isinstance(self.state, Attempt):
            return []
        return self.state.catalog.groups(self.state.ledger)

    # -- transitions -----------------------------------------------------

    async def start(self, selection: SubjectSelection) -> None:
        if not isinstance(self.state, Idle):
            raise InvalidTransition(f"Cannot start a session that is {self.status.value}")
        if self.start_in_flight:
            raise InvalidTransition("A start request is already in flight")
        selection.validate(self.mode)

        self.start_in_flight = True
        started_at = datetime.now(timezone.utc)
        try:
            started = await self.service.start_session(
                selection,
                self.mode,
                started_at,
                started_at + timedelta(seconds=self.duration_seconds),
            )
        finally:
            self.start_in_flight = False

        self.state = Running(
            session_id=started.session_id,
            catalog=started.catalog,
            ledger=AnswerLedger(started.catalog.ids()),
        )
        self._timer.start(self.duration_seconds)
        logger.info(
            "Session %s started: mode=%s questions=%d duration=%ss",
            started.session_id,
            self.mode.value,
            len(started.catalog),
            self.duration_seconds,
        )

    def select_answer(self, question_id: str, option_id: str) -> None:
        state = self.state
        if not isinstance(state, Running):
            raise SessionClosed(f"Session is {self.status.value}; answers are not accepted")
        question = state.catalog.get(question_id)
        if question is None:
            raise InvalidReference(f"Unknown question id: {question_id!r}")
        if not question.has_option(option_id):
            raise InvalidReference(f"Question {question_id!r} has no option {option_id!r}")
        state.ledger.set(question_id, option_id)

    def go_to(self, index: int) -> int:
        state = self.state
        if not isinstance(state, Running):
            return 0
        last = len(state.catalog) - 1
        state.current_index = 0 if last < 0 else max(0, min(index, last))
        return state.current_index

    def next(self) -> int:
        return self.go_to(self.current_index + 1)

    def previous(self) -> int:
        return self.go_to(self.current_index - 1)

    def skip(self) -> int:
        # moving on leaves the question unanswered, same as never visiting it
        return self.next()

    async def finish(self) -> Optional[ExamResult]:
        if self._close():
            return await self._submit()
        if isinstance(self.state, Closed):
            pending = self.pending_submission
            if pending is not None and not pending.done() and pending is not asyncio.current_task():
                # expiry already queued the submission
                await asyncio.shield(pending)
            return self.state.result
        raise InvalidTransition(f"Cannot finish a session that is {self.status.value}")

    async def retry_finish(self) -> Optional[ExamResult]:
        state = self.state
        if not isinstance(state, Closed):
            raise InvalidTransition(f"Cannot resubmit a session that is {self.status.value}")
        if state.result is not None or state.submitting:
            return state.result
        logger.info("Retrying submission for session %s", state.session_id)
        return await self._submit()

    def abandon(self) -> None:
        state = self.state
        if not isinstance(state, Running):
            raise InvalidTransition(f"Cannot abandon a session that is {self.status.value}")
        self._timer.stop()
        self.state = Discarded()
        logger.info("Session %s abandoned with %d answer(s)", state.session_id, state.ledger.count_answered())

    # -- internals -------------------------------------------------------

    def _close(self) -> bool:
        state = self.state
        if not isinstance(state, Running):
            return False
        self._timer.stop()
        state.ledger.freeze()
        submission = tuple(
            AnswerEntry(question_id=question.id, selected_option_id=state.ledger.get(question.id))
            for question in state.catalog
        )
        self.state = Closed(
            session_id=state.session_id,
            catalog=state.catalog,
            ledger=state.ledger,
            current_index=state.current_index,
            submission=submission,
        )
        logger.info(
            "Session %s closed: %d/%d answered, %ss left",
            state.session_id,
            state.ledger.count_answered(),
            len(submission),
            self._timer.remaining,
        )
        return True

    async def _submit(self) -> ExamResult:
        state = self.state
        if not isinstance(state, Closed):
            raise InvalidTransition(f"Cannot submit a session that is {self.status.value}")
        state.submitting = True
        state.error = None
        try:
            result = await self.service.finish_session(state.session_id, state.submission, self.mode)
        except Unavailable as exc:
            state.error = exc
            logger.error("Submission for session %s failed: %s", state.session_id, exc)
            raise
        finally:
            state.submitting = False
        state.result = result
        logger.info(
            "Session %s scored: %d correct, %d wrong, score=%s",
            state.session_id,
            result.correct_answers,
            result.wrong_answers,
            result.score,
        )
        return result

    def _on_expire(self) -> None:
        logger.info("Time is up for session %s", self.session_id)
        if not self._close():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; submission for session %s awaits retry_finish()", self.session_id)
            return
        state = self.state
        if isinstance(state, Closed):
            state.submitting = True
        self.pending_submission = loop.create_task(self._submit_after_expiry())

    async def _submit_after_expiry(self) -> None:
        state = self.state
        try:
            await self._submit()
        except Unavailable:
            pass  # kept on state.error for the retry prompt
        except Exception as exc:
            logger.exception("Unexpected error submitting session %s", self.session_id)
            if isinstance(state, Closed):
                state.error = Unavailable(str(exc))
        if self.on_expired is None:
            return
        try:
            await self.on_expired(self)
        except Exception:
            logger.exception("Expiry hook failed for session %s", self.session_id)
