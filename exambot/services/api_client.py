from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from exambot.config import get_settings
from exambot.schemas import (
    Envelope,
    FinishResultRead,
    GroupedStartRead,
    MixedStartRead,
    PageRead,
    ResultHistoryItemRead,
    SubjectRead,
    TopicGroupRead,
)
from exambot.services.catalog import QuestionCatalog
from exambot.services.errors import InvalidSelection, SelectionInvalid, Unavailable

logger = logging.getLogger(__name__)

SUBJECTS_PATH = "/api/Subject/get-all-page"
TOPICS_PATH = "/api/topic/paged"
START_GROUPED_PATH = "/api/StartTest/start-dtm-test"
START_MIXED_PATH = "/api/StartTest/start-test-mixed30"
FINISH_PATH = "/api/StartTest/finish-test"
RESULTS_PATH = "/api/ResultTest/test-result"


class ExamMode(str, enum.Enum):
    GROUPED = "dtm"
    MIXED = "mixed30"

    @property
    def subject_count(self) -> int:
        return 2 if self is ExamMode.GROUPED else 1


@dataclass(frozen=True)
class Subject:
    id: str
    name: str


@dataclass(frozen=True)
class Topic:
    id: str
    name: str


@dataclass(frozen=True)
class SubjectSelection:
    subject_ids: tuple[str, ...]
    topic_id: Optional[str] = None
    subject_names: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def subject_name(self) -> Optional[str]:
        if len(self.subject_ids) != 1:
            return None
        return self.subject_names.get(self.subject_ids[0])

    def validate(self, mode: ExamMode) -> None:
        if len(set(self.subject_ids)) != len(self.subject_ids):
            raise InvalidSelection("The same subject was selected twice")
        if len(self.subject_ids) != mode.subject_count:
            raise InvalidSelection(
                f"{mode.value} mode needs exactly {mode.subject_count} subject(s), got {len(self.subject_ids)}"
            )
        if self.topic_id and mode is not ExamMode.MIXED:
            raise InvalidSelection("A topic can only narrow a single-subject test")


@dataclass(frozen=True)
class AnswerEntry:
    question_id: str
    selected_option_id: Optional[str] = None


@dataclass(frozen=True)
class StartedSession:
    session_id: str
    catalog: QuestionCatalog


@dataclass(frozen=True)
class ExamResult:
    correct_answers: int
    wrong_answers: int
    total_questions: int
    score: float
    total_score: Optional[float] = None


@dataclass(frozen=True)
class ResultPage:
    items: list[ExamResult]
    page_number: int
    total_count: int
    has_next: bool
    has_previous: bool


class AssessmentService(Protocol):
    async def fetch_subjects(self) -> list[Subject]: ...

    async def start_session(
        self,
        selection: SubjectSelection,
        mode: ExamMode,
        start_time: datetime,
        end_time: datetime,
    ) -> StartedSession: ...

    async def finish_session(
        self, session_id: str, answers: Sequence[AnswerEntry], mode: ExamMode
    ) -> ExamResult: ...


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def build_finish_body(session_id: str, answers: Sequence[AnswerEntry], mode: ExamMode) -> dict[str, Any]:
    if mode is ExamMode.MIXED:
        # the mixed endpoint only takes answered questions
        return {
            "TestProcessId": session_id,
            "userQuestionFinishes": [
                {"UserQuestionId": entry.question_id, "MarkedAnsewrId": entry.selected_option_id}
                for entry in answers
                if entry.selected_option_id is not None
            ],
        }
    return {
        "UserTestId": session_id,
        "Answers": [
            {"UserQuestionId": entry.question_id, "UserQuestionAnswerId": entry.selected_option_id}
            for entry in answers
        ],
    }


class ApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = base_url or settings.api_base_url
        headers = {"Accept-Language": settings.language, "lang": settings.language}
        token = settings.api_token if token is None else token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.api_timeout,
            headers=headers,
            transport=transport,
        )

    async def fetch_subjects(self) -> list[Subject]:
        result = await self._request("POST", SUBJECTS_PATH, json={"PageNumber": 1, "PageSize": 1000, "Search": ""})
        page = self._parse(PageRead, result or {})
        subjects = []
        for raw in page.values:
            item = self._parse(SubjectRead, raw)
            if item.id:
                subjects.append(Subject(id=item.id, name=item.name))
        return subjects

    async def fetch_topics(self, subject_id: str) -> list[Topic]:
        result = await self._request(
            "GET",
            TOPICS_PATH,
            params={"SubjectId": subject_id, "PageNumber": 1, "PageSize": 100},
        )
        page = self._parse(PageRead, result or {})
        topics = []
        for raw in page.values:
            group = self._parse(TopicGroupRead, raw)
            topics.extend(Topic(id=topic.id, name=topic.name) for topic in group.topics if topic.id)
        return topics

    async def start_session(
        self,
        selection: SubjectSelection,
        mode: ExamMode,
        start_time: datetime,
        end_time: datetime,
    ) -> StartedSession:
        if mode is ExamMode.GROUPED:
            body: dict[str, Any] = {
                "SubjectId": list(selection.subject_ids),
                "StartTime": _iso(start_time),
                "EndTime": _iso(end_time),
            }
            result = await self._request("POST", START_GROUPED_PATH, json=body, rejects_selection=True)
            payload = self._parse(GroupedStartRead, result or {})
            catalog = QuestionCatalog.from_grouped(payload)
            for block in payload.subjects:
                logger.info("Subject %s: %d question(s)", block.subject_name, len(block.questions))
        else:
            body = {"SubjectId": selection.subject_ids[0]}
            if selection.topic_id:
                body["TopicId"] = selection.topic_id
            result = await self._request("POST", START_MIXED_PATH, json=body, rejects_selection=True)
            payload = self._parse(MixedStartRead, result or {})
            catalog = QuestionCatalog.from_mixed(payload, selection.subject_name)

        if not payload.id:
            raise Unavailable("Start response did not include a session id")
        logger.info("Started %s session %s with %d question(s)", mode.value, payload.id, len(catalog))
        return StartedSession(session_id=payload.id, catalog=catalog)

    async def finish_session(
        self, session_id: str, answers: Sequence[AnswerEntry], mode: ExamMode = ExamMode.GROUPED
    ) -> ExamResult:
        body = build_finish_body(session_id, answers, mode)
        result = await self._request("POST", FINISH_PATH, json=body)
        if result is None:
            raise Unavailable("Finish response did not include a result")
        read = self._parse(FinishResultRead, result)
        return ExamResult(
            correct_answers=read.correct_answers,
            wrong_answers=read.wrong_answers,
            total_questions=read.total_questions,
            score=read.score,
            total_score=read.total_score,
        )

    async def fetch_results(self, page: int = 1, page_size: int | None = None) -> ResultPage:
        page_size = page_size or get_settings().results_page_size
        result = await self._request(
            "POST", RESULTS_PATH, json={"PageNumber": page, "PageSize": page_size, "Search": ""}
        )
        read = self._parse(PageRead, result or {})
        items = []
        for raw in read.values:
            item = self._parse(ResultHistoryItemRead, raw)
            items.append(
                ExamResult(
                    correct_answers=item.correct_answers,
                    wrong_answers=item.incorrect_answers,
                    total_questions=item.total_questions,
                    score=item.percentage,
                    total_score=item.total_score,
                )
            )
        return ResultPage(
            items=items,
            page_number=read.page_number,
            total_count=read.total_count,
            has_next=read.has_next,
            has_previous=read.has_previous,
        )

    async def _request(self, method: str, path: str, *, rejects_selection: bool = False, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise Unavailable(f"Network error: {exc}") from exc

        envelope = self._envelope(response)
        if rejects_selection and response.status_code in (400, 422):
            raise SelectionInvalid(envelope.error_message if envelope else "Selection rejected")
        if response.is_error:
            logger.error("%s %s returned %s", method, path, response.status_code)
            message = envelope.error_message if envelope and envelope.errors else f"HTTP {response.status_code}"
            raise Unavailable(message, status_code=response.status_code)
        if envelope is None:
            raise Unavailable("Malformed response from assessment service", status_code=response.status_code)
        if not envelope.succeeded:
            raise Unavailable(envelope.error_message or "Request was not successful", status_code=response.status_code)
        return envelope.result

    @staticmethod
    def _envelope(response: httpx.Response) -> Envelope | None:
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        try:
            return Envelope.model_validate(data)
        except ValidationError:
            return None

    @staticmethod
    def _parse(model: type[BaseModel], data: Any) -> Any:
        try:
            return model.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as exc:
            raise Unavailable(f"Malformed {model.__name__} payload") from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

