from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Tuple

from exambot.schemas import GroupedStartRead, MixedStartRead, UserQuestionRead

if TYPE_CHECKING:
    from exambot.services.ledger import AnswerLedger

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT_NAME = "Other"


@dataclass(frozen=True)
class Option:
    id: str
    text: str = ""


@dataclass(frozen=True)
class Question:
    id: str
    text: str = ""
    subject_name: str = DEFAULT_SUBJECT_NAME
    options: Tuple[Option, ...] = ()
    image_url: Optional[str] = None

    def option(self, option_id: str) -> Optional[Option]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def has_option(self, option_id: str) -> bool:
        return self.option(option_id) is not None


@dataclass(frozen=True)
class SubjectProgress:
    subject_name: str
    answered: int
    total: int
    indices: Tuple[int, ...] = field(default=())

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.answered == self.total

    @property
    def is_started(self) -> bool:
        return self.answered > 0


def question_from_wire(raw: UserQuestionRead, subject_name: Optional[str] = None) -> Optional[Question]:
    if not raw.id:
        logger.warning("Skipping question without id: %r", raw.text[:40])
        return None
    options = tuple(Option(id=item.id, text=item.text) for item in raw.options if item.id)
    if len(options) != len(raw.options):
        logger.warning("Question %s: dropped %d option(s) without id", raw.id, len(raw.options) - len(options))
    return Question(
        id=raw.id,
        text=raw.text,
        subject_name=subject_name or raw.subject_name or DEFAULT_SUBJECT_NAME,
        options=options,
        image_url=raw.image_url or None,
    )


class QuestionCatalog:
    """Ordered question list fetched once per session; never mutated afterwards."""

    def __init__(self, questions: Iterable[Question] = ()) -> None:
        ordered: List[Question] = []
        index: Dict[str, int] = {}
        for question in questions:
            if question.id in index:
                logger.warning("Duplicate question id %s dropped", question.id)
                continue
            index[question.id] = len(ordered)
            ordered.append(question)
        self._questions: Tuple[Question, ...] = tuple(ordered)
        self._index = index

    @classmethod
    def from_grouped(cls, payload: GroupedStartRead) -> "QuestionCatalog":
        questions = []
        for block in payload.subjects:
            for raw in block.questions:
                question = question_from_wire(raw, block.subject_name)
                if question is not None:
                    questions.append(question)
        return cls(questions)

    @classmethod
    def from_mixed(cls, payload: MixedStartRead, subject_name: Optional[str] = None) -> "QuestionCatalog":
        questions = (question_from_wire(raw, subject_name) for raw in payload.questions)
        return cls(question for question in questions if question is not None)

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def is_empty(self) -> bool:
        return not self._questions

    def ids(self) -> List[str]:
        return [question.id for question in self._questions]

    def get(self, question_id: str) -> Optional[Question]:
        position = self._index.get(question_id)
        return None if position is None else self._questions[position]

    def index_of(self, question_id: str) -> Optional[int]:
        return self._index.get(question_id)

    def groups(self, ledger: Optional["AnswerLedger"] = None) -> List[SubjectProgress]:
        """Per-subject answered/total, recomputed from the ledger on every call."""
        grouped: Dict[str, List[int]] = {}
        for position, question in enumerate(self._questions):
            grouped.setdefault(question.subject_name, []).append(position)
        progress = []
        for subject_name, indices in grouped.items():
            answered = 0
            if ledger is not None:
                answered = sum(1 for i in indices if self._questions[i].id in ledger)
            progress.append(
                SubjectProgress(
                    subject_name=subject_name,
                    answered=answered,
                    total=len(indices),
                    indices=tuple(indices),
                )
            )
        return progress

    def __len__(self) -> int:
        return len(self._questions)

    def __getitem__(self, position: int) -> Question:
        return self._questions[position]

    def __iter__(self) -> Iterator[Question]:
        return iter(self._questions)

