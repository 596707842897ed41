from __future__ import annotations

from typing import Dict, Iterable, Optional

from exambot.services.errors import InvalidReference, SessionClosed


class AnswerLedger:
    """Selected option per question. Last write wins, no history."""

    def __init__(self, question_ids: Iterable[str]) -> None:
        self._known = frozenset(question_ids)
        self._answers: Dict[str, str] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def set(self, question_id: str, option_id: str) -> None:
        if self._frozen:
            raise SessionClosed("Answers are frozen")
        self._check(question_id)
        self._answers[question_id] = option_id

    def get(self, question_id: str) -> Optional[str]:
        self._check(question_id)
        return self._answers.get(question_id)

    def count_answered(self) -> int:
        return len(self._answers)

    def freeze(self) -> None:
        self._frozen = True

    def items(self) -> list[tuple[str, str]]:
        return list(self._answers.items())

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._answers

    def __len__(self) -> int:
        return len(self._answers)

    def _check(self, question_id: str) -> None:
        if question_id not in self._known:
            raise InvalidReference(f"Unknown question id: {question_id!r}")
