from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from exambot.services.api_client import ExamMode, Subject, SubjectSelection, Topic
from exambot.services.errors import InvalidSelection


@dataclass
class SelectionState:
    user_id: int
    mode: ExamMode
    subjects: List[Subject] = field(default_factory=list)
    topics: List[Topic] = field(default_factory=list)
    subject_ids: List[str] = field(default_factory=list)
    topic_id: Optional[str] = None
    starting: bool = False

    def toggle_subject(self, subject_id: str) -> None:
        if subject_id in self.subject_ids:
            self.subject_ids.remove(subject_id)
            self.topic_id = None
            return
        if self.mode is ExamMode.MIXED:
            self.subject_ids = [subject_id]
            self.topic_id = None
            self.topics = []
            return
        if len(self.subject_ids) >= self.mode.subject_count:
            raise InvalidSelection(f"Only {self.mode.subject_count} main subjects can be selected")
        self.subject_ids.append(subject_id)

    def subject_name(self, subject_id: str) -> str:
        for subject in self.subjects:
            if subject.id == subject_id:
                return subject.name
        return subject_id

    @property
    def is_complete(self) -> bool:
        return len(self.subject_ids) == self.mode.subject_count

    def to_selection(self) -> SubjectSelection:
        return SubjectSelection(
            subject_ids=tuple(self.subject_ids),
            topic_id=self.topic_id if self.mode is ExamMode.MIXED else None,
            subject_names={subject.id: subject.name for subject in self.subjects},
        )


_states: Dict[int, SelectionState] = {}


def set_selection_state(state: SelectionState) -> None:
    _states[state.user_id] = state


def get_selection_state(user_id: int) -> SelectionState | None:
    return _states.get(user_id)


def clear_selection_state(user_id: int) -> None:
    _states.pop(user_id, None)
