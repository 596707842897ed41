from exambot.schemas.assessment import (
    AnswerOptionRead,
    Envelope,
    FinishResultRead,
    GroupedStartRead,
    MixedStartRead,
    PageRead,
    ResultHistoryItemRead,
    SubjectBlockRead,
    SubjectRead,
    TopicGroupRead,
    TopicRead,
    UserQuestionRead,
)

__all__ = [
    "AnswerOptionRead",
    "Envelope",
    "FinishResultRead",
    "GroupedStartRead",
    "MixedStartRead",
    "PageRead",
    "ResultHistoryItemRead",
    "SubjectBlockRead",
    "SubjectRead",
    "TopicGroupRead",
    "TopicRead",
    "UserQuestionRead",
]
