from __future__ import annotations

from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, model_validator


def _mappings_only(value: Any) -> list[Any]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _strings_only(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


class WireModel(BaseModel):
    """Backend payloads arrive in PascalCase, sometimes camelCase, often with nulls."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class Envelope(WireModel):
    succeeded: bool = Field(False, validation_alias=AliasChoices("Succeeded", "succeeded"))
    result: Any = Field(None, validation_alias=AliasChoices("Result", "result"))
    errors: Annotated[list[str], BeforeValidator(_strings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("Errors", "errors")
    )

    @property
    def error_message(self) -> str:
        return ", ".join(self.errors)


class PageRead(WireModel):
    values: Annotated[list[dict], BeforeValidator(_mappings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("Values", "values")
    )
    page_number: int = Field(1, validation_alias=AliasChoices("PageNumber", "pageNumber"))
    page_size: int = Field(0, validation_alias=AliasChoices("PageSize", "pageSize"))
    total_count: int = Field(0, validation_alias=AliasChoices("TotalCount", "totalCount"))
    has_previous: bool = Field(False, validation_alias=AliasChoices("HasPrevious", "hasPrevious"))
    has_next: bool = Field(False, validation_alias=AliasChoices("HasNext", "hasNext"))


class SubjectRead(WireModel):
    id: str | None = Field(None, validation_alias=AliasChoices("Id", "id"))
    name: str = Field("", validation_alias=AliasChoices("SubjectName", "subjectName", "Name", "name"))


class TopicRead(WireModel):
    id: str | None = Field(None, validation_alias=AliasChoices("Id", "id"))
    name: str = Field("", validation_alias=AliasChoices("TopicName", "topicName", "Name", "name"))


class TopicGroupRead(WireModel):
    topics: Annotated[list[TopicRead], BeforeValidator(_mappings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("Topics", "topics")
    )


class AnswerOptionRead(WireModel):
    id: str | None = Field(
        None,
        validation_alias=AliasChoices(
            "UserQuestionAnswerId", "userQuestionAnswerId", "AnswerId", "answerId", "Id", "id"
        ),
    )
    text: str = Field("", validation_alias=AliasChoices("AnswerText", "answerText", "Text", "text"))


class UserQuestionRead(WireModel):
    id: str | None = Field(
        None, validation_alias=AliasChoices("UserQuestionId", "userQuestionId", "Id", "id")
    )
    text: str = Field("", validation_alias=AliasChoices("QuestionText", "questionText"))
    image_url: str | None = Field(
        None, validation_alias=AliasChoices("QuestionImageUrl", "questionImageUrl", "Image", "image")
    )
    subject_name: str | None = Field(None, validation_alias=AliasChoices("SubjectName", "subjectName"))
    options: Annotated[list[AnswerOptionRead], BeforeValidator(_mappings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("UserQuestionAnswers", "userQuestionAnswers")
    )


class SubjectBlockRead(WireModel):
    subject_name: str | None = Field(None, validation_alias=AliasChoices("SubjectName", "subjectName"))
    questions: Annotated[list[UserQuestionRead], BeforeValidator(_mappings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("UserQuestions", "userQuestions")
    )


class GroupedStartRead(WireModel):
    id: str | None = Field(None, validation_alias=AliasChoices("Id", "id", "UserTestId", "userTestId"))
    subjects: Annotated[list[SubjectBlockRead], BeforeValidator(_mappings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("Subjects", "subjects")
    )


class MixedStartRead(WireModel):
    id: str | None = Field(
        None, validation_alias=AliasChoices("Id", "id", "TestProcessId", "testProcessId")
    )
    questions: Annotated[list[UserQuestionRead], BeforeValidator(_mappings_only)] = Field(
        default_factory=list, validation_alias=AliasChoices("UserQuestions", "userQuestions")
    )


class FinishResultRead(WireModel):
    correct_answers: int = Field(
        0, validation_alias=AliasChoices("CorrectAnswers", "correctAnswers", "Correct", "correct")
    )
    wrong_answers: int = Field(
        0, validation_alias=AliasChoices("WrongAnswers", "wrongAnswers", "Incorrect", "incorrect")
    )
    total_questions: int = Field(0, validation_alias=AliasChoices("TotalQuestions", "totalQuestions"))
    score: float = Field(
        0,
        validation_alias=AliasChoices(
            "Score", "score", "PercentageOfCorrectAnswers", "percentageOfCorrectAnswers"
        ),
    )
    total_score: float | None = Field(None, validation_alias=AliasChoices("TotalScore", "totalScore"))


class ResultHistoryItemRead(WireModel):
    total_questions: int = Field(0, validation_alias=AliasChoices("TotalQuestions", "totalQuestions"))
    correct_answers: int = Field(
        0, validation_alias=AliasChoices("CorrectAnswers", "correctAnswers", "Correct", "correct")
    )
    incorrect_answers: int = Field(
        0,
        validation_alias=AliasChoices("IncorrectAnswers", "incorrectAnswers", "Incorrect", "incorrect"),
    )
    percentage: float = Field(
        0, validation_alias=AliasChoices("PercentageOfCorrectAnswers", "percentageOfCorrectAnswers")
    )
    total_score: float = Field(0, validation_alias=AliasChoices("TotalScore", "totalScore"))
