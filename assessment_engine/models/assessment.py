from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from assessment_engine.services.coercion import (
    as_bool,
    as_number,
    canonical_id,
    field,
    parse_instant,
)
from assessment_engine.services.identity import resolve_id, resolve_ref

# Quizzes without totalMarks are scored out of 100 by the backend.
DEFAULT_TOTAL_MARKS = 100


class AssessmentKind(str, Enum):
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"

    @classmethod
    def parse(cls, raw: Any) -> AssessmentKind:
        """Accept "quiz"/"test"/"assignment" in any case."""
        if isinstance(raw, cls):
            return raw
        text = str(raw).strip().lower()
        if text in ("quiz", "test", "tests", "quizzes"):
            return cls.QUIZ
        if text in ("assignment", "assignments"):
            return cls.ASSIGNMENT
        raise ValueError(f"unknown assessment kind {raw!r}")


def _text(raw: Any, name: str) -> str:
    value = field(raw, name)
    return value.strip() if isinstance(value, str) else ""


def _marks(raw: Any, default: int | float | None) -> int | float | None:
    for name in ("totalMarks", "totalPoints", "maxScore"):
        number = as_number(field(raw, name))
        if number is not None:
            return number
    return default


@dataclass(frozen=True, slots=True)
class Test:
    id: str
    module_id: str | None
    course_id: str | None
    title: str = ""
    total_marks: int | float = DEFAULT_TOTAL_MARKS
    timed: bool = False
    time_limit_minutes: int | None = None

    kind = AssessmentKind.QUIZ

    @staticmethod
    def from_payload(raw: Any) -> Test | None:
        test_id = resolve_id(raw)
        if test_id is None:
            return None
        limit = as_number(field(raw, "timeLimitInMinutes"))
        if limit is None:
            limit = as_number(field(raw, "timeLimitMinutes"))
        if limit is None:
            limit = as_number(field(raw, "duration"))
        limit_minutes = int(limit) if limit and limit > 0 else None
        timed = as_bool(field(raw, "timed"), default=limit_minutes is not None)
        return Test(
            id=test_id,
            module_id=resolve_ref(raw, "module"),
            course_id=resolve_ref(raw, "course"),
            title=_text(raw, "title"),
            total_marks=_marks(raw, DEFAULT_TOTAL_MARKS),  # type: ignore[arg-type]
            timed=timed and limit_minutes is not None,
            time_limit_minutes=limit_minutes,
        )


@dataclass(frozen=True, slots=True)
class Assignment:
    id: str
    module_id: str | None
    course_id: str | None
    title: str = ""
    total_marks: int | float | None = None
    due_date: datetime | None = None
    file_url: str = ""
    is_active: bool = True

    kind = AssessmentKind.ASSIGNMENT

    def is_open(self, now: datetime) -> bool:
        return self.is_active and self.due_date is not None and self.due_date > now

    @staticmethod
    def from_payload(raw: Any) -> Assignment | None:
        assignment_id = resolve_id(raw)
        if assignment_id is None:
            return None
        return Assignment(
            id=assignment_id,
            module_id=resolve_ref(raw, "module"),
            course_id=resolve_ref(raw, "course"),
            title=_text(raw, "title"),
            total_marks=_marks(raw, None),
            due_date=parse_instant(field(raw, "dueDate")),
            file_url=_text(raw, "fileUrl"),
            is_active=as_bool(field(raw, "isActive"), default=True),
        )


Assessment = Test | Assignment


def assessment_from_payload(kind: AssessmentKind, raw: Any) -> Assessment | None:
    if kind is AssessmentKind.QUIZ:
        return Test.from_payload(raw)
    return Assignment.from_payload(raw)


# ---------------------------------------------------------------------------
# Wire results (validated from backend responses)
# ---------------------------------------------------------------------------


class QuestionOption(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    text: str = Field(default="", validation_alias=AliasChoices("text", "optionText"))

    @field_validator("id", mode="before")
    @classmethod
    def _canonical_option_id(cls, value: Any) -> str | None:
        return canonical_id(value)


class Question(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    text: str = Field(
        default="", validation_alias=AliasChoices("text", "questionText", "prompt")
    )
    type: str = Field(
        default="SHORT_ANSWER", validation_alias=AliasChoices("type", "questionType")
    )
    options: list[QuestionOption] = Field(default_factory=list)
    points: float = 1

    @field_validator("id", mode="before")
    @classmethod
    def _canonical_id(cls, value: Any) -> str:
        canonical = canonical_id(value)
        if canonical is None:
            raise ValueError("question id is required")
        return canonical

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> str:
        return str(value or "SHORT_ANSWER").strip().upper()

    @field_validator("options", mode="before")
    @classmethod
    def _plain_options(cls, value: Any) -> list[Any]:
        # Options come as bare strings or as {id, text|optionText} objects.
        if not isinstance(value, list):
            return []
        return [{"text": o} if isinstance(o, str) else o for o in value]

    @property
    def is_auto_graded(self) -> bool:
        return self.type in ("MULTIPLE_CHOICE", "TRUE_FALSE")


class QuizResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    score: float
    total_marks: float = Field(
        validation_alias=AliasChoices("totalMarks", "total_marks", "maxScore")
    )

    @property
    def percentage(self) -> int:
        if self.total_marks <= 0:
            return 0
        return round(self.score / self.total_marks * 100)
