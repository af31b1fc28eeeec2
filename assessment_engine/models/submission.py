"""Submission records: quiz attempts and assignment submissions.

The raw payload is kept exactly as received.  Foreign keys are resolved
through the identity normalizer every time they are read, so a record can
be re-interpreted after a normalizer change without re-fetching, and the
source data is never mutated.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from assessment_engine.models.assessment import AssessmentKind
from assessment_engine.services.coercion import as_number, field, parse_instant
from assessment_engine.services.identity import resolve_id, resolve_ref

_SUBMITTED_AT_FIELDS = (
    "submittedAt",
    "submissionDate",
    "submitted_at",
    "completedAt",
    "date",
    "createdAt",
)


@dataclass(frozen=True, slots=True)
class SubmissionRecord:
    raw: Any

    kind = AssessmentKind.QUIZ

    @property
    def assessment_id(self) -> str | None:
        return resolve_ref(self.raw, "assessment")

    @property
    def student_id(self) -> str | None:
        return resolve_ref(self.raw, "student")

    @property
    def record_id(self) -> str | None:
        return resolve_id(self.raw)

    @property
    def score(self) -> int | float | None:
        score = as_number(field(self.raw, "score"))
        return score if score is not None else as_number(field(self.raw, "grade"))

    @property
    def feedback(self) -> str | None:
        value = field(self.raw, "feedback")
        return value if isinstance(value, str) else None

    @property
    def submitted_at(self) -> datetime | None:
        for name in _SUBMITTED_AT_FIELDS:
            instant = parse_instant(field(self.raw, name))
            if instant is not None:
                return instant
        return None

    @property
    def is_graded(self) -> bool:
        return self.score is not None

    def fingerprint(self) -> str:
        """Stable text form of the payload, used as the last ordering tie-break."""
        try:
            return json.dumps(self.raw, sort_keys=True, default=str)
        except (TypeError, ValueError):
            return repr(self.raw)


@dataclass(frozen=True, slots=True)
class QuizAttempt(SubmissionRecord):
    kind = AssessmentKind.QUIZ

    @property
    def total_marks(self) -> int | float | None:
        return as_number(field(self.raw, "totalMarks"))


@dataclass(frozen=True, slots=True)
class AssignmentSubmission(SubmissionRecord):
    kind = AssessmentKind.ASSIGNMENT

    @property
    def status(self) -> str:
        value = field(self.raw, "status")
        return value.strip().upper() if isinstance(value, str) else ""

    @property
    def file_url(self) -> str:
        value = field(self.raw, "fileUrl")
        return value if isinstance(value, str) else ""

    @property
    def is_graded(self) -> bool:
        return self.status == "GRADED" or self.score is not None


def submission_from_payload(kind: AssessmentKind, raw: Any) -> SubmissionRecord:
    if kind is AssessmentKind.QUIZ:
        return QuizAttempt(raw)
    return AssignmentSubmission(raw)
