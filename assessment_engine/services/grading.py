"""Grading join: the per-assessment roster a facilitator grades from.

build_roster() is a pure left join of students onto submissions through
the identity normalizer and the latest-wins rule.  It emits exactly one row
per rostered student, in input order, so the same inputs always produce the
same rows.

GradingService.submit_grade() is the write side.  A grade is an upsert of
the one authoritative record, never an append:

  quiz        create-or-update the attempt for (quiz, student)
  assignment  update the existing submission; grading a student who never
              turned anything in is refused before any network call
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Any

from assessment_engine.backend.base import AssessmentBackend
from assessment_engine.core.errors import (
    AuthError,
    BackendError,
    Forbidden,
    InvalidGrade,
    NoSubmissionFound,
    ReconciliationGap,
    SubmitConflict,
)
from assessment_engine.core.metrics import GRADE_WRITES, RECONCILIATION_GAPS
from assessment_engine.models.actor import Actor, Role, coerce_actor
from assessment_engine.models.assessment import AssessmentKind
from assessment_engine.models.grading import GradingRow
from assessment_engine.models.submission import SubmissionRecord, submission_from_payload
from assessment_engine.services.coercion import as_number, canonical_id
from assessment_engine.services.entity_index import pick_authoritative

logger = logging.getLogger(__name__)


def _as_records(
    kind: AssessmentKind, submissions: Iterable[Any] | None
) -> list[SubmissionRecord]:
    records: list[SubmissionRecord] = []
    for item in submissions or ():
        if isinstance(item, SubmissionRecord):
            if item.kind is kind:
                records.append(item)
        else:
            records.append(submission_from_payload(kind, item))
    return records


def latest_by_student(
    kind: AssessmentKind,
    assessment_id: Any,
    submissions: Iterable[Any] | None,
) -> dict[str, SubmissionRecord]:
    """Authoritative record per student for one assessment."""
    target = canonical_id(assessment_id)
    grouped: dict[str, list[SubmissionRecord]] = {}
    skipped = 0
    if target is None:
        return {}
    for record in _as_records(kind, submissions):
        record_assessment = record.assessment_id
        student_id = record.student_id
        if record_assessment is None or student_id is None:
            skipped += 1
            continue
        if record_assessment != target:
            continue
        grouped.setdefault(student_id, []).append(record)
    if skipped:
        RECONCILIATION_GAPS.labels(kind="submission").inc(skipped)
        gap = ReconciliationGap(
            "submission", f"{skipped} {kind.value} records for assessment={target}"
        )
        logger.warning("Skipped %s", gap)
    return {
        student_id: winner
        for student_id, group in grouped.items()
        if (winner := pick_authoritative(group)) is not None
    }


def _as_student(raw: Any) -> Actor | None:
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        student_id = canonical_id(raw)
        if student_id is None:
            return None
        return Actor(id=student_id, display_name=student_id, role=Role.STUDENT)
    return coerce_actor(raw)


def build_roster(
    students: Iterable[Any],
    assessment_id: Any,
    assessment_kind: AssessmentKind | str,
    submissions: Iterable[Any] | None,
    *,
    search: str | None = None,
) -> list[GradingRow]:
    """One GradingRow per rostered student, in input order.

    ``students`` may hold Actors, raw user payloads or bare student ids
    (rostered under the id as display name).  Anything that is not a
    Student is left out, as is anyone ``search`` does not match.
    """
    kind = AssessmentKind.parse(assessment_kind)
    latest = latest_by_student(kind, assessment_id, submissions)

    rows: list[GradingRow] = []
    seen: set[str] = set()
    for raw in students or ():
        student = _as_student(raw)
        if student is None or not student.is_student or student.id in seen:
            continue
        if not student.matches(search):
            continue
        seen.add(student.id)
        record = latest.get(student.id)
        rows.append(
            GradingRow(
                student=student,
                has_submitted=record is not None,
                score=record.score if record is not None else None,
                submission=record,
            )
        )
    return rows


def validate_score(score: Any, total_marks: Any = None) -> int | float:
    number = as_number(score)
    if number is None or not math.isfinite(number):
        raise InvalidGrade(f"score must be a finite number (got {score!r})")
    if number < 0:
        raise InvalidGrade(f"score must not be negative (got {number})")
    limit = as_number(total_marks)
    if limit is not None and number > limit:
        raise InvalidGrade(f"score {number} exceeds total marks {limit}")
    return number


class GradingService:
    def __init__(self, backend: AssessmentBackend) -> None:
        self._backend = backend

    async def submit_grade(
        self,
        kind: AssessmentKind | str,
        assessment_id: Any,
        student_id: Any,
        new_score: Any,
        feedback: str | None,
        *,
        submissions: Iterable[Any] | None,
        total_marks: Any = None,
        grader_id: str | None = None,
    ) -> dict[str, Any]:
        """Write one grade.  Returns the backend's stored record.

        Raises InvalidGrade, NoSubmissionFound (assignments only, no
        network call), SubmitConflict on transport/server failure.  Auth
        errors and Forbidden propagate untouched.
        """
        kind = AssessmentKind.parse(kind)
        aid = canonical_id(assessment_id)
        sid = canonical_id(student_id)
        try:
            if aid is None or sid is None:
                raise InvalidGrade("assessment id and student id are required")
            score = validate_score(new_score, total_marks)
        except InvalidGrade:
            GRADE_WRITES.labels(kind=kind.value, outcome="invalid").inc()
            raise

        text = (feedback or "").strip()

        try:
            if kind is AssessmentKind.QUIZ:
                stored = await self._backend.upsert_quiz_grade(aid, sid, score, text)
            else:
                current = latest_by_student(kind, aid, submissions).get(sid)
                submission_id = current.record_id if current is not None else None
                if submission_id is None:
                    GRADE_WRITES.labels(kind=kind.value, outcome="no_submission").inc()
                    raise NoSubmissionFound(aid, sid)
                stored = await self._backend.upsert_assignment_grade(
                    submission_id, score, text, grader_id=grader_id
                )
        except (AuthError, Forbidden):
            raise
        except BackendError as exc:
            GRADE_WRITES.labels(kind=kind.value, outcome="conflict").inc()
            logger.warning(
                "Grade write failed kind=%s assessment=%s student=%s: %s",
                kind.value,
                aid,
                sid,
                exc,
            )
            raise SubmitConflict(f"grade write failed: {exc}") from exc

        GRADE_WRITES.labels(kind=kind.value, outcome="ok").inc()
        logger.info(
            "Grade stored kind=%s assessment=%s student=%s score=%s",
            kind.value,
            aid,
            sid,
            score,
        )
        return stored
