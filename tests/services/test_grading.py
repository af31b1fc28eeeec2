from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

import pytest

from assessment_engine.backend.memory import InMemoryBackend, InMemoryLmsStore
from assessment_engine.core.errors import (
    BackendUnavailable,
    Forbidden,
    InvalidGrade,
    NoSubmissionFound,
    SubmitConflict,
    Unauthorized,
)
from assessment_engine.models.assessment import AssessmentKind
from assessment_engine.services.grading import (
    GradingService,
    build_roster,
    latest_by_student,
    validate_score,
)
from tests.conftest import FACILITATOR, STUDENT_1, STUDENT_2, sample


def _grade(backend: InMemoryBackend, kind: str, aid: Any, sid: Any, score: Any, **kw: Any) -> Any:
    service = GradingService(backend)
    submissions = kw.pop(
        "submissions",
        backend.store.records(
            "assignment_submissions" if kind == "assignment" else "quiz_attempts"
        ),
    )
    feedback = kw.pop("feedback", None)
    return asyncio.run(
        service.submit_grade(kind, aid, sid, score, feedback, submissions=submissions, **kw)
    )


# ---- roster join ----


def test_scenario_roster_grade_and_rebuild(backend: InMemoryBackend, store: InMemoryLmsStore) -> None:
    rows = build_roster(["S1", "S2"], "A1", "assignment", store.records("assignment_submissions"))
    assert [(r.student.id, r.has_submitted, r.score) for r in rows] == [
        ("S1", True, None),
        ("S2", False, None),
    ]

    with pytest.raises(NoSubmissionFound):
        _grade(backend, "assignment", "A1", "S2", 85)
    assert backend.count("upsert_assignment_grade") == 0

    _grade(backend, "assignment", "A1", "S1", 85, feedback="Well argued")
    rows = build_roster(["S1", "S2"], "A1", "assignment", store.records("assignment_submissions"))
    assert [(r.student.id, r.has_submitted, r.score) for r in rows] == [
        ("S1", True, 85),
        ("S2", False, None),
    ]
    assert rows[0].is_graded
    assert rows[0].submission is not None and rows[0].submission.feedback == "Well argued"


def test_roster_keeps_input_order_and_drops_non_students() -> None:
    users = [STUDENT_2, FACILITATOR, STUDENT_1, STUDENT_2, {"name": "no id", "role": "STUDENT"}]
    rows = build_roster(users, "A1", AssessmentKind.ASSIGNMENT, [])
    assert [r.student.id for r in rows] == ["S2", "S1"]


def test_roster_search_matches_name_or_email() -> None:
    rows = build_roster([STUDENT_1, STUDENT_2], "A1", "assignment", [], search="SUE@")
    assert [r.student.id for r in rows] == ["S2"]


def test_roster_survives_failed_submission_fetch() -> None:
    rows = build_roster(["S1", "S2"], "A1", "assignment", None)
    assert len(rows) == 2
    assert not any(r.has_submitted for r in rows)


def test_roster_uses_latest_submission_regardless_of_order() -> None:
    early = {"id": 1, "assignmentId": "A1", "studentId": "S1", "grade": 40, "submissionDate": "2026-10-01T00:00:00Z"}
    late = {"id": 2, "assignment": {"id": "A1"}, "student": {"id": "S1"}, "grade": 90, "submissionDate": "2026-10-02T00:00:00Z"}
    for submissions in ([early, late], [late, early]):
        (row,) = build_roster(["S1"], "A1", "assignment", submissions)
        assert row.score == 90


def test_roster_is_idempotent(store: InMemoryLmsStore) -> None:
    args = (["S1", "S2"], "A1", "assignment", store.records("assignment_submissions"))
    assert build_roster(*args) == build_roster(*args)


def test_quiz_roster_unifies_score_field() -> None:
    attempts = [{"id": 7, "quizId": "Q1", "learnerId": "S1", "score": "8"}]
    (row,) = build_roster(["S1"], "Q1", "quiz", attempts)
    assert row.has_submitted and row.score == 8


def test_latest_by_student_counts_unresolvable_records(caplog: pytest.LogCaptureFixture) -> None:
    before = sample("reconciliation_gaps_total", {"kind": "submission"})
    with caplog.at_level(logging.WARNING, logger="assessment_engine.services.grading"):
        latest = latest_by_student(
            AssessmentKind.QUIZ,
            "Q1",
            [{"quizId": "Q1"}, {"studentId": "S1"}, {"quizId": "Q2", "studentId": "S1"}],
        )
    assert "unresolvable submission reference: 2 quiz records for assessment=Q1" in caplog.text
    assert latest == {}
    assert sample("reconciliation_gaps_total", {"kind": "submission"}) - before == 2


# ---- score validation ----


def test_validate_score_accepts_numeric_strings() -> None:
    assert validate_score("85", 100) == 85
    assert validate_score(0) == 0


@pytest.mark.parametrize(
    ("score", "total"),
    [(None, 100), ("abc", 100), (-1, 100), (101, 100), (math.inf, None), (True, None)],
)
def test_validate_score_rejects(score: Any, total: Any) -> None:
    with pytest.raises(InvalidGrade):
        validate_score(score, total)


# ---- writes ----


def test_quiz_grade_is_upsert_not_append(backend: InMemoryBackend, store: InMemoryLmsStore) -> None:
    _grade(backend, "quiz", "Q1", "S2", 6)
    _grade(backend, "quiz", "Q1", "S2", 9, feedback="regraded")
    attempts = [a for a in store.collections["quiz_attempts"] if a["studentId"] == "S2"]
    assert len(attempts) == 1
    assert attempts[0]["score"] == 9
    assert attempts[0]["feedback"] == "regraded"


def test_invalid_grade_never_reaches_backend(backend: InMemoryBackend) -> None:
    before = sample("grade_writes_total", {"kind": "quiz", "outcome": "invalid"})
    with pytest.raises(InvalidGrade):
        _grade(backend, "quiz", "Q1", "S1", 11, total_marks=10)
    with pytest.raises(InvalidGrade):
        _grade(backend, "quiz", None, "S1", 5)
    assert backend.count("upsert_quiz_grade") == 0
    assert sample("grade_writes_total", {"kind": "quiz", "outcome": "invalid"}) - before == 2


def test_backend_failure_becomes_retryable_conflict(backend: InMemoryBackend) -> None:
    backend.fail("upsert_assignment_grade", BackendUnavailable("timeout"))
    before = sample("grade_writes_total", {"kind": "assignment", "outcome": "conflict"})
    with pytest.raises(SubmitConflict) as exc_info:
        _grade(backend, "assignment", "A1", "S1", 70)
    assert exc_info.value.retryable is True
    assert sample("grade_writes_total", {"kind": "assignment", "outcome": "conflict"}) - before == 1

    backend.recover()
    stored = _grade(backend, "assignment", "A1", "S1", 70)
    assert stored["grade"] == 70
    assert stored["status"] == "GRADED"


@pytest.mark.parametrize("exc", [Unauthorized("expired"), Forbidden("nope", status_code=403)])
def test_auth_and_forbidden_propagate_untouched(backend: InMemoryBackend, exc: Exception) -> None:
    backend.fail("upsert_quiz_grade", exc)
    with pytest.raises(type(exc)):
        _grade(backend, "quiz", "Q1", "S1", 5)


def test_assignment_grade_sends_grader(backend: InMemoryBackend, store: InMemoryLmsStore) -> None:
    _grade(backend, "assignment", "A1", "S1", 50, grader_id="F1")
    (submission,) = store.collections["assignment_submissions"]
    assert submission["graderId"] == "F1"
    assert backend.calls[-1] == ("upsert_assignment_grade", ("501", 50, ""))
