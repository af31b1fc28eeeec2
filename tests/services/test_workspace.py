from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from assessment_engine.backend.memory import InMemoryBackend
from assessment_engine.core.errors import (
    BackendUnavailable,
    InvalidMessage,
    NoSubmissionFound,
    NotVisible,
    SessionExpired,
    Unauthorized,
)
from assessment_engine.services.quiz_session import SessionState
from assessment_engine.services.session_context import SessionContext
from assessment_engine.services.workspace import Workspace
from tests.conftest import (
    ADMIN,
    FACILITATOR,
    NOW,
    OTHER_FACILITATOR,
    STUDENT_1,
    STUDENT_2,
    login,
    open_workspace,
)


def _roster(ws: Workspace, kind: str, aid: str) -> list[tuple[str, bool, object]]:
    return [(r.student.id, r.has_submitted, r.score) for r in ws.grading_roster(kind, aid)]


# ---- browsing ----


def test_facilitator_browses_owned_courses_only(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, FACILITATOR)
    assert [c.id for c in ws.visible_courses()] == ["C1"]
    assert [m.id for m in ws.visible_modules()] == ["M1"]
    assert [a.id for a in ws.visible_assessments()] == ["Q1", "A1"]
    assert [a.id for a in ws.visible_assessments("assignment")] == ["A1"]


def test_nested_facilitator_reference_is_honoured(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, OTHER_FACILITATOR)
    assert [c.id for c in ws.visible_courses()] == ["C2"]
    assert [a.id for a in ws.visible_assessments("quiz")] == ["Q2"]


def test_admin_sees_everything(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, ADMIN)
    assert [c.id for c in ws.visible_courses()] == ["C1", "C2"]


def test_student_lessons_exclude_assessment_items(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, STUDENT_1)
    assert [x.id for x in ws.visible_lessons()] == ["L1"]


# ---- grading ----


def test_grading_scenario_end_to_end(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, FACILITATOR)
    assert _roster(ws, "assignment", "A1") == [("S1", True, None), ("S2", False, None)]

    with pytest.raises(NoSubmissionFound):
        asyncio.run(ws.submit_grade("assignment", "A1", "S2", 85))
    assert backend.count("upsert_assignment_grade") == 0

    asyncio.run(ws.submit_grade("assignment", "A1", "S1", 85, "Good structure"))
    assert _roster(ws, "assignment", "A1") == [("S1", True, 85), ("S2", False, None)]
    assert backend.calls[-1][0] == "list_assignment_submissions"


def test_quiz_grade_creates_attempt_for_student(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, FACILITATOR)
    assert _roster(ws, "quiz", "Q1") == [("S1", False, None), ("S2", False, None)]
    asyncio.run(ws.submit_grade("quiz", "Q1", "S2", 7))
    assert _roster(ws, "quiz", "Q1") == [("S1", False, None), ("S2", True, 7)]


def test_grading_out_of_scope_assessment_is_refused(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, FACILITATOR)
    with pytest.raises(NotVisible):
        ws.grading_roster("assignment", "A2")
    with pytest.raises(NotVisible):
        asyncio.run(ws.submit_grade("assignment", "A2", "S3", 10))
    with pytest.raises(NotVisible):
        ws.grading_roster("assignment", "A404")


def test_roster_search(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, FACILITATOR)
    rows = ws.grading_roster("assignment", "A1", search="sue")
    assert [r.student.id for r in rows] == ["S2"]


def test_roster_with_failed_submission_fetch(backend: InMemoryBackend) -> None:
    backend.fail("list_assignment_submissions", BackendUnavailable("timeout"))
    ws = open_workspace(backend, FACILITATOR)
    assert ws.snapshot.failed == {"assignment_submissions"}
    assert _roster(ws, "assignment", "A1") == [("S1", False, None), ("S2", False, None)]


# ---- quizzes ----


def test_student_takes_quiz_once(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, STUDENT_2)
    session = asyncio.run(ws.start_quiz("Q1", now=NOW))
    assert session.state is SessionState.IN_PROGRESS
    session.answer("1", "4")
    session.answer("2", "True")
    result = asyncio.run(ws.submit_quiz(session, confirmed=True))
    assert result is not None and result.percentage == 100

    again = asyncio.run(ws.start_quiz("Q1", now=NOW))
    assert again.state is SessionState.COMPLETED
    assert again.result is not None and again.result.score == 10
    assert backend.count("get_questions") == 1

    summary = ws.grade_summary()
    assert summary.test_average == pytest.approx(100.0)


def test_student_cannot_open_quiz_outside_enrollment(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, STUDENT_2)
    with pytest.raises(NotVisible):
        asyncio.run(ws.start_quiz("Q2"))


# ---- notifications / reports / messaging ----


def test_notifications_for_student(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, STUDENT_2)
    items = ws.notifications(NOW)
    assert [(i.id, i.kind) for i in items] == [("due:A1", "warning")]

    ws.overlay.mark_read("due:A1")
    assert ws.notifications(NOW)[0].is_read


def test_graded_submission_notifies_student(backend: InMemoryBackend) -> None:
    facilitator = open_workspace(backend, FACILITATOR)
    asyncio.run(facilitator.submit_grade("assignment", "A1", "S1", 85))

    student = open_workspace(backend, STUDENT_1)
    ids = {i.id for i in student.notifications(NOW)}
    assert "graded:assignment:501" in ids
    assert "due:A1" not in ids


def test_message_round_trip(backend: InMemoryBackend) -> None:
    facilitator = open_workspace(backend, FACILITATOR)
    sent = asyncio.run(facilitator.send_message("S2", "  Please submit A1  "))
    assert sent is not None
    assert (sent.sender_id, sent.receiver_id, sent.content) == ("F1", "S2", "Please submit A1")

    student = open_workspace(backend, STUDENT_2)
    bundle = [i for i in student.notifications(NOW) if i.id.startswith("messages:")]
    assert len(bundle) == 1
    assert bundle[0].message == "You have 1 unread message"


@pytest.mark.parametrize(("receiver", "content"), [("S2", "   "), (None, "hello"), ("S2", None)])
def test_invalid_messages_are_rejected(
    backend: InMemoryBackend, receiver: object, content: object
) -> None:
    ws = open_workspace(backend, FACILITATOR)
    with pytest.raises(InvalidMessage):
        asyncio.run(ws.send_message(receiver, content))  # type: ignore[arg-type]
    assert backend.count("send_message") == 0


def test_failed_messages_collection_silences_only_message_rule(backend: InMemoryBackend) -> None:
    backend.fail("list_messages", BackendUnavailable("down"))
    ws = open_workspace(backend, STUDENT_2)
    assert [i.id for i in ws.notifications(NOW)] == ["due:A1"]


def test_students_only_see_their_own_grade_summary(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, STUDENT_1)
    assert ws.grade_summary().student_id == "S1"
    with pytest.raises(NotVisible):
        ws.grade_summary("S2")
    assert open_workspace(backend, FACILITATOR).grade_summary("S2").student_id == "S2"


# ---- session lifecycle ----


def test_logged_out_workspace_refuses_to_load(backend: InMemoryBackend) -> None:
    ws = Workspace(backend, SessionContext())
    with pytest.raises(Unauthorized):
        asyncio.run(ws.load())
    assert backend.calls == []


def test_expired_session_fails_fast(backend: InMemoryBackend) -> None:
    ws = Workspace(backend, login(STUDENT_1, ttl=timedelta(seconds=-1)))
    with pytest.raises(SessionExpired):
        asyncio.run(ws.load())
    assert backend.calls == []


def test_backend_rejecting_token_surfaces_unauthorized(backend: InMemoryBackend) -> None:
    ws = open_workspace(backend, STUDENT_1)
    backend.authenticated = False
    with pytest.raises(Unauthorized):
        asyncio.run(ws.load())
