"""Demo: walk the grading flow against the stub LMS backend over HTTP.

Run with:
    python scripts/demo_grading_flow.py
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx

from assessment_engine.backend.http import HttpBackend
from assessment_engine.backend.memory import InMemoryLmsStore
from assessment_engine.backend.stub_server import create_stub_app, mint_token
from assessment_engine.core.config import SETTINGS
from assessment_engine.core.errors import NoSubmissionFound
from assessment_engine.core.logging import setup_logging
from assessment_engine.services.session_context import SessionContext
from assessment_engine.services.workspace import Workspace

SECRET = "demo-secret"
BASE_URL = "http://stub/api"

FACILITATOR = {"id": "F1", "name": "Fran Facilitator", "role": "FACILITATOR"}
STUDENT_1 = {"id": "S1", "name": "Sam One", "role": "STUDENT"}
STUDENT_2 = {"id": "S2", "name": "Sue Two", "role": "STUDENT"}


def seed(store: InMemoryLmsStore) -> None:
    store.add("users", FACILITATOR, STUDENT_1, STUDENT_2)
    store.add("courses", {"id": "C1", "title": "Intro to Data", "facilitatorId": "F1"})
    store.add("modules", {"id": "M1", "courseId": "C1", "title": "Basics"})
    store.add(
        "assignments",
        {"id": "A1", "moduleId": "M1", "title": "Essay", "totalMarks": 100},
    )
    store.add(
        "quizzes",
        {"id": "Q1", "moduleId": "M1", "title": "Checkpoint", "totalMarks": 10},
    )
    store.set_questions(
        "Q1",
        [
            {"id": 1, "text": "2 + 2?", "type": "MULTIPLE_CHOICE", "correctAnswer": "4"},
            {"id": 2, "text": "Sky is blue", "type": "TRUE_FALSE", "correctAnswer": "True"},
        ],
    )
    store.add(
        "enrollments",
        {"studentId": "S1", "courseId": "C1"},
        {"student": {"id": "S2"}, "course": {"id": "C1"}},
    )
    store.add(
        "assignment_submissions",
        {"id": 501, "assignmentId": "A1", "studentId": "S1", "fileUrl": "f1"},
    )


def session_for(payload: dict[str, str]) -> SessionContext:
    ctx = SessionContext()
    ctx.login(mint_token(SECRET, sub=payload["id"], role=payload["role"]), payload)
    return ctx


def print_roster(ws: Workspace, kind: str, assessment_id: str) -> None:
    for row in ws.grading_roster(kind, assessment_id):
        print(
            f"     {row.student.id}  {row.student.display_name:<10}"
            f"  submitted={row.has_submitted!s:<5}  score={row.score}"
        )


async def run() -> None:
    store = InMemoryLmsStore()
    seed(store)
    transport = httpx.ASGITransport(app=create_stub_app(store, SECRET))
    now = datetime.now(UTC)

    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        # ── Step 1: facilitator loads the workspace ─────────────────────
        session = session_for(FACILITATOR)
        facilitator = Workspace(HttpBackend(session, client=client), session)
        await facilitator.load()
        courses = [c.id for c in facilitator.visible_courses()]
        print(f"1. Facilitator loaded       → courses={courses}")

        # ── Step 2: assignment roster ───────────────────────────────────
        print("2. Roster for A1")
        print_roster(facilitator, "assignment", "A1")

        # ── Step 3: grading a student with no submission ────────────────
        try:
            await facilitator.submit_grade("assignment", "A1", "S2", 85)
        except NoSubmissionFound as e:
            print(f"3. Grade S2 on A1           → refused  ({e})")

        # ── Step 4: grading the submitted work ──────────────────────────
        await facilitator.submit_grade("assignment", "A1", "S1", 85, "Good structure")
        print("4. Grade S1 on A1           → stored")
        print_roster(facilitator, "assignment", "A1")

        # ── Step 5: student takes the quiz ──────────────────────────────
        student_session = session_for(STUDENT_2)
        student = Workspace(HttpBackend(student_session, client=client), student_session)
        await student.load()
        quiz = await student.start_quiz("Q1")
        quiz.answer(1, "4")
        quiz.answer(2, "False")
        result = await student.submit_quiz(quiz, confirmed=True)
        assert result is not None
        print(
            f"5. S2 submitted Q1          → {result.score}/{result.total_marks}"
            f"  ({result.percentage:.0f}%)"
        )

        # ── Step 6: reopening the quiz shows the stored result ──────────
        again = await student.start_quiz("Q1")
        print(f"6. S2 reopens Q1            → state={again.state.value}")

        # ── Step 7: student notifications and grade summary ─────────────
        s1_session = session_for(STUDENT_1)
        s1 = Workspace(HttpBackend(s1_session, client=client), s1_session)
        await s1.load()
        for item in s1.notifications(now):
            print(f"7. S1 notification          → [{item.kind}] {item.message}")
        summary = s1.grade_summary()
        print(
            f"8. S1 grade summary         → overall={summary.overall_average}"
            f"  letter={summary.letter}"
        )

    print("\nAll steps completed.")


def main() -> None:
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run())


if __name__ == "__main__":
    main()
