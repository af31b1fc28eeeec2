"""In-process LMS backend.

InMemoryLmsStore holds the collections as plain payload dicts, shaped the
way the REST backend returns them, and implements the server-side rules
the engine relies on:

  - quiz answers are graded here, never on the client
  - a quiz grade is an upsert keyed on (quiz, student)
  - grading an unknown submission is a 404

InMemoryBackend wraps a store behind the AssessmentBackend protocol for
tests.  It records every call and can be told to fail or to hold a given
operation, which is how the partial-failure and stale-response paths are
exercised.  create_stub_app() in stub_server.py serves the same store over
HTTP.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from datetime import UTC, datetime
from typing import Any

from assessment_engine.core.errors import BackendError, Unauthorized
from assessment_engine.models.assessment import DEFAULT_TOTAL_MARKS, AssessmentKind
from assessment_engine.services.coercion import as_number, canonical_id
from assessment_engine.services.identity import resolve_id, resolve_ref

logger = logging.getLogger(__name__)

_ASSESSMENTS = {AssessmentKind.QUIZ: "quizzes", AssessmentKind.ASSIGNMENT: "assignments"}
_SUBMISSIONS = {
    AssessmentKind.QUIZ: "quiz_attempts",
    AssessmentKind.ASSIGNMENT: "assignment_submissions",
}


class NotFound(BackendError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


def _normalize_answer(value: Any) -> str:
    canonical = canonical_id(value)
    return canonical.lower() if canonical is not None else ""


class InMemoryLmsStore:
    def __init__(self) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = {
            "courses": [],
            "modules": [],
            "lessons": [],
            "quizzes": [],
            "assignments": [],
            "quiz_attempts": [],
            "assignment_submissions": [],
            "users": [],
            "enrollments": [],
            "messages": [],
        }
        # quiz id → question payloads, including correctAnswer
        self.questions: dict[str, list[dict[str, Any]]] = {}
        self._ids = itertools.count(1000)

    def next_id(self) -> int:
        return next(self._ids)

    def add(self, collection: str, *records: dict[str, Any]) -> None:
        self.collections[collection].extend(records)

    def set_questions(self, quiz_id: Any, questions: list[dict[str, Any]]) -> None:
        self.questions[canonical_id(quiz_id) or ""] = list(questions)

    def records(self, collection: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.collections[collection])

    def public_questions(self, quiz_id: Any) -> list[dict[str, Any]]:
        """Questions as served to learners: answers removed."""
        key = canonical_id(quiz_id)
        if key is None or key not in self.questions:
            raise NotFound(f"quiz {quiz_id} has no questions")
        return [
            {k: v for k, v in q.items() if k != "correctAnswer"}
            for q in self.questions[key]
        ]

    def _find(self, collection: str, record_id: Any) -> dict[str, Any] | None:
        key = canonical_id(record_id)
        for record in self.collections[collection]:
            if key is not None and resolve_id(record) == key:
                return record
        return None

    # -- writes ----------------------------------------------------------

    def grade_attempt(
        self, quiz_id: Any, learner_id: Any, answers: dict[str, Any]
    ) -> dict[str, Any]:
        """Grade a submitted answer map and store it as the learner's attempt."""
        quiz = self._find("quizzes", quiz_id)
        if quiz is None:
            raise NotFound(f"quiz {quiz_id} not found")
        total = as_number(quiz.get("totalMarks")) or DEFAULT_TOTAL_MARKS
        earned = 0.0
        possible = 0.0
        answer_map = {canonical_id(k): v for k, v in (answers or {}).items()}
        for question in self.questions.get(resolve_id(quiz) or "", []):
            points = as_number(question.get("points")) or 1
            possible += points
            expected = question.get("correctAnswer")
            given = answer_map.get(resolve_id(question))
            if expected is not None and _normalize_answer(given) == _normalize_answer(expected):
                earned += points
        score = round(earned / possible * total, 2) if possible else 0
        self.upsert_quiz_grade(quiz_id, learner_id, score, "", answers=answers)
        logger.debug(
            "Graded attempt quiz=%s learner=%s score=%s/%s", quiz_id, learner_id, score, total
        )
        return {"score": score, "totalMarks": total}

    def upsert_quiz_grade(
        self,
        quiz_id: Any,
        student_id: Any,
        score: Any,
        feedback: str,
        *,
        answers: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        quiz_key = canonical_id(quiz_id)
        student_key = canonical_id(student_id)
        now = datetime.now(UTC).isoformat()
        for attempt in self.collections["quiz_attempts"]:
            if (
                resolve_ref(attempt, "assessment") == quiz_key
                and resolve_ref(attempt, "student") == student_key
            ):
                attempt.update(score=score, feedback=feedback, submittedAt=now)
                if answers is not None:
                    attempt["answers"] = dict(answers)
                return copy.deepcopy(attempt)
        attempt = {
            "id": self.next_id(),
            "quizId": quiz_key,
            "studentId": student_key,
            "score": score,
            "feedback": feedback,
            "submittedAt": now,
        }
        if answers is not None:
            attempt["answers"] = dict(answers)
        self.collections["quiz_attempts"].append(attempt)
        return copy.deepcopy(attempt)

    def grade_submission(
        self,
        submission_id: Any,
        score: Any,
        feedback: str,
        grader_id: Any = None,
    ) -> dict[str, Any]:
        submission = self._find("assignment_submissions", submission_id)
        if submission is None:
            raise NotFound(f"submission {submission_id} not found")
        submission.update(grade=score, feedback=feedback, status="GRADED")
        if grader_id is not None:
            submission["graderId"] = grader_id
        return copy.deepcopy(submission)

    def add_message(self, sender_id: Any, receiver_id: Any, content: str) -> dict[str, Any]:
        message = {
            "id": self.next_id(),
            "senderId": canonical_id(sender_id),
            "receiverId": canonical_id(receiver_id),
            "content": content,
            "timestamp": datetime.now(UTC).isoformat(),
            "isRead": False,
        }
        self.collections["messages"].append(message)
        return copy.deepcopy(message)


class InMemoryBackend:
    """AssessmentBackend over an InMemoryLmsStore, with test hooks."""

    def __init__(self, store: InMemoryLmsStore | None = None) -> None:
        self.store = store or InMemoryLmsStore()
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, BaseException] = {}
        self._holds: dict[str, asyncio.Event] = {}
        self.authenticated = True

    # -- test hooks ------------------------------------------------------

    def fail(self, operation: str, exc: BaseException) -> None:
        """Make every later call to ``operation`` raise ``exc``."""
        self._failures[operation] = exc

    def recover(self, operation: str | None = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def hold(self, operation: str) -> asyncio.Event:
        """Block ``operation`` until the returned event is set."""
        event = asyncio.Event()
        self._holds[operation] = event
        return event

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        if not self.authenticated:
            raise Unauthorized(f"{operation} rejected the session token")
        event = self._holds.get(operation)
        if event is not None:
            await event.wait()
        exc = self._failures.get(operation)
        if exc is not None:
            raise exc

    # -- bulk collections ------------------------------------------------

    async def list_courses(self) -> list[dict[str, Any]]:
        await self._enter("list_courses")
        return self.store.records("courses")

    async def list_modules(self) -> list[dict[str, Any]]:
        await self._enter("list_modules")
        return self.store.records("modules")

    async def list_lessons(self) -> list[dict[str, Any]]:
        await self._enter("list_lessons")
        return self.store.records("lessons")

    async def list_assessments(self, kind: AssessmentKind) -> list[dict[str, Any]]:
        await self._enter(f"list_{kind.value}_assessments")
        return self.store.records(_ASSESSMENTS[kind])

    async def list_submissions(self, kind: AssessmentKind) -> list[dict[str, Any]]:
        await self._enter(f"list_{kind.value}_submissions")
        return self.store.records(_SUBMISSIONS[kind])

    async def list_users(self) -> list[dict[str, Any]]:
        await self._enter("list_users")
        return self.store.records("users")

    async def list_enrollments(self) -> list[dict[str, Any]]:
        await self._enter("list_enrollments")
        return self.store.records("enrollments")

    async def list_messages(self) -> list[dict[str, Any]]:
        await self._enter("list_messages")
        return self.store.records("messages")

    async def get_questions(self, test_id: str) -> list[dict[str, Any]]:
        await self._enter("get_questions", test_id)
        return self.store.public_questions(test_id)

    # -- writes ----------------------------------------------------------

    async def submit_attempt(
        self, test_id: str, learner_id: str, answers: dict[str, Any]
    ) -> dict[str, Any]:
        await self._enter("submit_attempt", test_id, learner_id, dict(answers))
        return self.store.grade_attempt(test_id, learner_id, answers)

    async def upsert_quiz_grade(
        self, test_id: str, student_id: str, score: float, feedback: str
    ) -> dict[str, Any]:
        await self._enter("upsert_quiz_grade", test_id, student_id, score, feedback)
        return self.store.upsert_quiz_grade(test_id, student_id, score, feedback)

    async def upsert_assignment_grade(
        self,
        submission_id: str,
        score: float,
        feedback: str,
        *,
        grader_id: str | None = None,
    ) -> dict[str, Any]:
        await self._enter("upsert_assignment_grade", submission_id, score, feedback)
        return self.store.grade_submission(submission_id, score, feedback, grader_id)

    async def send_message(
        self, sender_id: str, receiver_id: str, content: str
    ) -> dict[str, Any]:
        await self._enter("send_message", sender_id, receiver_id, content)
        return self.store.add_message(sender_id, receiver_id, content)
