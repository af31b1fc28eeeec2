"""The backend collaborator, as seen by the engine.

Every method is a coroutine: the network boundary is the only place the
engine suspends.  List methods return raw payload dicts exactly as the
server sent them; normalization happens in the engine, not here.

Errors raised by implementations:

  Unauthorized        401 / missing or rejected token
  Forbidden           403
  BackendError        any other non-2xx (status_code set)
  BackendUnavailable  timeout or transport failure (retryable)
"""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

from assessment_engine.models.assessment import AssessmentKind

Collection = Literal[
    "courses",
    "modules",
    "lessons",
    "quizzes",
    "assignments",
    "quiz_attempts",
    "assignment_submissions",
    "users",
    "enrollments",
    "messages",
]

COLLECTIONS: tuple[Collection, ...] = (
    "courses",
    "modules",
    "lessons",
    "quizzes",
    "assignments",
    "quiz_attempts",
    "assignment_submissions",
    "users",
    "enrollments",
    "messages",
)


@runtime_checkable
class AssessmentBackend(Protocol):
    async def list_courses(self) -> list[dict[str, Any]]: ...
    async def list_modules(self) -> list[dict[str, Any]]: ...
    async def list_lessons(self) -> list[dict[str, Any]]: ...
    async def list_assessments(self, kind: AssessmentKind) -> list[dict[str, Any]]: ...
    async def list_submissions(self, kind: AssessmentKind) -> list[dict[str, Any]]: ...
    async def list_users(self) -> list[dict[str, Any]]: ...
    async def list_enrollments(self) -> list[dict[str, Any]]: ...
    async def list_messages(self) -> list[dict[str, Any]]: ...

    async def get_questions(self, test_id: str) -> list[dict[str, Any]]: ...

    async def submit_attempt(
        self, test_id: str, learner_id: str, answers: dict[str, Any]
    ) -> dict[str, Any]:
        """Submit a full answer map; the server grades and returns {score, totalMarks}."""
        ...

    async def upsert_quiz_grade(
        self, test_id: str, student_id: str, score: float, feedback: str
    ) -> dict[str, Any]:
        """Create or update the single attempt for (test, student)."""
        ...

    async def upsert_assignment_grade(
        self,
        submission_id: str,
        score: float,
        feedback: str,
        *,
        grader_id: str | None = None,
    ) -> dict[str, Any]: ...

    async def send_message(
        self, sender_id: str, receiver_id: str, content: str
    ) -> dict[str, Any]: ...


async def fetch_collection(backend: AssessmentBackend, name: Collection) -> list[Any]:
    """Dispatch a bulk fetch by collection name."""
    if name == "courses":
        return await backend.list_courses()
    if name == "modules":
        return await backend.list_modules()
    if name == "lessons":
        return await backend.list_lessons()
    if name == "quizzes":
        return await backend.list_assessments(AssessmentKind.QUIZ)
    if name == "assignments":
        return await backend.list_assessments(AssessmentKind.ASSIGNMENT)
    if name == "quiz_attempts":
        return await backend.list_submissions(AssessmentKind.QUIZ)
    if name == "assignment_submissions":
        return await backend.list_submissions(AssessmentKind.ASSIGNMENT)
    if name == "users":
        return await backend.list_users()
    if name == "enrollments":
        return await backend.list_enrollments()
    if name == "messages":
        return await backend.list_messages()
    raise ValueError(f"unknown collection {name!r}")
