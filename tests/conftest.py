from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from prometheus_client import REGISTRY

# Ensure repo root is on sys.path so `import assessment_engine` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from assessment_engine.backend.memory import InMemoryBackend, InMemoryLmsStore  # noqa: E402
from assessment_engine.backend.stub_server import mint_token  # noqa: E402
from assessment_engine.services.session_context import SessionContext  # noqa: E402
from assessment_engine.services.workspace import Workspace  # noqa: E402

SECRET = "test-secret"

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

FACILITATOR = {
    "id": "F1",
    "name": "Fran Facilitator",
    "email": "fran@example.com",
    "role": "ROLE_FACILITATOR",
}
OTHER_FACILITATOR = {
    "id": "F2",
    "firstname": "Olu",
    "surname": "Other",
    "email": "olu@example.com",
    "role": "FACILITATOR",
}
ADMIN = {"id": "AD1", "name": "Ada Admin", "email": "ada@example.com", "role": "admin"}
STUDENT_1 = {"id": "S1", "name": "Sam One", "email": "sam@example.com", "role": "STUDENT"}
STUDENT_2 = {"id": "S2", "name": "Sue Two", "email": "sue@example.com", "role": "ROLE_STUDENT"}
STUDENT_3 = {"id": "S3", "name": "Tim Three", "email": "tim@example.com", "role": "learner"}


def seed_lms(store: InMemoryLmsStore) -> None:
    """C1 (F1) → M1 → {A1, Q1};  C2 (F2) → M2 → {A2, Q2}.

    S1 and S2 are enrolled in C1, S3 in C2.  S1 has turned in A1 (not
    graded yet).  Payload shapes are deliberately mixed.
    """
    store.add("users", FACILITATOR, OTHER_FACILITATOR, ADMIN, STUDENT_1, STUDENT_2, STUDENT_3)
    store.add(
        "courses",
        {"id": "C1", "title": "Intro to Data", "facilitatorId": "F1"},
        {"id": "C2", "title": "Networks", "facilitator": {"id": "F2", "name": "Olu"}},
    )
    store.add(
        "modules",
        {"id": "M1", "courseId": "C1", "title": "Basics", "orderIndex": 1},
        {"id": "M2", "course": {"id": "C2"}, "title": "Routing", "orderIndex": 1},
    )
    store.add(
        "lessons",
        {"id": "L1", "moduleId": "M1", "title": "Welcome", "contentType": "VIDEO"},
        {"id": "L2", "moduleId": "M1", "title": "Checkpoint", "contentType": "QUIZ"},
        {"id": "L3", "moduleId": "M2", "title": "OSPF notes", "contentType": "PDF"},
    )
    store.add(
        "assignments",
        {
            "id": "A1",
            "moduleId": "M1",
            "courseId": "C1",
            "title": "Essay",
            "totalMarks": 100,
            "dueDate": "2026-10-20T06:00:00Z",
        },
        {
            "id": "A2",
            "module": {"id": "M2"},
            "title": "Lab report",
            "totalMarks": 50,
            "dueDate": [2026, 11, 15, 17, 0],
        },
    )
    store.add(
        "quizzes",
        {
            "id": "Q1",
            "moduleId": "M1",
            "title": "Checkpoint",
            "totalMarks": 10,
            "timeLimitInMinutes": 20,
        },
        {"id": "Q2", "moduleId": "M2", "title": "Routing quiz"},
    )
    store.set_questions(
        "Q1",
        [
            {
                "id": 1,
                "text": "2 + 2?",
                "type": "MULTIPLE_CHOICE",
                "options": ["3", "4"],
                "correctAnswer": "4",
            },
            {
                "id": 2,
                "text": "The sky is blue",
                "type": "TRUE_FALSE",
                "options": ["True", "False"],
                "correctAnswer": "True",
            },
        ],
    )
    store.add(
        "enrollments",
        {"studentId": "S1", "courseId": "C1"},
        {"student": {"id": "S2"}, "course": {"id": "C1"}, "status": "ACTIVE"},
        {"learnerId": "S3", "course_id": "C2"},
    )
    store.add(
        "assignment_submissions",
        {
            "id": 501,
            "assignmentId": "A1",
            "studentId": "S1",
            "fileUrl": "f1",
            "submissionDate": "2026-10-10T09:00:00Z",
            "status": "SUBMITTED",
        },
    )


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """setup_logging() replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def store() -> InMemoryLmsStore:
    s = InMemoryLmsStore()
    seed_lms(s)
    return s


@pytest.fixture
def backend(store: InMemoryLmsStore) -> InMemoryBackend:
    return InMemoryBackend(store)


def login(payload: dict[str, Any], *, ttl: timedelta = timedelta(minutes=15)) -> SessionContext:
    ctx = SessionContext()
    ctx.login(mint_token(SECRET, sub=payload["id"], role=payload["role"], ttl=ttl), payload)
    return ctx


def open_workspace(backend: Any, payload: dict[str, Any]) -> Workspace:
    workspace = Workspace(backend, login(payload))
    asyncio.run(workspace.load())
    return workspace


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    """Read a metric sample's current value from the global registry."""
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0
