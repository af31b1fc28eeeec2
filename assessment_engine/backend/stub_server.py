"""Stub LMS REST backend.

A FastAPI app that serves an InMemoryLmsStore over the same endpoints the
real backend exposes (all under /api).  The HTTP adapter tests drive it
through httpx.ASGITransport, and scripts/demo_grading_flow.py walks the
grading scenario against it.

Requests must carry ``Authorization: Bearer <jwt>`` signed with the app's
HS256 secret.  The token's ``role`` claim gates the two grading writes
(facilitator or admin only); everything else just needs a valid token.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from assessment_engine.backend.memory import InMemoryLmsStore, NotFound
from assessment_engine.models.actor import Role, normalize_role

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

_bearer = HTTPBearer(auto_error=False)

Id = str | int


def mint_token(
    secret: str,
    *,
    sub: str,
    role: str,
    ttl: timedelta = timedelta(minutes=15),
) -> str:
    now = datetime.now(UTC)
    payload = {"sub": sub, "role": role, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


class AttemptSubmitIn(BaseModel):
    quizId: Id
    learnerId: Id
    answers: dict[str, Any] = {}


class QuizGradeIn(BaseModel):
    quizId: Id
    studentId: Id
    score: float
    feedback: str = ""


class AssignmentGradeIn(BaseModel):
    score: float
    feedback: str = ""
    graderId: Id | None = None


class MessageIn(BaseModel):
    senderId: Id
    receiverId: Id
    content: str


def create_stub_app(store: InMemoryLmsStore, secret: str) -> FastAPI:
    def require_claims(
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    ) -> dict[str, Any]:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        try:
            return jwt.decode(
                credentials.credentials,
                secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Stub backend rejected token: %s", e)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from None

    # Closure dependencies take Depends as a default: string annotations only
    # see module globals.
    def require_grader(
        claims: dict[str, Any] = Depends(require_claims),
    ) -> dict[str, Any]:
        if normalize_role(claims.get("role")) not in (Role.FACILITATOR, Role.ADMIN):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return claims

    router = APIRouter(prefix="/api", dependencies=[Depends(require_claims)])

    def _listing(collection: str):
        async def _list() -> list[dict[str, Any]]:
            return store.records(collection)

        _list.__name__ = f"list_{collection}"
        return _list

    for path, collection in (
        ("/courses", "courses"),
        ("/modules", "modules"),
        ("/lessons", "lessons"),
        ("/quizzes", "quizzes"),
        ("/assignments", "assignments"),
        ("/attempts/quiz", "quiz_attempts"),
        ("/submissions/assignment", "assignment_submissions"),
        ("/users", "users"),
        ("/enrollments", "enrollments"),
        ("/messages", "messages"),
    ):
        router.add_api_route(path, _listing(collection), methods=["GET"])

    @router.get("/quizzes/{quiz_id}/questions")
    async def get_questions(quiz_id: str) -> list[dict[str, Any]]:
        try:
            return store.public_questions(quiz_id)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from None

    @router.post("/attempts/quiz/submit")
    async def submit_attempt(body: AttemptSubmitIn) -> dict[str, Any]:
        try:
            return store.grade_attempt(body.quizId, body.learnerId, body.answers)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from None

    @router.post("/attempts/quiz", dependencies=[Depends(require_grader)])
    async def upsert_quiz_grade(body: QuizGradeIn) -> dict[str, Any]:
        return store.upsert_quiz_grade(body.quizId, body.studentId, body.score, body.feedback)

    @router.put(
        "/submissions/assignment/{submission_id}/grade",
        dependencies=[Depends(require_grader)],
    )
    async def grade_submission(submission_id: str, body: AssignmentGradeIn) -> dict[str, Any]:
        try:
            return store.grade_submission(
                submission_id, body.score, body.feedback, body.graderId
            )
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from None

    @router.post("/messages")
    async def send_message(body: MessageIn) -> dict[str, Any]:
        return store.add_message(body.senderId, body.receiverId, body.content)

    app = FastAPI(title="lms-stub-backend")
    app.include_router(router)
    return app
