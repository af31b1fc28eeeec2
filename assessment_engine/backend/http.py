"""HTTP adapter for the LMS REST backend.

Every call goes through _request(), which:
  1. binds a fresh request id (sent as X-Request-ID, stamped on log lines)
  2. attaches the bearer token from the SessionContext
  3. times the call into BACKEND_REQUEST_DURATION
  4. maps the outcome onto the engine's error taxonomy

STATUS MAPPING
----------------
  2xx              decoded JSON body
  401              Unauthorized        (session is over; caller decides)
  403              Forbidden
  other >= 400     BackendError(status_code=...)
  timeout/network  BackendUnavailable  (retryable)

List endpoints are lenient: a body that is not a JSON array degrades to
[] with a warning, and Spring-style paged envelopes ({"content": [...]})
are unwrapped.  The bulk fan-out must survive a misbehaving endpoint.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from assessment_engine.core.config import SETTINGS, Settings
from assessment_engine.core.errors import (
    BackendError,
    BackendUnavailable,
    Forbidden,
    Unauthorized,
)
from assessment_engine.core.metrics import BACKEND_REQUEST_DURATION, BACKEND_REQUESTS
from assessment_engine.core.request_context import request_scope
from assessment_engine.models.assessment import AssessmentKind
from assessment_engine.services.session_context import SessionContext

logger = logging.getLogger(__name__)

_LIST_PATHS = {
    AssessmentKind.QUIZ: ("/quizzes", "/attempts/quiz"),
    AssessmentKind.ASSIGNMENT: ("/assignments", "/submissions/assignment"),
}

_ENVELOPE_KEYS = ("content", "data", "items")


def _outcome(status_code: int) -> str:
    if status_code < 400:
        return "ok"
    if status_code < 500:
        return "client_error"
    return "server_error"


def _as_list(body: Any, operation: str) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(body.get(key), list):
                return body[key]
    logger.warning(
        "Expected a list from %s, got %s; treating as empty",
        operation,
        type(body).__name__,
        extra={"operation": operation},
    )
    return []


class HttpBackend:
    """AssessmentBackend over HTTP.

    Pass ``client`` to share a connection pool or to route requests through
    an ``httpx.ASGITransport`` in tests; otherwise one is created from
    ``settings`` and closed by aclose().
    """

    def __init__(
        self,
        session: SessionContext,
        *,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or SETTINGS
        self._session = session
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=cfg.api_base_url, timeout=cfg.request_timeout
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- transport -------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: Any = None,
    ) -> Any:
        with request_scope() as request_id:
            headers = {"X-Request-ID": request_id, **self._session.auth_headers()}
            start = time.monotonic()
            try:
                response = await self._client.request(
                    method, path.lstrip("/"), json=json, headers=headers
                )
            except httpx.TimeoutException as exc:
                self._record(operation, "unavailable", start)
                logger.warning(
                    "%s %s timed out", method, path, extra={"operation": operation}
                )
                raise BackendUnavailable(f"{operation} timed out") from exc
            except httpx.HTTPError as exc:
                self._record(operation, "unavailable", start)
                logger.warning(
                    "%s %s failed: %s", method, path, exc, extra={"operation": operation}
                )
                raise BackendUnavailable(f"{operation} failed: {exc}") from exc

            duration_ms = self._record(operation, _outcome(response.status_code), start)
            logger.debug(
                "%s %s -> %d",
                method,
                path,
                response.status_code,
                extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )

            status = response.status_code
            if status == 401:
                raise Unauthorized(f"{operation} rejected the session token")
            if status == 403:
                raise Forbidden(f"{operation} is forbidden", status_code=status)
            if status >= 400:
                raise BackendError(
                    f"{operation} failed with HTTP {status}", status_code=status
                )
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise BackendError(
                    f"{operation} returned a non-JSON body", status_code=status
                ) from exc

    @staticmethod
    def _record(operation: str, outcome: str, start: float) -> int:
        duration = time.monotonic() - start
        BACKEND_REQUESTS.labels(operation=operation, outcome=outcome).inc()
        BACKEND_REQUEST_DURATION.labels(operation=operation).observe(duration)
        return int(duration * 1000)

    async def _list(self, path: str, operation: str) -> list[Any]:
        return _as_list(await self._request("GET", path, operation), operation)

    async def _object(self, method: str, path: str, operation: str, body: Any) -> dict[str, Any]:
        result = await self._request(method, path, operation, json=body)
        return result if isinstance(result, dict) else {}

    # -- bulk collections ------------------------------------------------

    async def list_courses(self) -> list[dict[str, Any]]:
        return await self._list("/courses", "list_courses")

    async def list_modules(self) -> list[dict[str, Any]]:
        return await self._list("/modules", "list_modules")

    async def list_lessons(self) -> list[dict[str, Any]]:
        return await self._list("/lessons", "list_lessons")

    async def list_assessments(self, kind: AssessmentKind) -> list[dict[str, Any]]:
        return await self._list(_LIST_PATHS[kind][0], f"list_{kind.value}_assessments")

    async def list_submissions(self, kind: AssessmentKind) -> list[dict[str, Any]]:
        return await self._list(_LIST_PATHS[kind][1], f"list_{kind.value}_submissions")

    async def list_users(self) -> list[dict[str, Any]]:
        return await self._list("/users", "list_users")

    async def list_enrollments(self) -> list[dict[str, Any]]:
        return await self._list("/enrollments", "list_enrollments")

    async def list_messages(self) -> list[dict[str, Any]]:
        return await self._list("/messages", "list_messages")

    async def get_questions(self, test_id: str) -> list[dict[str, Any]]:
        return await self._list(f"/quizzes/{test_id}/questions", "get_questions")

    # -- writes ----------------------------------------------------------

    async def submit_attempt(
        self, test_id: str, learner_id: str, answers: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._object(
            "POST",
            "/attempts/quiz/submit",
            "submit_attempt",
            {"quizId": test_id, "learnerId": learner_id, "answers": answers},
        )

    async def upsert_quiz_grade(
        self, test_id: str, student_id: str, score: float, feedback: str
    ) -> dict[str, Any]:
        return await self._object(
            "POST",
            "/attempts/quiz",
            "upsert_quiz_grade",
            {"quizId": test_id, "studentId": student_id, "score": score, "feedback": feedback},
        )

    async def upsert_assignment_grade(
        self,
        submission_id: str,
        score: float,
        feedback: str,
        *,
        grader_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._object(
            "PUT",
            f"/submissions/assignment/{submission_id}/grade",
            "upsert_assignment_grade",
            {"score": score, "feedback": feedback, "graderId": grader_id},
        )

    async def send_message(
        self, sender_id: str, receiver_id: str, content: str
    ) -> dict[str, Any]:
        return await self._object(
            "POST",
            "/messages",
            "send_message",
            {"senderId": sender_id, "receiverId": receiver_id, "content": content},
        )
