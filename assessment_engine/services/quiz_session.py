"""Quiz session state machine.

    IDLE ──start──▶ LOADING ──questions──▶ IN_PROGRESS ──submit──▶ SUBMITTING ──▶ COMPLETED
                      │                      │    ▲                     │
                      └──fetch failed──┐     │    └──── write failed ───┘
                                       ▼     ▼
                                      ABORTED (exit)  ──start──▶ LOADING

One QuizSession instance is one sitting.  Submitting is the only
non-idempotent step, so it is single-shot: it needs an explicit
confirmation, SUBMITTING refuses re-entry, and COMPLETED refuses a second
submit without touching the network.  A failed submit goes back to
IN_PROGRESS with every answer kept.

The client never grades.  The full answer map goes to the server, which
returns {score, totalMarks}.

Responses that land after the learner has left (exit(), or a restart of
the same session) are dropped by a StaleGuard keyed on the session id.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from assessment_engine.backend.base import AssessmentBackend
from assessment_engine.core.errors import (
    AlreadySubmitted,
    AuthError,
    BackendError,
    Forbidden,
    InvalidTransition,
    QuestionFetchFailed,
    SubmitConflict,
    SubmitNotConfirmed,
    UnknownQuestion,
)
from assessment_engine.core.metrics import QUIZ_SUBMISSIONS
from assessment_engine.core.request_context import session_scope
from assessment_engine.models.assessment import Question, QuizResult, Test
from assessment_engine.models.submission import QuizAttempt, SubmissionRecord
from assessment_engine.services.coercion import canonical_id
from assessment_engine.services.staleness import StaleGuard

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    ABORTED = "aborted"


class QuizSession:
    def __init__(
        self,
        backend: AssessmentBackend,
        learner_id: str,
        *,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.learner_id = learner_id
        self.state = SessionState.IDLE
        self.test: Test | None = None
        self.questions: list[Question] = []
        self.result: QuizResult | None = None
        self.last_error: BaseException | None = None
        self.started_at: datetime | None = None
        self.deadline: datetime | None = None
        self._backend = backend
        self._answers: dict[str, Any] = {}
        self._guard = StaleGuard()

    @property
    def answers(self) -> MappingProxyType[str, Any]:
        return MappingProxyType(self._answers)

    def _move(self, state: SessionState) -> None:
        logger.debug("Quiz session %s: %s -> %s", self.id, self.state.value, state.value)
        self.state = state

    # -- start -----------------------------------------------------------

    async def start(
        self,
        test: Test | Any,
        *,
        prior_attempt: SubmissionRecord | Any = None,
        now: datetime | None = None,
    ) -> SessionState:
        """Open the test.  Returns the state the session settled in.

        With ``prior_attempt`` (the learner's authoritative attempt for this
        test) the session goes straight to COMPLETED showing that result; no
        questions are fetched.
        """
        if self.state not in (SessionState.IDLE, SessionState.ABORTED):
            raise InvalidTransition("start", self.state.value)
        if not isinstance(test, Test):
            test = Test.from_payload(test)
            if test is None:
                raise ValueError("test payload has no id")

        self.test = test
        self.questions = []
        self._answers = {}
        self.result = None
        self.last_error = None
        self.started_at = None
        self.deadline = None

        with session_scope(self.id):
            if prior_attempt is not None:
                self._resume_completed(test, prior_attempt)
                return self.state

            self._move(SessionState.LOADING)
            ticket = self._guard.begin(self.id)
            try:
                raw_questions = await self._backend.get_questions(test.id)
            except AuthError:
                if self._guard.is_current(ticket):
                    self._move(SessionState.ABORTED)
                raise
            except BackendError as exc:
                if not self._guard.is_current(ticket):
                    return self.state
                self.last_error = exc
                self._move(SessionState.ABORTED)
                logger.warning("Question fetch failed for test=%s: %s", test.id, exc)
                raise QuestionFetchFailed(f"could not load questions for test {test.id}") from exc

            if not self._guard.is_current(ticket):
                return self.state

            self.questions = self._parse_questions(raw_questions)
            self.started_at = now or datetime.now(UTC)
            if test.timed and test.time_limit_minutes:
                self.deadline = self.started_at + timedelta(minutes=test.time_limit_minutes)
            self._move(SessionState.IN_PROGRESS)
            logger.info(
                "Quiz session started test=%s learner=%s questions=%d",
                test.id,
                self.learner_id,
                len(self.questions),
            )
        return self.state

    def _resume_completed(self, test: Test, prior_attempt: Any) -> None:
        attempt = (
            prior_attempt
            if isinstance(prior_attempt, SubmissionRecord)
            else QuizAttempt(prior_attempt)
        )
        if attempt.assessment_id != test.id or attempt.student_id != self.learner_id:
            raise ValueError("prior attempt belongs to another test or learner")
        total = getattr(attempt, "total_marks", None) or test.total_marks
        if attempt.score is not None:
            self.result = QuizResult(score=attempt.score, totalMarks=total)
        self._move(SessionState.COMPLETED)
        logger.info(
            "Test %s already attempted by learner=%s; showing stored result",
            test.id,
            self.learner_id,
        )

    @staticmethod
    def _parse_questions(raw_questions: list[Any]) -> list[Question]:
        questions: list[Question] = []
        seen: set[str] = set()
        for raw in raw_questions or ():
            try:
                question = Question.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping malformed question: %s", exc.errors()[0]["msg"])
                continue
            if question.id in seen:
                continue
            seen.add(question.id)
            questions.append(question)
        return questions

    # -- answering -------------------------------------------------------

    def _question_key(self, question_id: Any) -> str:
        key = canonical_id(question_id)
        if key is None or all(q.id != key for q in self.questions):
            raise UnknownQuestion(question_id)
        return key

    def answer(self, question_id: Any, value: Any) -> None:
        if self.state is not SessionState.IN_PROGRESS:
            raise InvalidTransition("answer", self.state.value)
        self._answers[self._question_key(question_id)] = value

    def clear_answer(self, question_id: Any) -> None:
        if self.state is not SessionState.IN_PROGRESS:
            raise InvalidTransition("answer", self.state.value)
        self._answers.pop(self._question_key(question_id), None)

    # -- timing ----------------------------------------------------------

    def time_remaining(self, now: datetime | None = None) -> timedelta | None:
        if self.deadline is None:
            return None
        remaining = self.deadline - (now or datetime.now(UTC))
        return max(remaining, timedelta(0))

    def is_overdue(self, now: datetime | None = None) -> bool:
        remaining = self.time_remaining(now)
        return remaining is not None and remaining == timedelta(0)

    # -- submit ----------------------------------------------------------

    async def submit(self, *, confirmed: bool) -> QuizResult | None:
        if self.state is SessionState.COMPLETED:
            QUIZ_SUBMISSIONS.labels(outcome="rejected").inc()
            raise AlreadySubmitted(self.state.value)
        if self.state is not SessionState.IN_PROGRESS:
            raise InvalidTransition("submit", self.state.value)
        if not confirmed:
            raise SubmitNotConfirmed("submit needs an explicit confirmation")
        assert self.test is not None

        test = self.test
        with session_scope(self.id):
            self._move(SessionState.SUBMITTING)
            ticket = self._guard.begin(self.id)
            try:
                raw = await self._backend.submit_attempt(
                    test.id, self.learner_id, dict(self._answers)
                )
            except AuthError:
                QUIZ_SUBMISSIONS.labels(outcome="aborted").inc()
                if self._guard.is_current(ticket):
                    self._move(SessionState.ABORTED)
                raise
            except Forbidden as exc:
                # Not retryable; answers stay so the learner can see them.
                QUIZ_SUBMISSIONS.labels(outcome="rejected").inc()
                if self._guard.is_current(ticket):
                    self.last_error = exc
                    self._move(SessionState.IN_PROGRESS)
                logger.warning("Submit refused for test=%s: %s", test.id, exc)
                raise
            except BackendError as exc:
                QUIZ_SUBMISSIONS.labels(outcome="conflict").inc()
                if self._guard.is_current(ticket):
                    self.last_error = exc
                    self._move(SessionState.IN_PROGRESS)
                logger.warning("Submit failed for test=%s: %s", test.id, exc)
                raise SubmitConflict(f"submit failed for test {test.id}: {exc}") from exc

            if not self._guard.is_current(ticket):
                return None

            self.last_error = None
            self.result = self._parse_result(raw, test)
            self._move(SessionState.COMPLETED)
            QUIZ_SUBMISSIONS.labels(outcome="completed").inc()
            logger.info(
                "Quiz submitted test=%s learner=%s score=%s/%s",
                test.id,
                self.learner_id,
                self.result.score if self.result else None,
                self.result.total_marks if self.result else None,
            )
        return self.result

    @staticmethod
    def _parse_result(raw: Any, test: Test) -> QuizResult | None:
        sent = raw if isinstance(raw, dict) else {}
        body = {"totalMarks": test.total_marks}
        body.update({k: v for k, v in sent.items() if v is not None})
        try:
            return QuizResult.model_validate(body)
        except ValidationError:
            logger.warning("Submit response for test=%s had no usable score", test.id)
            return None

    # -- exit ------------------------------------------------------------

    def exit(self) -> None:
        """Leave the test.  In-flight responses are discarded."""
        if self.state is SessionState.SUBMITTING:
            raise InvalidTransition("exit", self.state.value)
        if self.state in (SessionState.LOADING, SessionState.IN_PROGRESS):
            self._guard.invalidate(self.id)
            self._move(SessionState.ABORTED)
            logger.info("Quiz session %s exited", self.id)
