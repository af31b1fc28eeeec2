"""Workspace: one logged-in actor's view of the LMS.

Ties the session context, the backend and the snapshot store together and
is what a dashboard (or the demo script) talks to.  Reads come from the
current snapshot; every successful write is followed by a re-fetch of the
collection it touched, so the next read reflects it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from assessment_engine.backend.base import AssessmentBackend
from assessment_engine.core.errors import InvalidMessage, NotVisible
from assessment_engine.models.actor import Actor, coerce_actor
from assessment_engine.models.assessment import Assessment, AssessmentKind, QuizResult
from assessment_engine.models.course import ContentItem, Course, Enrollment, Module
from assessment_engine.models.grading import GradingRow
from assessment_engine.models.notification import Message, NotificationItem
from assessment_engine.services.coercion import canonical_id
from assessment_engine.services.entity_index import EntityIndex
from assessment_engine.services.grade_report import GradeSummary, summarize_grades
from assessment_engine.services.grading import GradingService, build_roster
from assessment_engine.services.notifications import NotificationOverlay, derive_notifications
from assessment_engine.services.quiz_session import QuizSession
from assessment_engine.services.scope import (
    Scope,
    scoped_courses,
    scoped_modules,
    visible_assessments,
    visible_lessons,
    visible_submissions,
)
from assessment_engine.services.session_context import SessionContext
from assessment_engine.services.snapshot import SUBMISSION_COLLECTIONS, SnapshotStore

logger = logging.getLogger(__name__)


class Workspace:
    def __init__(
        self,
        backend: AssessmentBackend,
        session: SessionContext,
        *,
        store: SnapshotStore | None = None,
    ) -> None:
        self.backend = backend
        self.session = session
        self.snapshot = store if store is not None else SnapshotStore(backend)
        self.grading = GradingService(backend)
        self.overlay = NotificationOverlay()

    @property
    def actor(self) -> Actor:
        return self.session.ensure_active()

    async def load(self) -> EntityIndex:
        actor = self.actor
        await self.snapshot.refresh()
        index = self.snapshot.index
        if self.snapshot.failed:
            logger.warning(
                "Workspace for actor=%s loaded with empty fallbacks for: %s",
                actor.id,
                ", ".join(sorted(self.snapshot.failed)),
            )
        return index

    def scope(self) -> Scope:
        return self.snapshot.scope_for(self.actor)

    # -- browsing --------------------------------------------------------

    def visible_courses(self) -> list[Course]:
        return scoped_courses(self.scope())

    def visible_modules(self) -> list[Module]:
        return scoped_modules(self.scope())

    def visible_assessments(self, kind: AssessmentKind | str | None = None) -> list[Assessment]:
        parsed = AssessmentKind.parse(kind) if kind is not None else None
        return visible_assessments(self.scope(), parsed)

    def visible_lessons(self) -> list[ContentItem]:
        return visible_lessons(self.scope(), self.snapshot.lessons)

    def _visible_assessment(
        self, kind: AssessmentKind, assessment_id: Any
    ) -> Assessment:
        scope = self.scope()
        assessment = scope.index.assessment(kind, assessment_id)
        if assessment is None or not scope.includes_assessment(assessment):
            raise NotVisible(f"{kind.value} {assessment_id} is not visible to this actor")
        return assessment

    # -- grading ---------------------------------------------------------

    def roster_students(self, assessment: Assessment) -> list[Actor]:
        """Active enrollees of the assessment's course, in users-collection order."""
        course = self.snapshot.index.course_of(assessment)
        if course is None:
            return []
        enrolled: set[str] = set()
        for raw in self.snapshot.enrollments:
            enrollment = Enrollment.from_payload(raw)
            if enrollment is not None and enrollment.is_active and enrollment.course_id == course.id:
                enrolled.add(enrollment.student_id)
        students: list[Actor] = []
        for raw in self.snapshot.users:
            user = coerce_actor(raw)
            if user is not None and user.is_student and user.id in enrolled:
                students.append(user)
        return students

    def grading_roster(
        self,
        kind: AssessmentKind | str,
        assessment_id: Any,
        search: str | None = None,
    ) -> list[GradingRow]:
        parsed = AssessmentKind.parse(kind)
        assessment = self._visible_assessment(parsed, assessment_id)
        return build_roster(
            self.roster_students(assessment),
            assessment.id,
            parsed,
            self.snapshot.index.submissions_for(parsed, assessment.id),
            search=search,
        )

    async def submit_grade(
        self,
        kind: AssessmentKind | str,
        assessment_id: Any,
        student_id: Any,
        score: Any,
        feedback: str | None = None,
    ) -> dict[str, Any]:
        actor = self.actor
        parsed = AssessmentKind.parse(kind)
        assessment = self._visible_assessment(parsed, assessment_id)
        stored = await self.grading.submit_grade(
            parsed,
            assessment.id,
            student_id,
            score,
            feedback,
            submissions=self.snapshot.index.submissions_for(parsed, assessment.id),
            total_marks=assessment.total_marks,
            grader_id=actor.id,
        )
        await self.snapshot.refresh([SUBMISSION_COLLECTIONS[parsed]])
        return stored

    # -- quizzes ---------------------------------------------------------

    def new_quiz_session(self) -> QuizSession:
        return QuizSession(self.backend, self.actor.id)

    async def start_quiz(self, test_id: Any, *, now: datetime | None = None) -> QuizSession:
        actor = self.actor
        test = self._visible_assessment(AssessmentKind.QUIZ, test_id)
        prior = self.snapshot.index.authoritative(AssessmentKind.QUIZ, test.id, actor.id)
        session = self.new_quiz_session()
        await session.start(test, prior_attempt=prior, now=now)
        return session

    async def submit_quiz(self, session: QuizSession, *, confirmed: bool) -> QuizResult | None:
        result = await session.submit(confirmed=confirmed)
        await self.snapshot.refresh([SUBMISSION_COLLECTIONS[AssessmentKind.QUIZ]])
        return result

    # -- notifications / reports / messaging ----------------------------

    def notifications(self, now: datetime) -> list[NotificationItem]:
        actor = self.actor
        scope = self.scope()
        failed = self.snapshot.failed
        items = derive_notifications(
            None if "messages" in failed else self.snapshot.messages,
            visible_submissions(scope),
            None
            if "assignments" in failed
            else visible_assessments(scope, AssessmentKind.ASSIGNMENT),
            actor.id,
            now,
        )
        return self.overlay.apply(items)

    def grade_summary(self, student_id: Any = None) -> GradeSummary:
        actor = self.actor
        sid = canonical_id(student_id) or actor.id
        if actor.is_student and sid != actor.id:
            raise NotVisible("students can only see their own grades")
        return summarize_grades(self.snapshot.index, sid)

    async def send_message(self, receiver_id: Any, content: str) -> Message | None:
        actor = self.actor
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise InvalidMessage("message content must not be blank")
        receiver = canonical_id(receiver_id)
        if receiver is None:
            raise InvalidMessage("message needs a receiver")
        stored = await self.backend.send_message(actor.id, receiver, text)
        await self.snapshot.refresh(["messages"])
        return Message.from_payload(stored)
