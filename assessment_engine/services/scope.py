"""Scope filter: which slice of the index an actor may see.

A course is in scope when:
  Facilitator  course.facilitator_id == actor.id
  Student      an active enrollment links the student to the course
  Admin        always

Everything below a course inherits its scope by following the
Course → Module → Assessment → Submission edges of the index.  An
assessment whose module is missing from the index is never in scope, even
when its own courseId names an in-scope course: the edge is dangling and
cannot be trusted.

All functions are pure.  Scope objects are memoized per index version by
the snapshot store, never here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from assessment_engine.models.actor import Actor, Role
from assessment_engine.models.assessment import Assessment, AssessmentKind
from assessment_engine.models.course import ContentItem, Course, Enrollment, Module
from assessment_engine.models.submission import SubmissionRecord
from assessment_engine.services.entity_index import EntityIndex

logger = logging.getLogger(__name__)


def _enrollments(items: Iterable[Any] | None) -> list[Enrollment]:
    result: list[Enrollment] = []
    for item in items or ():
        enrollment = item if isinstance(item, Enrollment) else Enrollment.from_payload(item)
        if enrollment is not None:
            result.append(enrollment)
    return result


def in_scope_course_ids(
    actor: Actor,
    courses: Iterable[Course],
    enrollments: Iterable[Any] | None = (),
) -> frozenset[str]:
    course_ids = [c.id for c in courses]
    if actor.role is Role.ADMIN:
        return frozenset(course_ids)
    if actor.role is Role.FACILITATOR:
        return frozenset(c.id for c in courses if c.facilitator_id == actor.id)
    enrolled = {
        e.course_id
        for e in _enrollments(enrollments)
        if e.student_id == actor.id and e.is_active
    }
    return frozenset(cid for cid in course_ids if cid in enrolled)


def visible_courses(
    actor: Actor,
    courses: Iterable[Any],
    enrollments: Iterable[Any] | None = (),
) -> list[Course]:
    typed = [c for c in (_as_course(raw) for raw in courses or ()) if c is not None]
    allowed = in_scope_course_ids(actor, typed, enrollments)
    return [c for c in typed if c.id in allowed]


def visible_modules(
    actor: Actor,
    courses: Iterable[Any],
    modules: Iterable[Any],
    enrollments: Iterable[Any] | None = (),
) -> list[Module]:
    """Modules whose course is owned (facilitator) or enrolled (student)."""
    allowed = {c.id for c in visible_courses(actor, courses, enrollments)}
    result: list[Module] = []
    for raw in modules or ():
        module = raw if isinstance(raw, Module) else Module.from_payload(raw)
        if module is not None and module.course_id in allowed:
            result.append(module)
    return result


def _as_course(raw: Any) -> Course | None:
    return raw if isinstance(raw, Course) else Course.from_payload(raw)


# ---------------------------------------------------------------------------
# Index-backed scope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Scope:
    actor: Actor
    course_ids: frozenset[str]
    index: EntityIndex

    def includes_course(self, course_id: str | None) -> bool:
        return course_id is not None and course_id in self.course_ids

    def includes_module(self, module: Module | None) -> bool:
        return module is not None and self.includes_course(module.course_id)

    def includes_assessment(self, assessment: Assessment | None) -> bool:
        if assessment is None or assessment.module_id is None:
            return False
        return self.includes_module(self.index.modules.get(assessment.module_id))


def resolve_scope(
    actor: Actor, index: EntityIndex, enrollments: Iterable[Any] | None = ()
) -> Scope:
    course_ids = in_scope_course_ids(actor, index.courses.values(), enrollments)
    logger.debug(
        "Scope for actor=%s role=%s: %d of %d courses",
        actor.id,
        actor.role.value,
        len(course_ids),
        len(index.courses),
    )
    return Scope(actor=actor, course_ids=course_ids, index=index)


def scoped_courses(scope: Scope) -> list[Course]:
    return [c for cid, c in scope.index.courses.items() if cid in scope.course_ids]


def scoped_modules(scope: Scope) -> list[Module]:
    modules: list[Module] = []
    for course in scoped_courses(scope):
        modules.extend(scope.index.children_of("module", course.id))
    return modules


def visible_assessments(
    scope: Scope, kind: AssessmentKind | None = None
) -> list[Assessment]:
    child_kind = "assessment" if kind is None else kind.value
    result: list[Assessment] = []
    for module in scoped_modules(scope):
        result.extend(scope.index.children_of(child_kind, module.id))
    return result


def visible_submissions(
    scope: Scope, kind: AssessmentKind | None = None
) -> list[SubmissionRecord]:
    """Submissions under in-scope assessments; students only see their own."""
    result: list[SubmissionRecord] = []
    for assessment in visible_assessments(scope, kind):
        for record in scope.index.submissions_for(assessment.kind, assessment.id):
            if scope.actor.role is Role.STUDENT and record.student_id != scope.actor.id:
                continue
            result.append(record)
    return result


# ---------------------------------------------------------------------------
# Lessons vs assessments
# ---------------------------------------------------------------------------


def split_content(
    items: Iterable[Any],
) -> tuple[list[ContentItem], list[ContentItem]]:
    """Partition module content into (lessons, assessment items).

    Anything tagged QUIZ or ASSIGNMENT belongs to the second list only.
    """
    lessons: list[ContentItem] = []
    assessment_items: list[ContentItem] = []
    for raw in items or ():
        item = raw if isinstance(raw, ContentItem) else ContentItem.from_payload(raw)
        if item is None:
            continue
        (assessment_items if item.is_assessment else lessons).append(item)
    return lessons, assessment_items


def visible_lessons(scope: Scope, items: Sequence[Any]) -> list[ContentItem]:
    lessons, _ = split_content(items)
    return [
        lesson
        for lesson in lessons
        if lesson.module_id is not None
        and scope.includes_module(scope.index.modules.get(lesson.module_id))
    ]
