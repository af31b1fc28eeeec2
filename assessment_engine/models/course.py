from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from assessment_engine.services.coercion import as_bool, as_number, field
from assessment_engine.services.identity import resolve_id, resolve_ref


def _text(raw: Any, name: str, default: str = "") -> str:
    value = field(raw, name)
    return value.strip() if isinstance(value, str) else default


@dataclass(frozen=True, slots=True)
class Course:
    id: str
    title: str
    facilitator_id: str | None = None

    @staticmethod
    def from_payload(raw: Any) -> Course | None:
        course_id = resolve_id(raw)
        if course_id is None:
            return None
        return Course(
            id=course_id,
            title=_text(raw, "title"),
            facilitator_id=resolve_ref(raw, "facilitator"),
        )


@dataclass(frozen=True, slots=True)
class Module:
    id: str
    course_id: str | None
    title: str = ""
    order_index: int = 0

    @staticmethod
    def from_payload(raw: Any) -> Module | None:
        module_id = resolve_id(raw)
        if module_id is None:
            return None
        order = as_number(field(raw, "orderIndex"))
        return Module(
            id=module_id,
            course_id=resolve_ref(raw, "course"),
            title=_text(raw, "title"),
            order_index=int(order) if order is not None else 0,
        )


# Content-type tags that mark an item as an assessment, not a lesson.
ASSESSMENT_CONTENT_TYPES = frozenset({"QUIZ", "ASSIGNMENT"})


@dataclass(frozen=True, slots=True)
class ContentItem:
    """A module content entry (lesson, video, PDF, link...)."""

    id: str
    module_id: str | None
    title: str = ""
    content_type: str = ""
    url: str = ""

    @property
    def is_assessment(self) -> bool:
        return self.content_type in ASSESSMENT_CONTENT_TYPES

    @staticmethod
    def from_payload(raw: Any) -> ContentItem | None:
        item_id = resolve_id(raw)
        if item_id is None:
            return None
        content_type = _text(raw, "contentType") or _text(raw, "type")
        return ContentItem(
            id=item_id,
            module_id=resolve_ref(raw, "module"),
            title=_text(raw, "title"),
            content_type=content_type.upper(),
            url=_text(raw, "contentUrl") or _text(raw, "url"),
        )


@dataclass(frozen=True, slots=True)
class Enrollment:
    student_id: str
    course_id: str
    status: str = "ACTIVE"  # ACTIVE|COMPLETED|DROPPED

    @property
    def is_active(self) -> bool:
        return self.status != "DROPPED"

    @staticmethod
    def from_payload(raw: Any) -> Enrollment | None:
        student_id = resolve_ref(raw, "student")
        course_id = resolve_ref(raw, "course")
        if student_id is None or course_id is None:
            return None
        status = _text(raw, "status").upper() or "ACTIVE"
        if not as_bool(field(raw, "isActive"), default=True):
            status = "DROPPED"
        return Enrollment(student_id=student_id, course_id=course_id, status=status)
