"""Identity normalizer: the single chokepoint for foreign-key resolution.

The backend encodes the same reference at least three ways:

    {"student": {"id": 7, "name": ...}}     nested object
    {"studentId": "7"}                      suffixed scalar
    {"learnerId": 7}                        alias

resolve_ref() tries them in exactly that order and returns the first hit
in canonical string form.  None means "cannot reconcile" and callers must
never use it as a join key: two records that both lack a student would
otherwise match each other.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from assessment_engine.services.coercion import canonical_id, field

RefKind = Literal[
    "course", "module", "student", "assessment", "facilitator", "sender", "receiver"
]

# Tried after the nested object and the <kind>Id scalar, in this order.
# An alias whose value is a mapping is read through its own "id".
_ALIASES: dict[RefKind, tuple[str, ...]] = {
    "course": ("course_id",),
    "module": ("module_id",),
    "student": (
        "learnerId",
        "learner",
        "userId",
        "user",
        "student_id",
        "learner_id",
    ),
    "assessment": (
        "quizId",
        "quiz",
        "testId",
        "test",
        "assignmentId",
        "assignment",
        "assessment_id",
    ),
    "facilitator": ("instructorId", "instructor", "facilitator_id"),
    "sender": ("sender_id",),
    "receiver": ("recipientId", "recipient", "receiver_id"),
}


def _id_of(value: Any) -> str | None:
    if isinstance(value, Mapping) or (
        value is not None and not isinstance(value, (str, int, float, bool))
        and hasattr(value, "id")
    ):
        return canonical_id(field(value, "id"))
    return canonical_id(value)


def resolve_ref(record: Any, kind: str) -> str | None:
    """Resolve the ``kind`` foreign key of ``record``.  Never raises."""
    if record is None or kind not in _ALIASES:
        return None

    nested = field(record, kind)
    if nested is not None and not isinstance(nested, (str, int, float, bool)):
        hit = canonical_id(field(nested, "id"))
        if hit is not None:
            return hit

    hit = _id_of(field(record, f"{kind}Id"))
    if hit is not None:
        return hit

    for alias in _ALIASES[kind]:
        hit = _id_of(field(record, alias))
        if hit is not None:
            return hit
    return None


def resolve_id(record: Any) -> str | None:
    """Canonical form of a record's own id."""
    return canonical_id(field(record, "id"))


def same_id(left: Any, right: Any) -> bool:
    """String-compare two raw ids; missing ids never match anything."""
    a = canonical_id(left)
    return a is not None and a == canonical_id(right)
