"""Per-student grade summary.

Averages are pooled, not averaged per item: a test average is the sum of
the learner's scores over the sum of those tests' total marks.  Only the
authoritative, graded record of each assessment counts.  Assignments with
no total marks cannot be expressed as a percentage and are left out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from assessment_engine.models.assessment import Assessment, AssessmentKind
from assessment_engine.services.coercion import canonical_id
from assessment_engine.services.entity_index import EntityIndex

_LETTER_BANDS = ((90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D"))


def letter_grade(percentage: float | None) -> str | None:
    if percentage is None:
        return None
    for floor, letter in _LETTER_BANDS:
        if percentage >= floor:
            return letter
    return "F"


@dataclass
class _Pool:
    score: float = 0.0
    total: float = 0.0
    count: int = 0

    def add(self, score: float, total: float) -> None:
        self.score += score
        self.total += total
        self.count += 1

    @property
    def percentage(self) -> float | None:
        return self.score / self.total * 100 if self.total > 0 else None


@dataclass(frozen=True)
class GradeSummary:
    student_id: str
    test_average: float | None
    assignment_average: float | None
    overall_average: float | None
    graded_tests: int
    graded_assignments: int
    by_course: dict[str, float] = field(default_factory=dict)

    @property
    def letter(self) -> str | None:
        return letter_grade(self.overall_average)


def _graded_pairs(
    index: EntityIndex, kind: AssessmentKind, student_id: str
) -> list[tuple[Assessment, float, float]]:
    table = index.quizzes if kind is AssessmentKind.QUIZ else index.assignments
    pairs: list[tuple[Assessment, float, float]] = []
    for assessment in table.values():
        record = index.authoritative(kind, assessment.id, student_id)
        if record is None or record.score is None or not assessment.total_marks:
            continue
        pairs.append((assessment, float(record.score), float(assessment.total_marks)))
    return pairs


def summarize_grades(index: EntityIndex, student_id: Any) -> GradeSummary:
    sid = canonical_id(student_id)
    if sid is None:
        raise ValueError("student id is required")

    tests = _Pool()
    assignments = _Pool()
    courses: dict[str, _Pool] = {}
    for kind, pool in ((AssessmentKind.QUIZ, tests), (AssessmentKind.ASSIGNMENT, assignments)):
        for assessment, score, total in _graded_pairs(index, kind, sid):
            pool.add(score, total)
            course = index.course_of(assessment)
            if course is not None:
                courses.setdefault(course.id, _Pool()).add(score, total)

    available = [p for p in (tests.percentage, assignments.percentage) if p is not None]
    return GradeSummary(
        student_id=sid,
        test_average=tests.percentage,
        assignment_average=assignments.percentage,
        overall_average=sum(available) / len(available) if available else None,
        graded_tests=tests.count,
        graded_assignments=assignments.count,
        by_course={
            cid: pct for cid, pool in courses.items() if (pct := pool.percentage) is not None
        },
    )
