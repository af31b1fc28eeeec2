"""Entity index: normalized lookup structures over independent collections.

Courses, modules, assessments and submissions arrive from independent
endpoints with no referential integrity.  build_index() normalizes them once
per fetch into dicts keyed by canonical id, so every later lookup is O(1)
and every consumer sees the same interpretation of the data.

REBUILD, NEVER PATCH
----------------------
An EntityIndex is immutable.  When any source collection is re-fetched the
snapshot store builds a new index with a higher ``version``.  Patching an
index in place after a partial re-fetch is how stale cross-references are
born (a module renumbered on the server still pointing at old children).

DANGLING REFERENCES
---------------------
An assessment whose module is not in the module collection is still
addressable by id, but it is nobody's child: children_of() simply omits it.
Nothing here raises on bad upstream data; gaps are counted and logged.

LATEST WINS
-------------
At most one submission per (kind, assessment, student) is authoritative.
Among duplicates the winner is decided by a total order, so the result does
not depend on the order the backend returned them in:

  1. a record with a submission timestamp beats one without
  2. the later timestamp wins
  3. the higher record id wins (numeric ids compared numerically)
  4. a stable fingerprint of the payload breaks any remaining tie
"""

from __future__ import annotations

import logging
from collections import Counter as Tally
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from assessment_engine.core.errors import DuplicateSubmission, ReconciliationGap
from assessment_engine.core.metrics import RECONCILIATION_GAPS
from assessment_engine.models.assessment import Assessment, AssessmentKind
from assessment_engine.models.course import Course, Module
from assessment_engine.models.submission import SubmissionRecord
from assessment_engine.services.coercion import as_number, canonical_id

logger = logging.getLogger(__name__)

IndexKind = Literal["course", "module", "quiz", "assignment", "assessment", "submission"]

_NO_TIMESTAMP = datetime.min.replace(tzinfo=UTC)


def _id_rank(record_id: str | None) -> tuple[int, float, str]:
    if record_id is None:
        return (0, 0.0, "")
    number = as_number(record_id)
    if number is not None:
        return (2, float(number), "")
    return (1, 0.0, record_id)


def submission_rank(record: SubmissionRecord) -> tuple[Any, ...]:
    submitted_at = record.submitted_at
    return (
        submitted_at is not None,
        submitted_at or _NO_TIMESTAMP,
        _id_rank(record.record_id),
        record.fingerprint(),
    )


def pick_authoritative(records: Iterable[SubmissionRecord]) -> SubmissionRecord | None:
    """Return the single current record among ``records`` (latest wins)."""
    candidates = list(records)
    if not candidates:
        return None
    if len(candidates) > 1:
        duplicate = DuplicateSubmission(
            f"{len(candidates)} records for assessment={candidates[0].assessment_id} "
            f"student={candidates[0].student_id}"
        )
        logger.debug("%s; keeping the latest", duplicate)
    return max(candidates, key=submission_rank)


@dataclass(frozen=True, eq=False)
class EntityIndex:
    version: int
    courses: Mapping[str, Course]
    modules: Mapping[str, Module]
    quizzes: Mapping[str, Assessment]
    assignments: Mapping[str, Assessment]
    _modules_by_course: Mapping[str, tuple[Module, ...]] = field(repr=False)
    _assessments_by_module: Mapping[
        tuple[AssessmentKind, str], tuple[Assessment, ...]
    ] = field(repr=False)
    _submissions_by_assessment: Mapping[
        tuple[AssessmentKind, str], tuple[SubmissionRecord, ...]
    ] = field(repr=False)
    _submissions_by_id: Mapping[
        tuple[AssessmentKind, str], SubmissionRecord
    ] = field(repr=False)
    _authoritative: Mapping[
        tuple[AssessmentKind, str, str], SubmissionRecord
    ] = field(repr=False)

    # -- lookups ---------------------------------------------------------

    def by_id(self, kind: IndexKind | str, entity_id: Any) -> Any | None:
        key = canonical_id(entity_id)
        if key is None:
            return None
        if kind == "course":
            return self.courses.get(key)
        if kind == "module":
            return self.modules.get(key)
        if kind == "quiz":
            return self.quizzes.get(key)
        if kind == "assignment":
            return self.assignments.get(key)
        if kind == "assessment":
            return self.quizzes.get(key) or self.assignments.get(key)
        if kind == "submission":
            return self._submissions_by_id.get(
                (AssessmentKind.QUIZ, key)
            ) or self._submissions_by_id.get((AssessmentKind.ASSIGNMENT, key))
        return None

    def assessment(self, kind: AssessmentKind, assessment_id: Any) -> Assessment | None:
        key = canonical_id(assessment_id)
        if key is None:
            return None
        table = self.quizzes if kind is AssessmentKind.QUIZ else self.assignments
        return table.get(key)

    def submission(self, kind: AssessmentKind, record_id: Any) -> SubmissionRecord | None:
        key = canonical_id(record_id)
        return None if key is None else self._submissions_by_id.get((kind, key))

    def children_of(self, kind: IndexKind | str, parent_id: Any) -> list[Any]:
        """Children of ``parent_id`` whose kind is ``kind``.

        module ← course, quiz/assignment/assessment ← module,
        submission ← assessment (both kinds).
        """
        key = canonical_id(parent_id)
        if key is None:
            return []
        if kind == "module":
            return list(self._modules_by_course.get(key, ()))
        if kind == "quiz":
            return list(self._assessments_by_module.get((AssessmentKind.QUIZ, key), ()))
        if kind == "assignment":
            return list(
                self._assessments_by_module.get((AssessmentKind.ASSIGNMENT, key), ())
            )
        if kind == "assessment":
            return self.children_of("quiz", key) + self.children_of("assignment", key)
        if kind == "submission":
            return list(
                self._submissions_by_assessment.get((AssessmentKind.QUIZ, key), ())
            ) + list(
                self._submissions_by_assessment.get((AssessmentKind.ASSIGNMENT, key), ())
            )
        return []

    def submissions_for(
        self, kind: AssessmentKind, assessment_id: Any
    ) -> list[SubmissionRecord]:
        key = canonical_id(assessment_id)
        if key is None:
            return []
        return list(self._submissions_by_assessment.get((kind, key), ()))

    def all_submissions(self, kind: AssessmentKind | None = None) -> list[SubmissionRecord]:
        return [
            record
            for (record_kind, _), records in self._submissions_by_assessment.items()
            if kind is None or record_kind is kind
            for record in records
        ]

    def authoritative(
        self, kind: AssessmentKind, assessment_id: Any, student_id: Any
    ) -> SubmissionRecord | None:
        a_key = canonical_id(assessment_id)
        s_key = canonical_id(student_id)
        if a_key is None or s_key is None:
            return None
        return self._authoritative.get((kind, a_key, s_key))

    def course_of(self, entity: Module | Assessment) -> Course | None:
        """Follow module (and, for assessments, module → course) edges."""
        if isinstance(entity, Module):
            return self.courses.get(entity.course_id) if entity.course_id else None
        module = self.modules.get(entity.module_id) if entity.module_id else None
        return self.course_of(module) if module is not None else None


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _ingest(items: Iterable[Any], model: Any, gaps: Tally, gap_kind: str) -> dict[str, Any]:
    table: dict[str, Any] = {}
    for item in items or ():
        entity = item if isinstance(item, model) else model.from_payload(item)
        if entity is None:
            gaps[gap_kind] += 1
            continue
        # First occurrence wins; the backend occasionally repeats rows.
        table.setdefault(entity.id, entity)
    return table


def build_index(
    courses: Iterable[Any],
    modules: Iterable[Any],
    assessments: Iterable[Assessment],
    submissions: Iterable[SubmissionRecord],
    *,
    version: int = 0,
) -> EntityIndex:
    """Normalize the four source collections into an immutable index.

    ``courses`` and ``modules`` may be raw payloads or model instances;
    ``assessments`` and ``submissions`` are already typed by kind because
    the kind is only known from the endpoint they came from.
    """
    gaps: Tally = Tally()

    course_table: dict[str, Course] = _ingest(courses, Course, gaps, "course")
    module_table: dict[str, Module] = _ingest(modules, Module, gaps, "module")

    modules_by_course: dict[str, list[Module]] = {}
    for module in module_table.values():
        if module.course_id in course_table:
            modules_by_course.setdefault(module.course_id, []).append(module)
        else:
            gaps["module_course"] += 1
    for siblings in modules_by_course.values():
        siblings.sort(key=lambda m: (m.order_index, _id_rank(m.id)))

    quizzes: dict[str, Assessment] = {}
    assignments: dict[str, Assessment] = {}
    by_module: dict[tuple[AssessmentKind, str], list[Assessment]] = {}
    for assessment in assessments or ():
        table = quizzes if assessment.kind is AssessmentKind.QUIZ else assignments
        if assessment.id in table:
            continue
        table[assessment.id] = assessment
        if assessment.module_id in module_table:
            by_module.setdefault((assessment.kind, assessment.module_id), []).append(
                assessment
            )
        else:
            gaps["assessment_module"] += 1

    by_assessment: dict[tuple[AssessmentKind, str], list[SubmissionRecord]] = {}
    by_record_id: dict[tuple[AssessmentKind, str], SubmissionRecord] = {}
    grouped: dict[tuple[AssessmentKind, str, str], list[SubmissionRecord]] = {}
    for record in submissions or ():
        assessment_id = record.assessment_id
        student_id = record.student_id
        if assessment_id is None or student_id is None:
            gaps["submission"] += 1
            continue
        table = quizzes if record.kind is AssessmentKind.QUIZ else assignments
        if assessment_id not in table:
            gaps["submission_assessment"] += 1
            continue
        by_assessment.setdefault((record.kind, assessment_id), []).append(record)
        record_id = record.record_id
        if record_id is not None:
            by_record_id.setdefault((record.kind, record_id), record)
        grouped.setdefault((record.kind, assessment_id, student_id), []).append(record)

    authoritative = {key: pick_authoritative(group) for key, group in grouped.items()}
    duplicates = sum(1 for group in grouped.values() if len(group) > 1)

    for gap_kind, count in gaps.items():
        RECONCILIATION_GAPS.labels(kind=gap_kind).inc(count)
    for gap_kind, count in sorted(gaps.items()):
        logger.warning("Index v%d: %s (x%d)", version, ReconciliationGap(gap_kind), count)
    if duplicates:
        logger.info(
            "Index v%d resolved %d duplicate submission groups (latest wins)",
            version,
            duplicates,
        )

    return EntityIndex(
        version=version,
        courses=course_table,
        modules=module_table,
        quizzes=quizzes,
        assignments=assignments,
        _modules_by_course={k: tuple(v) for k, v in modules_by_course.items()},
        _assessments_by_module={k: tuple(v) for k, v in by_module.items()},
        _submissions_by_assessment={k: tuple(v) for k, v in by_assessment.items()},
        _submissions_by_id=by_record_id,
        _authoritative=authoritative,  # type: ignore[arg-type]
    )
