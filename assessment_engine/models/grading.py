from __future__ import annotations

from dataclasses import dataclass

from assessment_engine.models.actor import Actor
from assessment_engine.models.submission import SubmissionRecord


@dataclass(frozen=True, slots=True)
class GradingRow:
    """One student's line in the grading view.

    Derived on every roster build and never cached across filter changes.
    ``score`` is the unified field: attempt score or assignment grade.
    """

    student: Actor
    has_submitted: bool
    score: int | float | None = None
    submission: SubmissionRecord | None = None

    @property
    def is_graded(self) -> bool:
        return self.score is not None
