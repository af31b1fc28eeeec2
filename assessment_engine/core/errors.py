"""Error taxonomy for the assessment engine.

Two propagation policies apply:

  Reconciliation layer (identity, index, scope, grading join)
    Gaps in upstream data are ABSORBED: the offending record is skipped,
    counted in metrics and logged at WARNING.  ReconciliationGap and
    PartialFetchFailure exist as types so the absorption points have
    something concrete to log, and so strict callers can raise them.

  Session layer (quiz submit, grade write)
    Failures are SURFACED to the caller.  SubmitConflict is retryable;
    SessionExpired/Unauthorized end the current session only.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by assessment_engine."""


# ---------------------------------------------------------------------------
# Reconciliation layer
# ---------------------------------------------------------------------------


class ReconciliationGap(EngineError):
    """A foreign key could not be resolved to a known entity."""

    def __init__(self, kind: str, detail: str = "") -> None:
        self.kind = kind
        super().__init__(f"unresolvable {kind} reference{': ' + detail if detail else ''}")


class PartialFetchFailure(EngineError):
    """One bulk collection failed to load; callers fall back to []."""

    def __init__(self, collection: str, cause: BaseException | None = None) -> None:
        self.collection = collection
        self.cause = cause
        super().__init__(f"failed to fetch {collection}: {cause!r}")


class DuplicateSubmission(EngineError):
    """More than one record claims to be current for one (assessment, student)."""


class SnapshotNotReady(EngineError):
    """The index was requested before every required collection loaded once."""


class NotVisible(EngineError, LookupError):
    """The requested entity is outside the actor's scope (or unknown)."""


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------


class NoSubmissionFound(EngineError):
    """An assignment cannot be graded because nothing was turned in."""

    def __init__(self, assessment_id: str, student_id: str) -> None:
        self.assessment_id = assessment_id
        self.student_id = student_id
        super().__init__(
            f"no submission for assignment={assessment_id} student={student_id}"
        )


class InvalidGrade(EngineError, ValueError):
    pass


class SubmitConflict(EngineError):
    """A write (attempt submit or grade) failed mid-flight.  Retryable."""

    retryable = True


# ---------------------------------------------------------------------------
# Auth / session context
# ---------------------------------------------------------------------------


class AuthError(EngineError):
    pass


class Unauthorized(AuthError):
    pass


class SessionExpired(AuthError):
    pass


# ---------------------------------------------------------------------------
# Backend transport
# ---------------------------------------------------------------------------


class BackendError(EngineError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class BackendUnavailable(BackendError):
    """Timeout or transport failure.  Retryable, never fatal."""


class Forbidden(BackendError):
    pass


# ---------------------------------------------------------------------------
# Quiz session state machine
# ---------------------------------------------------------------------------


class InvalidTransition(EngineError):
    def __init__(self, action: str, state: object) -> None:
        self.action = action
        self.state = state
        super().__init__(f"cannot {action} while session is {state}")


class AlreadySubmitted(InvalidTransition):
    def __init__(self, state: object) -> None:
        super().__init__("submit", state)


class SubmitNotConfirmed(EngineError):
    pass


class UnknownQuestion(EngineError, KeyError):
    pass


class QuestionFetchFailed(EngineError):
    pass


class InvalidMessage(EngineError, ValueError):
    pass
