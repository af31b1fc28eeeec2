"""Snapshot store: the engine's only mutable state.

refresh() fans the bulk fetches out concurrently and folds the results
back in as they settle:

  1. Each collection fails on its own.  A BackendError (timeout, 5xx,
     403...) becomes an empty list, a WARNING, a fallback metric and an
     entry in ``failed``; the other collections still land.
  2. Unauthorized / SessionExpired are not degradations.  They propagate
     once every fetch has settled.
  3. A response for a collection whose newer fetch has already started is
     dropped (stale guard).
  4. The entity index is only built once every collection it is made of
     has settled at least once.  From then on every refresh rebuilds it
     wholesale under a new version; derived values memoized against the
     old version are invalidated by the version bump.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from assessment_engine.backend.base import (
    COLLECTIONS,
    AssessmentBackend,
    Collection,
    fetch_collection,
)
from assessment_engine.core.errors import (
    AuthError,
    BackendError,
    PartialFetchFailure,
    SnapshotNotReady,
)
from assessment_engine.core.metrics import (
    COLLECTION_FETCH_FALLBACKS,
    RECONCILIATION_GAPS,
    SNAPSHOT_VERSION,
)
from assessment_engine.models.actor import Actor
from assessment_engine.models.assessment import Assessment, AssessmentKind, assessment_from_payload
from assessment_engine.models.submission import SubmissionRecord, submission_from_payload
from assessment_engine.services.cache import VersionedCache
from assessment_engine.services.entity_index import EntityIndex, build_index
from assessment_engine.services.scope import Scope, resolve_scope
from assessment_engine.services.staleness import StaleGuard

logger = logging.getLogger(__name__)

# The index is made of these; it is not built until all have settled once.
INDEX_SOURCES: tuple[Collection, ...] = (
    "courses",
    "modules",
    "quizzes",
    "assignments",
    "quiz_attempts",
    "assignment_submissions",
)

SUBMISSION_COLLECTIONS: dict[AssessmentKind, Collection] = {
    AssessmentKind.QUIZ: "quiz_attempts",
    AssessmentKind.ASSIGNMENT: "assignment_submissions",
}


class SnapshotStore:
    def __init__(
        self,
        backend: AssessmentBackend,
        *,
        cache: VersionedCache | None = None,
    ) -> None:
        self._backend = backend
        self._data: dict[str, list[Any]] = {}
        self._settled: set[str] = set()
        self._guard = StaleGuard()
        self._index: EntityIndex | None = None
        self._version = 0
        self.failed: set[str] = set()
        self.cache = cache if cache is not None else VersionedCache()

    # -- state -----------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return all(name in self._settled for name in INDEX_SOURCES)

    @property
    def version(self) -> int:
        return self._version

    @property
    def index(self) -> EntityIndex:
        if self._index is None:
            missing = [name for name in INDEX_SOURCES if name not in self._settled]
            raise SnapshotNotReady(f"still waiting for: {', '.join(missing)}")
        return self._index

    def collection(self, name: Collection) -> list[Any]:
        return list(self._data.get(name, ()))

    @property
    def users(self) -> list[Any]:
        return self.collection("users")

    @property
    def enrollments(self) -> list[Any]:
        return self.collection("enrollments")

    @property
    def lessons(self) -> list[Any]:
        return self.collection("lessons")

    @property
    def messages(self) -> list[Any]:
        return self.collection("messages")

    # -- refresh ---------------------------------------------------------

    async def refresh(self, collections: Iterable[Collection] | None = None) -> EntityIndex | None:
        """Re-fetch ``collections`` (default: all) and rebuild the index.

        Returns the current index, or None while the snapshot is not ready.
        """
        names = tuple(dict.fromkeys(collections or COLLECTIONS))
        tickets = {name: self._guard.begin(name) for name in names}
        results = await asyncio.gather(
            *(fetch_collection(self._backend, name) for name in names),
            return_exceptions=True,
        )

        auth_error: AuthError | None = None
        changed: list[str] = []
        for name, result in zip(names, results):
            if isinstance(result, AuthError):
                auth_error = auth_error or result
                continue
            if isinstance(result, BaseException) and not isinstance(result, BackendError):
                raise result
            if not self._guard.is_current(tickets[name]):
                continue
            if isinstance(result, BackendError):
                self._absorb(PartialFetchFailure(name, result))
                self._data[name] = []
            else:
                self.failed.discard(name)
                self._data[name] = result if isinstance(result, list) else []
            self._settled.add(name)
            changed.append(name)

        if auth_error is not None:
            raise auth_error
        if changed and self.is_ready:
            self._rebuild(changed)
        return self._index

    def _absorb(self, failure: PartialFetchFailure) -> None:
        self.failed.add(failure.collection)
        COLLECTION_FETCH_FALLBACKS.labels(collection=failure.collection).inc()
        logger.warning(
            "Collection %s unavailable, using empty fallback: %s",
            failure.collection,
            failure.cause,
            extra={"collection": failure.collection},
        )

    def _typed_assessments(self) -> list[Assessment]:
        assessments: list[Assessment] = []
        skipped = 0
        for kind, name in ((AssessmentKind.QUIZ, "quizzes"), (AssessmentKind.ASSIGNMENT, "assignments")):
            for raw in self._data.get(name, ()):
                assessment = assessment_from_payload(kind, raw)
                if assessment is None:
                    skipped += 1
                else:
                    assessments.append(assessment)
        if skipped:
            RECONCILIATION_GAPS.labels(kind="assessment").inc(skipped)
        return assessments

    def _typed_submissions(self) -> list[SubmissionRecord]:
        return [
            submission_from_payload(kind, raw)
            for kind, name in SUBMISSION_COLLECTIONS.items()
            for raw in self._data.get(name, ())
        ]

    def _rebuild(self, changed: list[str]) -> None:
        self._version += 1
        self._index = build_index(
            self._data.get("courses", []),
            self._data.get("modules", []),
            self._typed_assessments(),
            self._typed_submissions(),
            version=self._version,
        )
        SNAPSHOT_VERSION.set(self._version)
        logger.info(
            "Index v%d rebuilt after refreshing %s (%d courses, %d modules, %d quizzes, %d assignments)",
            self._version,
            ", ".join(changed),
            len(self._index.courses),
            len(self._index.modules),
            len(self._index.quizzes),
            len(self._index.assignments),
        )

    # -- derived ---------------------------------------------------------

    def scope_for(self, actor: Actor) -> Scope:
        index = self.index
        return self.cache.get_or_compute(
            index.version,
            ("scope", actor),
            lambda: resolve_scope(actor, index, self._data.get("enrollments", [])),
        )
