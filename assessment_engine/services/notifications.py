"""Notification derivation.

Notifications are never stored.  derive_notifications() recomputes the
whole list from the current collections every time, from three rules that
do not see each other's inputs:

  messages  one bundled item for the actor's unread received messages
  graded    one item per graded submission/attempt of the actor
  due       one item per open assignment, due in the future, that the
            actor has not submitted ("warning" inside 24 hours)

A collection that failed to load (None) or that holds junk only silences
its own rule.

Ids are stable across recomputation, which is what lets the read/dismiss
overlay survive a refresh.  The message bundle's id embeds the newest
unread message id, so a new message makes it unread again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from assessment_engine.models.assessment import Assignment, AssessmentKind
from assessment_engine.models.notification import Message, NotificationItem
from assessment_engine.models.submission import (
    AssignmentSubmission,
    QuizAttempt,
    SubmissionRecord,
)
from assessment_engine.services.coercion import canonical_id, field
from assessment_engine.services.entity_index import pick_authoritative

logger = logging.getLogger(__name__)

DUE_SOON = timedelta(hours=24)

_ASSIGNMENT_REF_FIELDS = ("assignmentId", "assignment")


def _as_submission(raw: Any) -> SubmissionRecord:
    if isinstance(raw, SubmissionRecord):
        return raw
    if any(field(raw, name) is not None for name in _ASSIGNMENT_REF_FIELDS):
        return AssignmentSubmission(raw)
    return QuizAttempt(raw)


def _safe(rule: str, items: Iterable[Any] | None) -> list[Any]:
    if items is None:
        return []
    try:
        return list(items)
    except TypeError:
        logger.warning("Notification rule %r got a non-iterable input; skipping", rule)
        return []


def _unread_messages(
    messages: Iterable[Any] | None, actor_id: str, now: datetime
) -> list[NotificationItem]:
    unread: list[Message] = []
    for raw in _safe("messages", messages):
        message = raw if isinstance(raw, Message) else Message.from_payload(raw)
        if message is None or message.is_read or message.receiver_id != actor_id:
            continue
        unread.append(message)
    if not unread:
        return []
    newest = max(unread, key=lambda m: (m.timestamp is not None, m.timestamp or now, m.id))
    count = len(unread)
    return [
        NotificationItem(
            id=f"messages:unread:{newest.id}",
            title="New messages",
            message=f"You have {count} unread message{'s' if count != 1 else ''}",
            kind="info",
            timestamp=newest.timestamp or now,
        )
    ]


def _graded(
    submissions: Iterable[Any] | None,
    titles: Mapping[tuple[AssessmentKind, str], str],
    actor_id: str,
    now: datetime,
) -> list[NotificationItem]:
    mine: dict[tuple[AssessmentKind, str], list[SubmissionRecord]] = {}
    for raw in _safe("graded", submissions):
        record = _as_submission(raw)
        if record.student_id != actor_id or record.assessment_id is None:
            continue
        mine.setdefault((record.kind, record.assessment_id), []).append(record)

    items: list[NotificationItem] = []
    for (kind, assessment_id), group in mine.items():
        record = pick_authoritative(group)
        if record is None or not record.is_graded:
            continue
        label = "Assignment" if kind is AssessmentKind.ASSIGNMENT else "Quiz"
        title = titles.get((kind, assessment_id)) or f"{label} {assessment_id}"
        score = record.score
        detail = f": {score:g}" if score is not None else ""
        items.append(
            NotificationItem(
                id=f"graded:{kind.value}:{record.record_id or assessment_id}",
                title=f"{label} graded",
                message=f"{title} has been graded{detail}",
                kind="success",
                timestamp=record.submitted_at or now,
            )
        )
    return items


def _due(
    assignments: list[Assignment],
    submissions: Iterable[Any] | None,
    actor_id: str,
    now: datetime,
) -> list[NotificationItem]:
    submitted: set[str] = set()
    for raw in _safe("due", submissions):
        record = _as_submission(raw)
        if record.kind is AssessmentKind.ASSIGNMENT and record.student_id == actor_id:
            if record.assessment_id is not None:
                submitted.add(record.assessment_id)

    items: list[NotificationItem] = []
    for assignment in assignments:
        if not assignment.is_open(now) or assignment.id in submitted:
            continue
        due = assignment.due_date
        assert due is not None
        soon = due - now <= DUE_SOON
        items.append(
            NotificationItem(
                id=f"due:{assignment.id}",
                title="Assignment due soon" if soon else "Upcoming assignment",
                message=f"{assignment.title or 'Assignment ' + assignment.id} is due "
                f"{due.strftime('%Y-%m-%d %H:%M')} UTC",
                kind="warning" if soon else "info",
                timestamp=now,
            )
        )
    return items


def derive_notifications(
    messages: Iterable[Any] | None,
    submissions: Iterable[Any] | None,
    assignments: Iterable[Any] | None,
    actor_id: Any,
    now: datetime,
) -> list[NotificationItem]:
    """Recompute every notification for ``actor_id``, newest first."""
    actor_key = canonical_id(actor_id)
    if actor_key is None:
        return []
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    typed_assignments: list[Assignment] = []
    for raw in _safe("assignments", assignments):
        assignment = raw if isinstance(raw, Assignment) else Assignment.from_payload(raw)
        if assignment is not None:
            typed_assignments.append(assignment)
    titles = {
        (AssessmentKind.ASSIGNMENT, a.id): a.title for a in typed_assignments if a.title
    }
    submission_list = _safe("submissions", submissions)

    items = (
        _unread_messages(messages, actor_key, now)
        + _graded(submission_list, titles, actor_key, now)
        + _due(typed_assignments, submission_list, actor_key, now)
    )
    items.sort(key=lambda n: n.id)
    items.sort(key=lambda n: n.timestamp, reverse=True)
    return items


# ---------------------------------------------------------------------------
# Read / dismiss overlay
# ---------------------------------------------------------------------------


class NotificationOverlay:
    """Client-side read and dismissed state, keyed by notification id."""

    def __init__(self) -> None:
        self._read: set[str] = set()
        self._dismissed: set[str] = set()

    def mark_read(self, notification_id: str) -> None:
        self._read.add(notification_id)

    def mark_all_read(self, items: Iterable[NotificationItem]) -> None:
        self._read.update(item.id for item in items)

    def clear_all(self, items: Iterable[NotificationItem]) -> None:
        self._dismissed.update(item.id for item in items)

    def apply(self, items: Iterable[NotificationItem]) -> list[NotificationItem]:
        merged: list[NotificationItem] = []
        for item in items:
            if item.id in self._dismissed:
                continue
            if item.id in self._read and not item.is_read:
                item = replace(item, is_read=True)
            merged.append(item)
        return merged

    def unread_count(self, items: Iterable[NotificationItem]) -> int:
        return sum(1 for item in self.apply(items) if not item.is_read)
