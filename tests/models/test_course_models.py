from __future__ import annotations

from datetime import UTC, datetime

from assessment_engine.models.course import ContentItem, Course, Enrollment, Module
from assessment_engine.models.notification import Message


def test_course_facilitator_from_nested_or_scalar() -> None:
    nested = Course.from_payload({"id": 1, "title": "A", "facilitator": {"id": 9}})
    scalar = Course.from_payload({"id": 2, "title": "B", "facilitatorId": 9})
    assert nested is not None and scalar is not None
    assert nested.facilitator_id == scalar.facilitator_id == "9"
    assert Course.from_payload({"id": 3, "instructor": {"id": 9}}).facilitator_id == "9"
    assert Course.from_payload({"title": "no id"}) is None


def test_module_course_ref_and_order() -> None:
    module = Module.from_payload({"id": "M1", "course": {"id": 3}, "orderIndex": "2"})
    assert module == Module(id="M1", course_id="3", title="", order_index=2)


def test_content_item_assessment_tags() -> None:
    video = ContentItem.from_payload({"id": 1, "moduleId": 2, "contentType": "video"})
    quiz = ContentItem.from_payload({"id": 2, "moduleId": 2, "type": "Quiz"})
    assert video is not None and not video.is_assessment
    assert quiz is not None and quiz.is_assessment


def test_enrollment_status() -> None:
    active = Enrollment.from_payload({"studentId": 1, "courseId": 2})
    dropped = Enrollment.from_payload({"studentId": 1, "courseId": 2, "status": "dropped"})
    inactive = Enrollment.from_payload({"studentId": 1, "courseId": 2, "isActive": False})
    assert active is not None and active.is_active
    assert dropped is not None and not dropped.is_active
    assert inactive is not None and inactive.status == "DROPPED"
    assert Enrollment.from_payload({"studentId": 1}) is None


def test_message_from_payload_reads_both_read_flags() -> None:
    newer = Message.from_payload(
        {
            "id": 1,
            "senderId": 2,
            "receiverId": 3,
            "content": "hi",
            "isRead": True,
            "timestamp": "2026-10-19T10:00:00Z",
        }
    )
    older = Message.from_payload(
        {"id": 2, "sender": {"id": 2}, "receiver": {"id": 3}, "message": "yo", "read": "false"}
    )
    assert newer is not None and older is not None
    assert newer.is_read is True
    assert newer.timestamp == datetime(2026, 10, 19, 10, tzinfo=UTC)
    assert (older.sender_id, older.receiver_id, older.content) == ("2", "3", "yo")
    assert older.is_read is False
