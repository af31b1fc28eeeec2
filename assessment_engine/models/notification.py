from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from assessment_engine.services.coercion import (
    as_bool,
    field,
    parse_instant,
)
from assessment_engine.services.identity import resolve_id, resolve_ref

NotificationKind = Literal["info", "success", "warning", "error"]


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    sender_id: str | None
    receiver_id: str | None
    content: str
    timestamp: datetime | None = None
    is_read: bool = False

    @staticmethod
    def from_payload(raw: Any) -> Message | None:
        message_id = resolve_id(raw)
        if message_id is None:
            return None
        content = field(raw, "content")
        if not isinstance(content, str):
            content = field(raw, "message")
        # "read" on older endpoints, "isRead" on newer ones
        read = field(raw, "isRead")
        if read is None:
            read = field(raw, "read")
        return Message(
            id=message_id,
            sender_id=resolve_ref(raw, "sender"),
            receiver_id=resolve_ref(raw, "receiver"),
            content=content if isinstance(content, str) else "",
            timestamp=parse_instant(field(raw, "timestamp"))
            or parse_instant(field(raw, "sentAt")),
            is_read=as_bool(read, default=False),
        )


@dataclass(frozen=True, slots=True)
class NotificationItem:
    """A derived, transient notification.  Never persisted."""

    id: str
    title: str
    message: str
    kind: NotificationKind
    timestamp: datetime
    is_read: bool = False
