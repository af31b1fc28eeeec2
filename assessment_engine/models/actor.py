from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from assessment_engine.services.coercion import field
from assessment_engine.services.identity import resolve_id

logger = logging.getLogger(__name__)


class Role(str, Enum):
    STUDENT = "student"
    FACILITATOR = "facilitator"
    ADMIN = "admin"


# Older backend builds send "learner" for students.
_ROLE_ALIASES = {"learner": Role.STUDENT}


class InvalidActorPayload(ValueError):
    pass


def normalize_role(raw: Any) -> Role | None:
    """Map ``ROLE_STUDENT`` / ``STUDENT`` / ``student`` (etc.) onto Role.

    Accepts an Enum member, a string, or None.  Unknown values → None.
    """
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, str):
        return None
    text = raw.strip().lower()
    if text.startswith("role_"):
        text = text[len("role_"):]
    if text in _ROLE_ALIASES:
        return _ROLE_ALIASES[text]
    try:
        return Role(text)
    except ValueError:
        return None


def _display_name(raw: Any) -> str:
    name = field(raw, "name") or field(raw, "displayName")
    if isinstance(name, str) and name.strip():
        return name.strip()
    parts = [field(raw, "firstname"), field(raw, "surname")]
    joined = " ".join(p.strip() for p in parts if isinstance(p, str) and p.strip())
    if joined:
        return joined
    email = field(raw, "email")
    return email.strip() if isinstance(email, str) else ""


@dataclass(frozen=True, slots=True)
class Actor:
    """An authenticated user, normalized at the ingestion boundary.

    Created from the login/registration response (or a users-collection
    entry), carried in the SessionContext, discarded on logout.
    """

    id: str
    display_name: str
    role: Role
    email: str = ""

    @property
    def is_student(self) -> bool:
        return self.role is Role.STUDENT

    @property
    def is_facilitator(self) -> bool:
        return self.role is Role.FACILITATOR

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def matches(self, term: str | None) -> bool:
        """Case-insensitive search against name and email."""
        if not term or not term.strip():
            return True
        needle = term.strip().lower()
        return needle in self.display_name.lower() or needle in self.email.lower()

    @staticmethod
    def from_payload(raw: Any) -> Actor:
        """Strict constructor for the login boundary."""
        actor = coerce_actor(raw)
        if actor is None:
            raise InvalidActorPayload("user payload needs an id and a known role")
        return actor


def coerce_actor(raw: Any) -> Actor | None:
    """Lenient constructor for roster ingestion: None instead of raising."""
    if isinstance(raw, Actor):
        return raw
    actor_id = resolve_id(raw)
    role = normalize_role(field(raw, "role"))
    if actor_id is None or role is None:
        logger.debug("Skipping user payload id=%r role=%r", actor_id, field(raw, "role"))
        return None
    email = field(raw, "email")
    return Actor(
        id=actor_id,
        display_name=_display_name(raw),
        role=role,
        email=email.strip() if isinstance(email, str) else "",
    )
