from __future__ import annotations

import pytest

from assessment_engine.models.actor import (
    Actor,
    InvalidActorPayload,
    Role,
    coerce_actor,
    normalize_role,
)

# ---- role normalization ----


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("ROLE_STUDENT", Role.STUDENT),
        ("STUDENT", Role.STUDENT),
        ("student", Role.STUDENT),
        ("learner", Role.STUDENT),
        (" role_facilitator ", Role.FACILITATOR),
        ("Admin", Role.ADMIN),
        (Role.ADMIN, Role.ADMIN),
    ],
)
def test_normalize_role_accepts_backend_spellings(raw: object, expected: Role) -> None:
    assert normalize_role(raw) is expected


@pytest.mark.parametrize("raw", [None, "", "ROLE_", "janitor", 3])
def test_normalize_role_rejects_unknown(raw: object) -> None:
    assert normalize_role(raw) is None


# ---- construction ----


def test_from_payload_normalizes_id_and_role() -> None:
    actor = Actor.from_payload({"id": 7, "name": " Sam ", "role": "ROLE_STUDENT"})
    assert actor == Actor(id="7", display_name="Sam", role=Role.STUDENT)
    assert actor.is_student
    assert not actor.is_facilitator


def test_display_name_falls_back_to_first_and_surname_then_email() -> None:
    joined = coerce_actor({"id": 1, "firstname": "Olu", "surname": "Other", "role": "admin"})
    assert joined is not None and joined.display_name == "Olu Other"
    bare = coerce_actor({"id": 2, "email": "x@example.com", "role": "student"})
    assert bare is not None and bare.display_name == "x@example.com"


def test_from_payload_raises_on_missing_role() -> None:
    with pytest.raises(InvalidActorPayload):
        Actor.from_payload({"id": 1, "name": "nobody"})


def test_from_payload_raises_on_missing_id() -> None:
    with pytest.raises(InvalidActorPayload):
        Actor.from_payload({"role": "STUDENT"})


def test_coerce_actor_returns_none_instead_of_raising() -> None:
    assert coerce_actor({"role": "STUDENT"}) is None
    assert coerce_actor(None) is None


def test_actor_is_immutable() -> None:
    actor = Actor(id="1", display_name="A", role=Role.ADMIN)
    with pytest.raises(AttributeError):
        actor.role = Role.STUDENT  # type: ignore[misc]


# ---- search ----


def test_matches_is_case_insensitive_on_name_and_email() -> None:
    actor = Actor(id="1", display_name="Sam One", role=Role.STUDENT, email="sam@example.com")
    assert actor.matches("sAM")
    assert actor.matches("EXAMPLE.com")
    assert actor.matches("   ")
    assert actor.matches(None)
    assert not actor.matches("sue")
