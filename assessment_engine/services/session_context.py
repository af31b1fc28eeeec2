"""Session context: who is logged in, and with which bearer token.

Replaces ambient token/user storage with an explicit object passed to the
backend adapter and the workspace.  The engine never decides what a user
may do; it only carries the identity and notices when the token has
obviously expired so a dead session fails fast instead of on the server.

Tokens are read with PyJWT WITHOUT signature verification: the client does
not hold the server's key, and the server re-verifies every request anyway.
Only ``exp`` is consulted.  Opaque (non-JWT) tokens never expire locally.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import jwt

from assessment_engine.core.errors import SessionExpired, Unauthorized
from assessment_engine.models.actor import Actor

logger = logging.getLogger(__name__)


def token_expiry(token: str) -> datetime | None:
    """The ``exp`` claim of a JWT as an aware datetime, or None."""
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
            algorithms=["HS256", "HS384", "HS512", "RS256", "ES256"],
        )
    except jwt.InvalidTokenError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=UTC)


class SessionContext:
    def __init__(self) -> None:
        self._actor: Actor | None = None
        self._token: str | None = None
        self._expires_at: datetime | None = None

    @property
    def actor(self) -> Actor | None:
        return self._actor

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at

    @property
    def is_authenticated(self) -> bool:
        return self._actor is not None and self._token is not None

    def login(self, token: str, user_payload: Any) -> Actor:
        """Install the identity returned by the login endpoint.

        Raises InvalidActorPayload when the user payload has no usable id
        or role, and Unauthorized when the token is blank.
        """
        if not isinstance(token, str) or not token.strip():
            raise Unauthorized("login response carried no token")
        actor = Actor.from_payload(user_payload)
        self._token = token.strip()
        self._actor = actor
        self._expires_at = token_expiry(self._token)
        logger.info(
            "Session started actor_id=%s role=%s",
            actor.id,
            actor.role.value,
            extra={"actor_id": actor.id},
        )
        return actor

    def logout(self) -> None:
        if self._actor is not None:
            logger.info("Session ended actor_id=%s", self._actor.id)
        self._actor = None
        self._token = None
        self._expires_at = None

    def ensure_active(self, now: datetime | None = None) -> Actor:
        if self._actor is None or self._token is None:
            raise Unauthorized("not logged in")
        moment = now or datetime.now(UTC)
        if self._expires_at is not None and moment >= self._expires_at:
            raise SessionExpired(f"token expired at {self._expires_at.isoformat()}")
        return self._actor

    def auth_headers(self) -> dict[str, str]:
        if self._token is None:
            return {}
        return {"Authorization": f"Bearer {self._token}"}
