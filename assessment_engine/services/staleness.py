"""Stale-response guard.

Each key (a collection name, a quiz session id) carries a generation
counter.  begin() bumps it and hands back a ticket; a response is applied
only if its ticket is still current when it arrives.  A newer fetch, or an
explicit invalidate(), makes every older ticket stale, so a late response
can never overwrite fresher state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Ticket:
    key: str
    generation: int


class StaleGuard:
    def __init__(self) -> None:
        self._generations: dict[str, int] = {}

    def begin(self, key: str) -> Ticket:
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        return Ticket(key=key, generation=generation)

    def invalidate(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def is_current(self, ticket: Ticket) -> bool:
        current = self._generations.get(ticket.key, 0) == ticket.generation
        if not current:
            logger.debug(
                "Discarding stale response key=%s generation=%d",
                ticket.key,
                ticket.generation,
            )
        return current
