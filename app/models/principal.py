from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated learner extracted from a validated bearer token.

    ``user_id`` is the JWT subject and keys the learner's record in the
    document store.
    """

    user_id: str
    roles: frozenset[str]
