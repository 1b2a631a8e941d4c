from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from app.models.user_record import UserRecord


class VersionConflictError(Exception):
    """The stored record changed since it was read."""

    def __init__(self, user_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"user record {user_id} is at version {actual}, expected {expected}"
        )
        self.user_id = user_id
        self.expected = expected
        self.actual = actual


class UserRecordRepo(Protocol):
    async def get(self, user_id: str) -> UserRecord | None: ...

    async def save(self, record: UserRecord, *, expected_version: int) -> UserRecord:
        """Compare-and-swap write.

        ``expected_version=0`` creates the record.  Returns the stored record
        with its new version; raises VersionConflictError on mismatch.
        """
        ...


class InMemoryUserRecordRepo:
    def __init__(self) -> None:
        self._store: dict[str, UserRecord] = {}

    async def get(self, user_id: str) -> UserRecord | None:
        return self._store.get(user_id)

    async def save(self, record: UserRecord, *, expected_version: int) -> UserRecord:
        current = self._store.get(record.user_id)
        actual = current.version if current is not None else 0
        if actual != expected_version:
            raise VersionConflictError(record.user_id, expected_version, actual)

        stored = replace(record, version=expected_version + 1)
        self._store[record.user_id] = stored
        return stored
