"""PostgreSQL implementation of UserRecordRepo."""

from __future__ import annotations

import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import UserRecordRow
from app.models.user_record import UserRecord
from app.repos.documents import (
    entry_from_document,
    entry_to_document,
    record_from_document,
    record_to_document,
)
from app.repos.user_record_repo import VersionConflictError


class PgUserRecordRepo:
    """Satisfies the UserRecordRepo Protocol using a JSONB document per learner."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> UserRecord | None:
        stmt = (
            select(UserRecordRow)
            .where(UserRecordRow.user_id == user_id)
            # a retry must see the row as committed, not the session copy
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_record(row)

    async def save(self, record: UserRecord, *, expected_version: int) -> UserRecord:
        now = int(datetime.datetime.now(datetime.UTC).timestamp())
        values = {
            "version": expected_version + 1,
            "watchlist": [entry_to_document(e) for e in record.watchlist],
            "quiz_results": [record_to_document(r) for r in record.quiz_results],
            "updated_at": now,
        }

        if expected_version == 0:
            stmt = (
                insert(UserRecordRow)
                .values(user_id=record.user_id, **values)
                .on_conflict_do_nothing(index_elements=[UserRecordRow.user_id])
            )
        else:
            stmt = (
                update(UserRecordRow)
                .where(UserRecordRow.user_id == record.user_id)
                .where(UserRecordRow.version == expected_version)
                .values(**values)
            )

        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            current = await self.get(record.user_id)
            actual = current.version if current is not None else 0
            raise VersionConflictError(record.user_id, expected_version, actual)

        await self._session.flush()
        return UserRecord(
            user_id=record.user_id,
            watchlist=record.watchlist,
            quiz_results=record.quiz_results,
            version=expected_version + 1,
        )


def _row_to_record(row: UserRecordRow) -> UserRecord:
    return UserRecord(
        user_id=row.user_id,
        watchlist=tuple(entry_from_document(d) for d in row.watchlist or []),
        quiz_results=tuple(record_from_document(d) for d in row.quiz_results or []),
        version=row.version,
    )
