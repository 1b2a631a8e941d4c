"""Watchlist operations against the learner record store.

Each operation follows the same shape: read the learner's record, run a pure
step from watchlist_reconciler, and write back only when that step reports a
change.  Writes are compare-and-swap on the record version; on a conflict
the record is re-read and the pure step re-applied, so the reconciler acts
as the merge function for concurrent writers (two tabs, two devices).

Progress is recomputed synchronously whenever a quiz completion is recorded,
so the dashboard never lags behind the learner's quiz results.
"""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TypeVar

from app.core.metrics import (
    CACHE_OPERATIONS,
    WATCHLIST_DUPLICATES_REMOVED,
    WATCHLIST_RECONCILIATIONS,
    WATCHLIST_WRITE_CONFLICTS,
)
from app.models.quiz import QuizCompletionRecord
from app.models.user_record import UserRecord
from app.models.watchlist import (
    STATUS_COMPLETED,
    WATCHLIST_STATUSES,
    CourseSnapshot,
    WatchlistEntry,
)
from app.repos.documents import entry_from_document, entry_to_document
from app.repos.user_record_repo import UserRecordRepo, VersionConflictError
from app.services.cache import CacheService
from app.services.watchlist_reconciler import (
    ReconcileResult,
    WatchlistValidationError,
    reconcile,
    upsert_entry,
)

logger = logging.getLogger(__name__)

WATCHLIST_MAX_WRITE_ATTEMPTS = 3

T = TypeVar("T")


class WatchlistEntryNotFoundError(KeyError):
    pass


class IdempotencyConflictError(Exception):
    pass


class WatchlistWriteConflictError(Exception):
    """Gave up after repeated compare-and-swap conflicts."""


@dataclass(frozen=True, slots=True)
class OpenCourseResult:
    entry: WatchlistEntry
    is_new_entry: bool


@dataclass(frozen=True, slots=True)
class QuizSubmission:
    course_id: str
    video_id: str
    total_questions: int
    correct_answers: int
    video_number: int | None = None
    video_title: str = ""
    quiz_title: str = ""
    idempotency_key: str | None = None


@dataclass(frozen=True, slots=True)
class QuizCompletionOutcome:
    record: QuizCompletionRecord
    entry: WatchlistEntry | None
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class WatchlistSummary:
    total_courses: int
    completed_courses: int
    average_progress: int
    total_quizzes: int


def _epoch_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def _cache_key(user_id: str) -> str:
    return f"watchlist:{user_id}:entries"


def summarize(entries: list[WatchlistEntry]) -> WatchlistSummary:
    """Dashboard totals.  ``average_progress`` is the rounded mean, 0 if empty."""
    total = len(entries)
    progress_sum = sum(e.progress for e in entries)
    return WatchlistSummary(
        total_courses=total,
        completed_courses=sum(1 for e in entries if e.status == STATUS_COMPLETED),
        average_progress=(2 * progress_sum + total) // (2 * total) if total else 0,
        total_quizzes=sum(e.completed_quizzes for e in entries),
    )


def filter_entries(
    entries: list[WatchlistEntry],
    *,
    search: str | None = None,
    status: str | None = None,
) -> list[WatchlistEntry]:
    """Case-insensitive search over title and instructor, plus a status filter."""
    if status is not None and status != "all" and status not in WATCHLIST_STATUSES:
        raise WatchlistValidationError(
            f"status must be all|in_progress|completed (got {status!r})"
        )

    needle = (search or "").strip().lower()
    result = []
    for e in entries:
        haystacks = (e.course_title.lower(), e.instructor.lower())
        if needle and not any(needle in h for h in haystacks):
            continue
        if status not in (None, "all") and e.status != status:
            continue
        result.append(e)
    return result


class WatchlistService:
    def __init__(
        self,
        repo: UserRecordRepo,
        cache: CacheService | None = None,
        *,
        cache_ttl_seconds: int = 300,
        clock: Callable[[], int] = _epoch_now,
    ) -> None:
        self._repo = repo
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def open_course(
        self, user_id: str, snapshot: CourseSnapshot
    ) -> OpenCourseResult:
        now = self._clock()

        def _apply(record: UserRecord) -> tuple[UserRecord | None, OpenCourseResult]:
            upserted = upsert_entry(
                record.watchlist, snapshot, record.quiz_results, now=now
            )
            cid = snapshot.course_id
            matching = [e for e in upserted.entries if e.course_id == cid]
            entry = matching[-1]
            return (
                replace(record, watchlist=upserted.entries),
                OpenCourseResult(entry=entry, is_new_entry=upserted.is_new_entry),
            )

        result, _ = await self._update(user_id, _apply)
        logger.info(
            "Course opened user=%s course=%s new=%s",
            user_id,
            snapshot.course_id,
            result.is_new_entry,
        )
        return result

    async def reconcile_watchlist(self, user_id: str) -> ReconcileResult:
        result, _ = await self._reconcile(user_id)
        return result

    async def _reconcile(self, user_id: str) -> tuple[ReconcileResult, int]:
        def _apply(record: UserRecord) -> tuple[UserRecord | None, ReconcileResult]:
            result = reconcile(record.watchlist, record.quiz_results)
            if not result.changed:
                return None, result
            return replace(record, watchlist=result.entries), result

        result, version = await self._update(user_id, _apply)

        WATCHLIST_RECONCILIATIONS.labels(
            result="changed" if result.changed else "unchanged"
        ).inc()
        if result.duplicates_removed:
            WATCHLIST_DUPLICATES_REMOVED.inc(result.duplicates_removed)
            logger.info(
                "Collapsed %d duplicate watchlist entries user=%s",
                result.duplicates_removed,
                user_id,
            )
        return result, version

    async def record_quiz_completion(
        self, user_id: str, submission: QuizSubmission
    ) -> QuizCompletionOutcome:
        _validate_submission(submission)
        new_record = QuizCompletionRecord.new(
            course_id=submission.course_id,
            video_id=submission.video_id,
            completed_at=self._clock(),
            total_questions=submission.total_questions,
            correct_answers=submission.correct_answers,
            video_number=submission.video_number,
            video_title=submission.video_title,
            quiz_title=submission.quiz_title,
            idempotency_key=submission.idempotency_key,
        )

        def _apply(
            record: UserRecord,
        ) -> tuple[UserRecord | None, QuizCompletionOutcome]:
            if submission.idempotency_key:
                existing = next(
                    (
                        r
                        for r in record.quiz_results
                        if r.idempotency_key == submission.idempotency_key
                    ),
                    None,
                )
                if existing is not None:
                    if not existing.same_submission(new_record):
                        raise IdempotencyConflictError(
                            "Idempotency key reuse with a different quiz submission"
                        )
                    entry = record.watchlist_by_course().get(existing.course_id)
                    return None, QuizCompletionOutcome(existing, entry, replayed=True)

            quiz_results = (*record.quiz_results, new_record)
            reconciled = reconcile(record.watchlist, quiz_results)
            updated = replace(
                record, quiz_results=quiz_results, watchlist=reconciled.entries
            )
            entry = updated.watchlist_by_course().get(new_record.course_id)
            return updated, QuizCompletionOutcome(new_record, entry)

        outcome, _ = await self._update(user_id, _apply)
        if outcome.replayed:
            logger.info(
                "Replayed quiz completion user=%s key=%s",
                user_id,
                submission.idempotency_key,
            )
        else:
            logger.info(
                "Quiz completed user=%s course=%s video=%s score=%d",
                user_id,
                new_record.course_id,
                new_record.video_id,
                new_record.score,
            )
        return outcome

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_watchlist(
        self,
        user_id: str,
        *,
        search: str | None = None,
        status: str | None = None,
    ) -> list[WatchlistEntry]:
        """Reconciled watchlist, most recently accessed first.

        Loading the list is a reconciliation point: if the stored list is
        stale or has duplicates, the repaired list is written back.
        """
        entries = await self._cached_entries(user_id)
        if entries is None:
            result, version = await self._reconcile(user_id)
            entries = sorted(result.entries, key=lambda e: e.recency, reverse=True)
            await self._cache_entries(user_id, entries, version)
        return filter_entries(entries, search=search, status=status)

    async def get_entry(self, user_id: str, course_id: str) -> WatchlistEntry:
        for entry in await self.list_watchlist(user_id):
            if entry.course_id == course_id:
                return entry
        raise WatchlistEntryNotFoundError(course_id)

    async def quiz_results(
        self, user_id: str, course_id: str | None = None
    ) -> list[QuizCompletionRecord]:
        record = await self._repo.get(user_id)
        if record is None:
            return []
        if course_id is None:
            return list(record.quiz_results)
        return record.results_for_course(course_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _update(
        self,
        user_id: str,
        apply: Callable[[UserRecord], tuple[UserRecord | None, T]],
    ) -> tuple[T, int]:
        """Optimistic read-modify-write.

        ``apply`` is pure and returns (record_to_save or None, result).
        None means nothing changed and no write is issued.  Returns the
        result with the version of the record it was computed from.
        """
        last_conflict: VersionConflictError | None = None
        for attempt in range(1, WATCHLIST_MAX_WRITE_ATTEMPTS + 1):
            current = await self._repo.get(user_id) or UserRecord.empty(user_id)
            updated, result = apply(current)
            if updated is None:
                return result, current.version
            try:
                stored = await self._repo.save(
                    updated, expected_version=current.version
                )
            except VersionConflictError as exc:
                WATCHLIST_WRITE_CONFLICTS.inc()
                logger.warning(
                    "Write conflict user=%s attempt=%d/%d: %s",
                    user_id,
                    attempt,
                    WATCHLIST_MAX_WRITE_ATTEMPTS,
                    exc,
                )
                last_conflict = exc
                continue
            await self._invalidate(user_id)
            return result, stored.version

        raise WatchlistWriteConflictError(
            f"user record {user_id} kept changing; gave up after "
            f"{WATCHLIST_MAX_WRITE_ATTEMPTS} attempts"
        ) from last_conflict

    async def _cached_entries(self, user_id: str) -> list[WatchlistEntry] | None:
        if self._cache is None:
            return None
        cached = await self._cache.get(_cache_key(user_id))
        if cached is None:
            CACHE_OPERATIONS.labels(operation="miss").inc()
            return None
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return [entry_from_document(d) for d in json.loads(cached)]

    async def _cache_entries(
        self, user_id: str, entries: list[WatchlistEntry], version: int
    ) -> None:
        """Cache a list computed from record ``version``.

        A write that commits before the re-read below is caught here; one
        that commits after it invalidates the key itself.
        """
        if self._cache is None:
            return
        key = _cache_key(user_id)
        await self._cache.set(
            key,
            json.dumps([entry_to_document(e) for e in entries]),
            self._cache_ttl,
        )
        current = await self._repo.get(user_id)
        if (current.version if current is not None else 0) != version:
            logger.info("Dropped stale watchlist cache fill user=%s", user_id)
            await self._cache.delete(key)

    async def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            await self._cache.delete_pattern(f"watchlist:{user_id}:*")


def _validate_submission(submission: QuizSubmission) -> None:
    for name in ("course_id", "video_id"):
        value = getattr(submission, name)
        if not isinstance(value, str) or not value.strip():
            raise WatchlistValidationError(f"{name} must be a non-empty string")
    if submission.total_questions < 1:
        raise WatchlistValidationError("total_questions must be >= 1")
    if not 0 <= submission.correct_answers <= submission.total_questions:
        raise WatchlistValidationError(
            "correct_answers must be between 0 and total_questions"
        )
