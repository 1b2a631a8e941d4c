"""WatchlistService tests.

Async service methods are driven with asyncio.run, matching how the
rest of the suite exercises async code without a plugin.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import pytest

from app.models.user_record import UserRecord
from app.models.watchlist import CourseSnapshot, WatchlistEntry
from app.repos.user_record_repo import InMemoryUserRecordRepo, VersionConflictError
from app.services.cache import InMemoryCacheService
from app.services.watchlist_reconciler import WatchlistValidationError
from app.services.watchlist_service import (
    WATCHLIST_MAX_WRITE_ATTEMPTS,
    IdempotencyConflictError,
    QuizSubmission,
    WatchlistEntryNotFoundError,
    WatchlistService,
    WatchlistWriteConflictError,
    filter_entries,
    summarize,
)

NOW = 1_760_000_000


class _Clock:
    def __init__(self, start: int = NOW) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


class _CountingRepo(InMemoryUserRecordRepo):
    def __init__(self) -> None:
        super().__init__()
        self.saves = 0

    async def save(self, record: UserRecord, *, expected_version: int) -> UserRecord:
        self.saves += 1
        return await super().save(record, expected_version=expected_version)


class _RacingRepo(_CountingRepo):
    """Simulates another writer landing between our read and our write."""

    def __init__(self, races: int, rival_entry: WatchlistEntry) -> None:
        super().__init__()
        self._races = races
        self._rival_entry = rival_entry

    async def save(self, record: UserRecord, *, expected_version: int) -> UserRecord:
        if self._races > 0:
            self._races -= 1
            current = self._store.get(record.user_id) or UserRecord.empty(
                record.user_id
            )
            rival = replace(current, watchlist=(*current.watchlist, self._rival_entry))
            await super().save(rival, expected_version=current.version)
        return await super().save(record, expected_version=expected_version)


def _snapshot(course_id: str = "c1", total_videos: int = 4, **kw) -> CourseSnapshot:
    fields = {
        "course_id": course_id,
        "title": f"Course {course_id}",
        "description": "",
        "instructor_display_name": "Ada Lovelace",
        "total_videos": total_videos,
    }
    fields.update(kw)
    return CourseSnapshot(**fields)


def _submission(course_id: str = "c1", video_id: str = "v1", **kw) -> QuizSubmission:
    fields = {
        "course_id": course_id,
        "video_id": video_id,
        "total_questions": 4,
        "correct_answers": 3,
    }
    fields.update(kw)
    return QuizSubmission(**fields)


def _service(repo=None, cache=None, clock=None) -> WatchlistService:
    return WatchlistService(
        repo if repo is not None else InMemoryUserRecordRepo(),
        cache,
        clock=clock or _Clock(),
    )


# ---- open_course ----


def test_open_course_creates_entry_then_touches_it() -> None:
    clock = _Clock()
    repo = InMemoryUserRecordRepo()
    svc = _service(repo, clock=clock)

    first = asyncio.run(svc.open_course("u1", _snapshot()))
    assert first.is_new_entry is True
    assert first.entry.added_at == NOW

    clock.now = NOW + 60
    second = asyncio.run(svc.open_course("u1", _snapshot()))
    assert second.is_new_entry is False
    assert second.entry.last_accessed == NOW + 60
    assert second.entry.added_at == NOW

    stored = asyncio.run(repo.get("u1"))
    assert stored is not None
    assert len(stored.watchlist) == 1
    assert stored.version == 2


def test_open_course_uses_quizzes_completed_beforehand() -> None:
    svc = _service()
    asyncio.run(svc.record_quiz_completion("u1", _submission("c1", "v1")))
    result = asyncio.run(svc.open_course("u1", _snapshot("c1", total_videos=3)))
    assert result.entry.completed_quizzes == 1
    assert result.entry.progress == 33


def test_open_course_rejects_negative_total_videos() -> None:
    svc = _service()
    with pytest.raises(WatchlistValidationError):
        asyncio.run(svc.open_course("u1", _snapshot(total_videos=-1)))


# ---- record_quiz_completion ----


def test_quiz_completion_updates_progress_immediately() -> None:
    svc = _service()
    asyncio.run(svc.open_course("u1", _snapshot("c1", total_videos=2)))

    outcome = asyncio.run(svc.record_quiz_completion("u1", _submission("c1", "v1")))
    assert outcome.record.score == 75
    assert outcome.entry is not None
    assert outcome.entry.progress == 50

    outcome = asyncio.run(svc.record_quiz_completion("u1", _submission("c1", "v2")))
    assert outcome.entry is not None
    assert outcome.entry.progress == 100
    assert outcome.entry.status == "completed"


def test_quiz_completion_for_course_not_in_watchlist() -> None:
    svc = _service()
    outcome = asyncio.run(svc.record_quiz_completion("u1", _submission("c7")))
    assert outcome.entry is None
    assert len(asyncio.run(svc.quiz_results("u1"))) == 1


def test_quiz_retake_appends_record_without_inflating_progress() -> None:
    svc = _service()
    asyncio.run(svc.open_course("u1", _snapshot("c1", total_videos=4)))
    asyncio.run(svc.record_quiz_completion("u1", _submission(correct_answers=1)))
    outcome = asyncio.run(
        svc.record_quiz_completion("u1", _submission(correct_answers=4))
    )
    assert outcome.entry is not None
    assert outcome.entry.completed_quizzes == 1
    assert [r.score for r in asyncio.run(svc.quiz_results("u1", "c1"))] == [25, 100]


def test_idempotent_replay_returns_original_without_writing() -> None:
    repo = _CountingRepo()
    svc = _service(repo)
    sub = _submission(idempotency_key="k-1")

    first = asyncio.run(svc.record_quiz_completion("u1", sub))
    saves = repo.saves
    replay = asyncio.run(svc.record_quiz_completion("u1", sub))

    assert replay.replayed is True
    assert replay.record == first.record
    assert repo.saves == saves
    assert len(asyncio.run(svc.quiz_results("u1"))) == 1


def test_idempotency_key_reuse_with_different_payload_conflicts() -> None:
    svc = _service()
    asyncio.run(svc.record_quiz_completion("u1", _submission(idempotency_key="k")))
    with pytest.raises(IdempotencyConflictError):
        asyncio.run(
            svc.record_quiz_completion(
                "u1", _submission(video_id="v2", idempotency_key="k")
            )
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"video_id": ""},
        {"course_id": "   "},
        {"total_questions": 0},
        {"correct_answers": -1},
        {"correct_answers": 5},
    ],
)
def test_invalid_submission_rejected(overrides: dict) -> None:
    svc = _service()
    with pytest.raises(WatchlistValidationError):
        asyncio.run(svc.record_quiz_completion("u1", _submission(**overrides)))


# ---- list / get ----


def test_list_watchlist_most_recent_first() -> None:
    clock = _Clock()
    svc = _service(clock=clock)
    for i, cid in enumerate(["a", "b", "c"]):
        clock.now = NOW + i
        asyncio.run(svc.open_course("u1", _snapshot(cid)))
    clock.now = NOW + 10
    asyncio.run(svc.open_course("u1", _snapshot("a")))

    entries = asyncio.run(svc.list_watchlist("u1"))
    assert [e.course_id for e in entries] == ["a", "c", "b"]


def test_list_watchlist_repairs_stored_duplicates() -> None:
    repo = InMemoryUserRecordRepo()
    dup = WatchlistEntry(
        course_id="c1",
        course_title="Dup",
        course_description="",
        instructor="Ada",
        total_videos=2,
        added_at=NOW,
    )
    seeded = UserRecord(user_id="u1", watchlist=(dup, replace(dup, added_at=NOW + 5)))
    asyncio.run(repo.save(seeded, expected_version=0))

    entries = asyncio.run(_service(repo).list_watchlist("u1"))
    assert len(entries) == 1
    stored = asyncio.run(repo.get("u1"))
    assert stored is not None
    assert len(stored.watchlist) == 1
    assert stored.version == 2


def test_list_watchlist_clean_record_is_not_rewritten() -> None:
    repo = _CountingRepo()
    svc = _service(repo)
    asyncio.run(svc.open_course("u1", _snapshot()))
    saves = repo.saves
    asyncio.run(svc.list_watchlist("u1"))
    assert repo.saves == saves


def test_list_watchlist_for_unknown_learner_is_empty() -> None:
    assert asyncio.run(_service().list_watchlist("nobody")) == []


def test_list_watchlist_served_from_cache_and_invalidated_on_write() -> None:
    cache = InMemoryCacheService()
    svc = _service(cache=cache)
    asyncio.run(svc.open_course("u1", _snapshot("c1")))

    asyncio.run(svc.list_watchlist("u1"))
    cached = json.loads(asyncio.run(cache.get("watchlist:u1:entries")))
    assert [d["course_id"] for d in cached] == ["c1"]

    asyncio.run(svc.open_course("u1", _snapshot("c2")))
    assert "watchlist:u1:entries" not in cache._store
    assert len(asyncio.run(svc.list_watchlist("u1"))) == 2


class _InterleavingRepo(InMemoryUserRecordRepo):
    """Runs ``on_read`` once, after handing back the record it read."""

    def __init__(self) -> None:
        super().__init__()
        self.on_read = None

    async def get(self, user_id: str) -> UserRecord | None:
        record = await super().get(user_id)
        hook, self.on_read = self.on_read, None
        if hook is not None:
            await hook()
        return record


def test_completion_during_cache_fill_is_not_served_stale() -> None:
    repo = _InterleavingRepo()
    cache = InMemoryCacheService()
    svc = _service(repo, cache)
    asyncio.run(svc.open_course("u1", _snapshot("c1", total_videos=2)))

    async def _complete() -> None:
        await svc.record_quiz_completion("u1", _submission("c1", "v1"))

    repo.on_read = _complete
    # This call reconciled the record as it was before the completion.
    asyncio.run(svc.list_watchlist("u1"))
    assert "watchlist:u1:entries" not in cache._store

    stored = asyncio.run(repo.get("u1"))
    assert stored is not None
    assert stored.watchlist[0].progress == 50
    (entry,) = asyncio.run(svc.list_watchlist("u1"))
    assert entry.progress == 50


def test_get_entry_and_missing_entry() -> None:
    svc = _service()
    asyncio.run(svc.open_course("u1", _snapshot("c1")))
    assert asyncio.run(svc.get_entry("u1", "c1")).course_id == "c1"
    with pytest.raises(WatchlistEntryNotFoundError):
        asyncio.run(svc.get_entry("u1", "missing"))


def test_learners_are_isolated() -> None:
    svc = _service()
    asyncio.run(svc.open_course("u1", _snapshot("c1")))
    assert asyncio.run(svc.list_watchlist("u2")) == []


# ---- concurrency ----


def test_write_conflict_is_retried_and_merged() -> None:
    rival = WatchlistEntry(
        course_id="rival",
        course_title="From another tab",
        course_description="",
        instructor="Grace",
        total_videos=1,
        added_at=NOW,
    )
    repo = _RacingRepo(races=1, rival_entry=rival)
    svc = _service(repo)

    result = asyncio.run(svc.open_course("u1", _snapshot("c1")))
    assert result.is_new_entry is True

    stored = asyncio.run(repo.get("u1"))
    assert stored is not None
    assert sorted(e.course_id for e in stored.watchlist) == ["c1", "rival"]


def test_write_conflict_gives_up_after_max_attempts() -> None:
    rival = WatchlistEntry(
        course_id="rival",
        course_title="",
        course_description="",
        instructor="",
        total_videos=1,
        added_at=NOW,
    )
    repo = _RacingRepo(races=WATCHLIST_MAX_WRITE_ATTEMPTS, rival_entry=rival)
    with pytest.raises(WatchlistWriteConflictError) as exc_info:
        asyncio.run(_service(repo).open_course("u1", _snapshot("c1")))
    assert isinstance(exc_info.value.__cause__, VersionConflictError)


# ---- pure helpers ----


def _entry(course_id: str, **kw) -> WatchlistEntry:
    fields = {
        "course_id": course_id,
        "course_title": f"Intro to {course_id}",
        "course_description": "",
        "instructor": "Ada Lovelace",
        "total_videos": 4,
        "added_at": NOW,
    }
    fields.update(kw)
    return WatchlistEntry(**fields)


def test_summarize() -> None:
    entries = [
        _entry("a", progress=100, status="completed", completed_quizzes=4),
        _entry("b", progress=25, completed_quizzes=1),
        _entry("c", progress=0),
    ]
    s = summarize(entries)
    assert s.total_courses == 3
    assert s.completed_courses == 1
    # 125 / 3 = 41.67
    assert s.average_progress == 42
    assert s.total_quizzes == 5


def test_summarize_empty() -> None:
    s = summarize([])
    assert (s.total_courses, s.average_progress) == (0, 0)


def test_filter_entries_search_and_status() -> None:
    entries = [
        _entry("python", status="completed", progress=100),
        _entry("rust", instructor="Grace Hopper"),
    ]
    assert [e.course_id for e in filter_entries(entries, search="PYTH")] == ["python"]
    assert [e.course_id for e in filter_entries(entries, search="hopper")] == ["rust"]
    assert [e.course_id for e in filter_entries(entries, status="in_progress")] == [
        "rust"
    ]
    assert len(filter_entries(entries, status="all")) == 2


def test_filter_entries_rejects_unknown_status() -> None:
    with pytest.raises(WatchlistValidationError):
        filter_entries([], status="archived")
