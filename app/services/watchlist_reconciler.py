"""Watchlist reconciliation.

A learner's watchlist lives as an array inside their user document.
Repeated or concurrent "add" operations can leave several entries for the
same course, and the derived progress fields (completed_quizzes, progress,
status) go stale whenever a quiz is completed somewhere else.  The functions
here repair both problems:

  compute_progress  derive the progress fields of one course from the
                    learner's quiz completion records
  reconcile         collapse duplicates by course_id and recompute every
                    entry, reporting whether the stored list must be replaced
  upsert_entry      add a course to the watchlist or bump its last_accessed

Everything in this module is pure: no I/O, no logging, no clock reads unless
the caller leaves ``now`` unset.  Callers own persistence and decide whether
to write based on ``changed`` / ``is_new_entry``.

IDEMPOTENCE
-----------
``reconcile(reconcile(xs, rs).entries, rs).changed`` is always False.
Callers rely on this to skip the write (and the network round-trip) when
nothing materially changed.  For that reason reconcile never touches
``last_accessed`` -- only upsert_entry does.

MALFORMED INPUT
---------------
Negative or non-integer counts, blank course ids and similar are rejected
with WatchlistValidationError.  Coercing them would let a bad stored value
leak into the progress invariant.
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from app.models.quiz import QuizCompletionRecord
from app.models.watchlist import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    WATCHLIST_STATUSES,
    CourseSnapshot,
    Progress,
    WatchlistEntry,
)


class WatchlistValidationError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    entries: tuple[WatchlistEntry, ...]
    changed: bool
    duplicates_removed: int = 0


@dataclass(frozen=True, slots=True)
class UpsertResult:
    entries: tuple[WatchlistEntry, ...]
    is_new_entry: bool


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def compute_progress(
    course_id: str,
    total_videos: int,
    completion_records: Iterable[QuizCompletionRecord],
) -> Progress:
    """Derive (completed_quizzes, progress, status) for one course.

    Only distinct video ids count, so retaking a quiz never inflates the
    total.  ``progress`` is 0 when the course has no videos.
    """
    _require_count("total_videos", total_videos)
    key_types: dict[str, type] = {}
    by_course = _completed_videos_by_course(completion_records, key_types)
    _check_key_type(key_types, course_id)
    completed = by_course.get(course_id, set())
    return _progress_from_count(len(completed), total_videos)


def _progress_from_count(completed_quizzes: int, total_videos: int) -> Progress:
    if total_videos == 0:
        percent = 0
    else:
        # round-half-up in integer arithmetic; float round() is half-to-even
        percent = (200 * completed_quizzes + total_videos) // (2 * total_videos)
    # Upstream data can record more completed videos than the course has.
    percent = max(0, min(100, percent))
    status = STATUS_COMPLETED if percent == 100 else STATUS_IN_PROGRESS
    return Progress(
        completed_quizzes=completed_quizzes, progress=percent, status=status
    )


def _completed_videos_by_course(
    completion_records: Iterable[QuizCompletionRecord],
    key_types: dict[str, type],
) -> dict[str, set[str]]:
    by_course: dict[str, set[str]] = {}
    for record in completion_records:
        _validate_record(record)
        _check_key_type(key_types, record.course_id)
        by_course.setdefault(record.course_id, set()).add(record.video_id)
    return by_course


def _with_progress(entry: WatchlistEntry, progress: Progress) -> WatchlistEntry:
    return replace(
        entry,
        completed_quizzes=progress.completed_quizzes,
        progress=progress.progress,
        status=progress.status,
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def reconcile(
    raw_entries: Sequence[WatchlistEntry],
    completion_records: Iterable[QuizCompletionRecord],
) -> ReconcileResult:
    """Deduplicate by course_id and recompute derived progress.

    For each course the surviving entry is the most recently accessed one
    (``added_at`` stands in when ``last_accessed`` is missing); on a tie the
    entry appearing later in ``raw_entries`` wins.  Survivors keep the
    position of their course's first appearance.

    ``changed`` is True when any duplicate was dropped or any derived field
    differs from what was stored.
    """
    # one id space for entries and records, so 1 and "1" cannot both appear
    key_types: dict[str, type] = {}
    completed_by_course = _completed_videos_by_course(completion_records, key_types)

    groups: dict[str, list[WatchlistEntry]] = {}
    for entry in raw_entries:
        _validate_entry(entry)
        _check_key_type(key_types, entry.course_id)
        groups.setdefault(entry.course_id, []).append(entry)

    merged: list[WatchlistEntry] = []
    changed = False
    duplicates_removed = 0
    for course_id, group in groups.items():
        survivor = _pick_survivor(group)
        if len(group) > 1:
            changed = True
            duplicates_removed += len(group) - 1

        completed = len(completed_by_course.get(course_id, ()))
        recomputed = _with_progress(
            survivor, _progress_from_count(completed, survivor.total_videos)
        )
        if recomputed != survivor:
            changed = True
        merged.append(recomputed)

    return ReconcileResult(
        entries=tuple(merged),
        changed=changed,
        duplicates_removed=duplicates_removed,
    )


def _pick_survivor(group: list[WatchlistEntry]) -> WatchlistEntry:
    survivor = group[0]
    for candidate in group[1:]:
        # >= so that equal timestamps resolve to the later entry
        if candidate.recency >= survivor.recency:
            survivor = candidate
    return survivor


# ---------------------------------------------------------------------------
# Opening a course
# ---------------------------------------------------------------------------


def upsert_entry(
    existing_entries: Sequence[WatchlistEntry],
    course_snapshot: CourseSnapshot,
    completion_records: Iterable[QuizCompletionRecord],
    now: int | None = None,
) -> UpsertResult:
    """Record that the learner opened a course.

    A new entry gets its progress computed from the current completion
    records (a learner may have finished quizzes before the entry existed).
    An existing entry only has ``last_accessed`` bumped; recomputing its
    progress is left to :func:`reconcile`.
    """
    _validate_snapshot(course_snapshot)
    for entry in existing_entries:
        _validate_entry(entry)
    if now is None:
        now = int(datetime.datetime.now(datetime.UTC).timestamp())

    course_id = course_snapshot.course_id
    if any(e.course_id == course_id for e in existing_entries):
        # Duplicates (if any) are all touched; reconcile picks the survivor.
        touched = tuple(
            replace(e, last_accessed=now) if e.course_id == course_id else e
            for e in existing_entries
        )
        return UpsertResult(entries=touched, is_new_entry=False)

    progress = compute_progress(
        course_id, course_snapshot.total_videos, completion_records
    )
    entry = WatchlistEntry(
        course_id=course_id,
        course_title=course_snapshot.title,
        course_description=course_snapshot.description,
        instructor=course_snapshot.instructor_display_name,
        thumbnail=course_snapshot.thumbnail,
        total_videos=course_snapshot.total_videos,
        completed_quizzes=progress.completed_quizzes,
        progress=progress.progress,
        status=progress.status,
        added_at=now,
        last_accessed=now,
    )
    return UpsertResult(entries=(*existing_entries, entry), is_new_entry=True)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _require_count(name: str, value: object) -> None:
    # bool is an int subclass; True is not a count
    if not isinstance(value, int) or isinstance(value, bool):
        raise WatchlistValidationError(
            f"{name} must be an integer (got {type(value).__name__})"
        )
    if value < 0:
        raise WatchlistValidationError(f"{name} must be >= 0 (got {value})")


def _require_id(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise WatchlistValidationError(
            f"{name} must be a string or integer (got {type(value).__name__})"
        )
    if isinstance(value, str) and not value.strip():
        raise WatchlistValidationError(f"{name} must be non-empty")


def _check_key_type(key_types: dict[str, type], course_id: object) -> None:
    key = str(course_id)
    seen = key_types.setdefault(key, type(course_id))
    if seen is not type(course_id):
        raise WatchlistValidationError(
            f"course_id {key!r} appears as both {seen.__name__} "
            f"and {type(course_id).__name__}"
        )


def _validate_entry(entry: WatchlistEntry) -> None:
    _require_id("course_id", entry.course_id)
    _require_count("total_videos", entry.total_videos)
    _require_count("completed_quizzes", entry.completed_quizzes)
    _require_count("progress", entry.progress)
    _require_count("added_at", entry.added_at)
    if entry.last_accessed is not None:
        _require_count("last_accessed", entry.last_accessed)
    if entry.status not in WATCHLIST_STATUSES:
        raise WatchlistValidationError(
            f"status must be in_progress|completed (got {entry.status!r})"
        )


def _validate_record(record: QuizCompletionRecord) -> None:
    _require_id("course_id", record.course_id)
    _require_id("video_id", record.video_id)


def _validate_snapshot(snapshot: CourseSnapshot) -> None:
    _require_id("course_id", snapshot.course_id)
    _require_count("total_videos", snapshot.total_videos)
