"""Conversion between domain dataclasses and stored JSON documents.

The document store keeps a learner's watchlist and quiz results as arrays
of plain objects.  Missing required fields are rejected here; value types
are left untouched so the reconciler's validation sees exactly what was
stored.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

from app.models.quiz import QuizCompletionRecord
from app.models.watchlist import WatchlistEntry
from app.services.watchlist_reconciler import WatchlistValidationError

_ENTRY_FIELDS = tuple(f.name for f in dataclasses.fields(WatchlistEntry))
_ENTRY_REQUIRED = (
    "course_id",
    "course_title",
    "course_description",
    "instructor",
    "total_videos",
    "added_at",
)

_RECORD_FIELDS = tuple(f.name for f in dataclasses.fields(QuizCompletionRecord))
_RECORD_REQUIRED = ("course_id", "video_id", "completed_at")


def entry_to_document(entry: WatchlistEntry) -> dict[str, Any]:
    return dataclasses.asdict(entry)


def entry_from_document(doc: Mapping[str, Any]) -> WatchlistEntry:
    _require_fields("watchlist entry", doc, _ENTRY_REQUIRED)
    return WatchlistEntry(**{k: doc[k] for k in _ENTRY_FIELDS if k in doc})


def record_to_document(record: QuizCompletionRecord) -> dict[str, Any]:
    return dataclasses.asdict(record)


def record_from_document(doc: Mapping[str, Any]) -> QuizCompletionRecord:
    _require_fields("quiz result", doc, _RECORD_REQUIRED)
    return QuizCompletionRecord(**{k: doc[k] for k in _RECORD_FIELDS if k in doc})


def _require_fields(
    kind: str, doc: Mapping[str, Any], required: tuple[str, ...]
) -> None:
    if not isinstance(doc, Mapping):
        raise WatchlistValidationError(f"{kind} must be an object")
    missing = [name for name in required if name not in doc]
    if missing:
        raise WatchlistValidationError(
            f"{kind} is missing required fields: {', '.join(missing)}"
        )
