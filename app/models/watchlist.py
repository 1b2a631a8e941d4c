from __future__ import annotations

from dataclasses import dataclass

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
WATCHLIST_STATUSES = (STATUS_IN_PROGRESS, STATUS_COMPLETED)


@dataclass(frozen=True, slots=True)
class WatchlistEntry:
    """One learner's relationship to one course.

    Descriptive fields are copied from the course when the entry is created
    and are never used for identity -- ``course_id`` is the key.

    ``completed_quizzes``, ``progress`` and ``status`` are derived from the
    learner's quiz completion records.  Only the reconciler writes them.
    """

    course_id: str
    course_title: str
    course_description: str
    instructor: str
    total_videos: int
    added_at: int
    completed_quizzes: int = 0
    progress: int = 0
    status: str = STATUS_IN_PROGRESS  # in_progress|completed
    last_accessed: int | None = None
    thumbnail: str | None = None

    @property
    def recency(self) -> int:
        """Timestamp used to order entries: last access, else creation."""
        return self.last_accessed if self.last_accessed is not None else self.added_at


@dataclass(frozen=True, slots=True)
class CourseSnapshot:
    """What a course looks like at the moment a learner opens it."""

    course_id: str
    title: str
    description: str
    instructor_display_name: str
    total_videos: int
    thumbnail: str | None = None


@dataclass(frozen=True, slots=True)
class Progress:
    completed_quizzes: int
    progress: int
    status: str
