from __future__ import annotations

from dataclasses import dataclass

from app.models.quiz import QuizCompletionRecord
from app.models.watchlist import WatchlistEntry


@dataclass(frozen=True, slots=True)
class UserRecord:
    """The per-learner document held by the document store.

    ``version`` is bumped by the store on every successful save and is the
    token for compare-and-swap writes.  A record that has never been saved
    has version 0.
    """

    user_id: str
    watchlist: tuple[WatchlistEntry, ...] = ()
    quiz_results: tuple[QuizCompletionRecord, ...] = ()
    version: int = 0

    @staticmethod
    def empty(user_id: str) -> UserRecord:
        return UserRecord(user_id=user_id)

    def watchlist_by_course(self) -> dict[str, WatchlistEntry]:
        """Keyed view of the watchlist.

        Assumes a reconciled list; on duplicates the last entry wins.
        """
        return {e.course_id: e for e in self.watchlist}

    def results_for_course(self, course_id: str) -> list[QuizCompletionRecord]:
        return [r for r in self.quiz_results if r.course_id == course_id]
