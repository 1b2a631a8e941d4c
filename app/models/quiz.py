from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class QuizCompletionRecord:
    """Append-only fact: the learner finished the quiz for one video.

    Retakes produce additional records for the same (course_id, video_id);
    records are never mutated or deleted.
    """

    course_id: str
    video_id: str
    completed_at: int
    score: int = 0  # percentage 0-100
    video_number: int | None = None
    video_title: str = ""
    quiz_title: str = ""
    total_questions: int = 0
    correct_answers: int = 0
    idempotency_key: str | None = None

    @staticmethod
    def new(
        *,
        course_id: str,
        video_id: str,
        completed_at: int,
        total_questions: int,
        correct_answers: int,
        video_number: int | None = None,
        video_title: str = "",
        quiz_title: str = "",
        idempotency_key: str | None = None,
    ) -> QuizCompletionRecord:
        return QuizCompletionRecord(
            course_id=course_id,
            video_id=video_id,
            completed_at=completed_at,
            score=quiz_score_percent(correct_answers, total_questions),
            video_number=video_number,
            video_title=video_title,
            quiz_title=quiz_title,
            total_questions=total_questions,
            correct_answers=correct_answers,
            idempotency_key=idempotency_key,
        )

    def same_submission(self, other: QuizCompletionRecord) -> bool:
        """True when two records describe the same quiz submission.

        ``completed_at`` is excluded: a client retrying a request gets a
        fresh server timestamp.
        """
        return (
            self.course_id,
            self.video_id,
            self.video_number,
            self.quiz_title,
            self.total_questions,
            self.correct_answers,
        ) == (
            other.course_id,
            other.video_id,
            other.video_number,
            other.quiz_title,
            other.total_questions,
            other.correct_answers,
        )


def quiz_score_percent(correct_answers: int, total_questions: int) -> int:
    """Percentage score rounded half-up; 0 for an empty quiz."""
    if total_questions <= 0:
        return 0
    return (200 * correct_answers + total_questions) // (2 * total_questions)
