"""Quiz completion endpoints.

  POST /v1/quiz-results  -> append a completion record (idempotent),
                            recompute the course's watchlist progress
  GET  /v1/quiz-results  -> the learner's records, optionally per course
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_watchlist_service, require_user
from app.api.watchlist import WatchlistEntryOut
from app.models.principal import Principal
from app.models.quiz import QuizCompletionRecord
from app.services.watchlist_reconciler import WatchlistValidationError
from app.services.watchlist_service import (
    IdempotencyConflictError,
    QuizSubmission,
    WatchlistService,
    WatchlistWriteConflictError,
)

router = APIRouter(prefix="/v1/quiz-results", tags=["quiz-results"])


class QuizSubmissionIn(BaseModel):
    course_id: str = Field(min_length=1, max_length=128)
    video_id: str = Field(min_length=1, max_length=128)
    total_questions: int = Field(ge=1)
    correct_answers: int = Field(ge=0)
    video_number: int | None = Field(default=None, ge=1)
    video_title: str = ""
    quiz_title: str = ""
    idempotency_key: str | None = Field(default=None, max_length=128)


class QuizResultOut(BaseModel):
    course_id: str
    video_id: str
    completed_at: int
    score: int
    video_number: int | None
    video_title: str
    quiz_title: str
    total_questions: int
    correct_answers: int

    @classmethod
    def from_record(cls, record: QuizCompletionRecord) -> QuizResultOut:
        data = asdict(record)
        data.pop("idempotency_key")
        return cls(**data)


class QuizCompletionOut(BaseModel):
    result: QuizResultOut
    entry: WatchlistEntryOut | None


@router.post(
    "",
    response_model=QuizCompletionOut,
    status_code=status.HTTP_201_CREATED,
)
async def record_quiz_result(
    body: QuizSubmissionIn,
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[WatchlistService, Depends(get_watchlist_service)],
) -> QuizCompletionOut:
    """Store a finished quiz and return the course's refreshed entry.

    ``entry`` is null when the course is not on the learner's watchlist.
    A replay of an earlier idempotency key answers 200 with the original
    record.
    """
    submission = QuizSubmission(**body.model_dump())
    try:
        outcome = await service.record_quiz_completion(principal.user_id, submission)
    except WatchlistValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from None
    except IdempotencyConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from None
    except WatchlistWriteConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from None

    if outcome.replayed:
        response.status_code = status.HTTP_200_OK
    return QuizCompletionOut(
        result=QuizResultOut.from_record(outcome.record),
        entry=(
            WatchlistEntryOut.from_entry(outcome.entry)
            if outcome.entry is not None
            else None
        ),
    )


@router.get("", response_model=list[QuizResultOut])
async def list_quiz_results(
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[WatchlistService, Depends(get_watchlist_service)],
    course_id: Annotated[str | None, Query(max_length=128)] = None,
) -> list[QuizResultOut]:
    try:
        records = await service.quiz_results(principal.user_id, course_id)
    except WatchlistValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from None
    return [QuizResultOut.from_record(r) for r in records]
