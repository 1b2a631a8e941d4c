"""Watchlist endpoints: the learner's dashboard of courses.

  GET  /v1/watchlist                -> reconciled list + summary
  GET  /v1/watchlist/{course_id}    -> one entry
  POST /v1/watchlist/open           -> upsert on course open (201 if new)
  POST /v1/watchlist/reconcile      -> explicit repair pass
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_watchlist_service, require_user
from app.models.principal import Principal
from app.models.watchlist import CourseSnapshot, WatchlistEntry
from app.services.watchlist_reconciler import WatchlistValidationError
from app.services.watchlist_service import (
    WatchlistEntryNotFoundError,
    WatchlistService,
    WatchlistWriteConflictError,
    filter_entries,
    summarize,
)

router = APIRouter(prefix="/v1/watchlist", tags=["watchlist"])


class CourseSnapshotIn(BaseModel):
    course_id: str = Field(min_length=1, max_length=128)
    title: str
    description: str = ""
    instructor_display_name: str = ""
    total_videos: int = Field(ge=0)
    thumbnail: str | None = None


class WatchlistEntryOut(BaseModel):
    course_id: str
    course_title: str
    course_description: str
    instructor: str
    total_videos: int
    added_at: int
    completed_quizzes: int
    progress: int
    status: str
    last_accessed: int | None
    thumbnail: str | None

    @classmethod
    def from_entry(cls, entry: WatchlistEntry) -> WatchlistEntryOut:
        return cls(**asdict(entry))


class WatchlistSummaryOut(BaseModel):
    total_courses: int
    completed_courses: int
    average_progress: int
    total_quizzes: int


class WatchlistOut(BaseModel):
    entries: list[WatchlistEntryOut]
    summary: WatchlistSummaryOut


class OpenCourseOut(BaseModel):
    entry: WatchlistEntryOut
    is_new_entry: bool


class ReconcileOut(BaseModel):
    changed: bool
    duplicates_removed: int
    entries: list[WatchlistEntryOut]


def _conflict(exc: WatchlistWriteConflictError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _invalid(exc: WatchlistValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
    )


@router.get("", response_model=WatchlistOut)
async def list_watchlist(
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[WatchlistService, Depends(get_watchlist_service)],
    q: Annotated[str | None, Query(max_length=200)] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> WatchlistOut:
    """The learner's watchlist, most recently accessed first.

    The summary always covers the whole watchlist, not the filtered view.
    """
    try:
        everything = await service.list_watchlist(principal.user_id)
        visible = filter_entries(everything, search=q, status=status_filter)
    except WatchlistValidationError as exc:
        raise _invalid(exc) from None
    except WatchlistWriteConflictError as exc:
        raise _conflict(exc) from None

    return WatchlistOut(
        entries=[WatchlistEntryOut.from_entry(e) for e in visible],
        summary=WatchlistSummaryOut(**asdict(summarize(everything))),
    )


@router.get("/{course_id}", response_model=WatchlistEntryOut)
async def get_watchlist_entry(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[WatchlistService, Depends(get_watchlist_service)],
) -> WatchlistEntryOut:
    try:
        entry = await service.get_entry(principal.user_id, course_id)
    except WatchlistEntryNotFoundError:
        raise HTTPException(status_code=404, detail="course not in watchlist") from None
    except WatchlistValidationError as exc:
        raise _invalid(exc) from None
    except WatchlistWriteConflictError as exc:
        raise _conflict(exc) from None
    return WatchlistEntryOut.from_entry(entry)


@router.post("/open", response_model=OpenCourseOut)
async def open_course(
    body: CourseSnapshotIn,
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[WatchlistService, Depends(get_watchlist_service)],
) -> OpenCourseOut:
    """Record that the learner opened a course.

    Adds the course on first open (201); afterwards only refreshes
    ``last_accessed`` (200).
    """
    snapshot = CourseSnapshot(
        course_id=body.course_id,
        title=body.title,
        description=body.description,
        instructor_display_name=body.instructor_display_name,
        total_videos=body.total_videos,
        thumbnail=body.thumbnail,
    )
    try:
        result = await service.open_course(principal.user_id, snapshot)
    except WatchlistValidationError as exc:
        raise _invalid(exc) from None
    except WatchlistWriteConflictError as exc:
        raise _conflict(exc) from None

    if result.is_new_entry:
        response.status_code = status.HTTP_201_CREATED
    return OpenCourseOut(
        entry=WatchlistEntryOut.from_entry(result.entry),
        is_new_entry=result.is_new_entry,
    )


@router.post("/reconcile", response_model=ReconcileOut)
async def reconcile_watchlist(
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[WatchlistService, Depends(get_watchlist_service)],
) -> ReconcileOut:
    try:
        result = await service.reconcile_watchlist(principal.user_id)
    except WatchlistValidationError as exc:
        raise _invalid(exc) from None
    except WatchlistWriteConflictError as exc:
        raise _conflict(exc) from None

    return ReconcileOut(
        changed=result.changed,
        duplicates_removed=result.duplicates_removed,
        entries=[WatchlistEntryOut.from_entry(e) for e in result.entries],
    )
