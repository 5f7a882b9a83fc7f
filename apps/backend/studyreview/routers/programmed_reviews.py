from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status

from ..auth import get_current_user
from ..dependencies import get_due_queue_resolver, get_programmed_review_scheduler
from ..flows.due_queue import DueQueueResolver
from ..flows.programmed_reviews import ProgrammedReviewScheduler
from ..models.common import Page
from ..models.programmed_review import (
    ContentType,
    ProgrammedReview,
    ProgrammedReviewBatchCreate,
    ProgrammedReviewComplete,
    ProgrammedReviewCreate,
    ProgrammedReviewReschedule,
    ProgrammedReviewStatistics,
    ProgrammedReviewUpdate,
    QualitySubmission,
    ReviewStatus,
)

router = APIRouter(tags=["programmed-reviews"])


@router.post(
    "",
    response_model=ProgrammedReview,
    status_code=status.HTTP_201_CREATED,
    summary="デッキの復習予定を作成",
)
def create_programmed_review(
    payload: ProgrammedReviewCreate,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    return scheduler.create(
        user_id,
        payload.deck_id,
        payload.scheduled_date,
        title=payload.title,
        description=payload.description,
        reminder_enabled=payload.reminder_enabled,
        reminder_time=payload.reminder_time,
    )


@router.post(
    "/batch",
    response_model=list[ProgrammedReview],
    status_code=status.HTTP_201_CREATED,
    summary="繰り返しルールから復習予定を一括作成",
    response_description="作成できた予定のみ（同日の重複はスキップ）",
)
def create_batch_programmed_reviews(
    payload: ProgrammedReviewBatchCreate,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> list[ProgrammedReview]:
    return scheduler.create_batch(
        user_id,
        payload.deck_id,
        payload.start_date,
        payload.end_date,
        payload.frequency,
        days_of_week=payload.days_of_week,
        title=payload.title,
        description=payload.description,
        reminder_enabled=payload.reminder_enabled,
        reminder_time=payload.reminder_time,
    )


@router.get("", response_model=Page[ProgrammedReview])
def list_programmed_reviews(
    status_filter: ReviewStatus | None = Query(default=None, alias="status"),
    deck_id: str | None = Query(default=None, alias="deckId"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    sort_by: str = Query(default="scheduledDate", alias="sortBy"),
    sort_order: str = Query(default="asc", alias="sortOrder"),
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> Page[ProgrammedReview]:
    return scheduler.list_reviews(
        user_id,
        status=status_filter,
        deck_id=deck_id,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        cursor=cursor,
    )


@router.get("/today", response_model=list[ProgrammedReview])
def get_today_reviews(
    user_id: str = Depends(get_current_user),
    resolver: DueQueueResolver = Depends(get_due_queue_resolver),
) -> list[ProgrammedReview]:
    """今日（UTC）の PENDING の予定。"""
    return resolver.get_today_reviews(user_id)


@router.get("/upcoming", response_model=Page[ProgrammedReview])
def get_upcoming_reviews(
    days: int | None = Query(default=None, ge=1, le=365),
    limit: int | None = Query(default=10, ge=1),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    resolver: DueQueueResolver = Depends(get_due_queue_resolver),
) -> Page[ProgrammedReview]:
    return resolver.get_upcoming_reviews(user_id, days=days, limit=limit, cursor=cursor)


@router.get("/due", response_model=Page[ProgrammedReview])
def get_due_programmed_reviews(
    content_type: ContentType | None = Query(default=None, alias="contentType"),
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    resolver: DueQueueResolver = Depends(get_due_queue_resolver),
) -> Page[ProgrammedReview]:
    return resolver.get_due_programmed_reviews(
        user_id, content_type=content_type, limit=limit, cursor=cursor
    )


@router.get("/statistics", response_model=ProgrammedReviewStatistics)
def get_statistics(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReviewStatistics:
    return scheduler.get_statistics(user_id, start_date=start_date, end_date=end_date)


@router.get("/{review_id}", response_model=ProgrammedReview)
def get_programmed_review(
    review_id: str,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    return scheduler.get(review_id, user_id)


@router.patch("/{review_id}", response_model=ProgrammedReview)
def update_programmed_review(
    review_id: str,
    payload: ProgrammedReviewUpdate,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    return scheduler.update(review_id, user_id, payload)


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_programmed_review(
    review_id: str,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> Response:
    scheduler.delete(review_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{review_id}/complete", response_model=ProgrammedReview)
def complete_programmed_review(
    review_id: str,
    payload: ProgrammedReviewComplete | None = None,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    body = payload or ProgrammedReviewComplete()
    return scheduler.complete(
        review_id,
        user_id,
        score=body.score,
        time_spent=body.time_spent,
        cards_reviewed=body.cards_reviewed,
    )


@router.post("/{review_id}/skip", response_model=ProgrammedReview)
def skip_programmed_review(
    review_id: str,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    return scheduler.skip(review_id, user_id)


@router.post("/{review_id}/reschedule", response_model=ProgrammedReview)
def reschedule_programmed_review(
    review_id: str,
    payload: ProgrammedReviewReschedule,
    response: Response,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    """PENDING は日付だけ移動（200）、完了/スキップ済みは新しい予定を作成（201）。"""
    rescheduled = scheduler.reschedule(review_id, user_id, payload.scheduled_date)
    if rescheduled.id != review_id:
        response.status_code = status.HTTP_201_CREATED
    return rescheduled


@router.post("/{review_id}/review", response_model=ProgrammedReview)
def review_programmed_review(
    review_id: str,
    payload: QualitySubmission,
    user_id: str = Depends(get_current_user),
    scheduler: ProgrammedReviewScheduler = Depends(get_programmed_review_scheduler),
) -> ProgrammedReview:
    """SRS で予定を前進させる。所有者確認後に advance を呼ぶ。"""
    scheduler.get(review_id, user_id)
    return scheduler.advance(review_id, payload.quality, notes=payload.notes)
