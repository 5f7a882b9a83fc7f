from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..auth import get_current_user
from ..dependencies import get_interaction_service
from ..errors import NotFoundError
from ..flows.interactions import InteractionService
from ..models.common import Page
from ..models.interaction import DueFlashcard, InteractionRecord, ResetRequest, ReviewSubmission

router = APIRouter(tags=["flashcards"])


@router.get(
    "/due",
    response_model=Page[DueFlashcard],
    summary="期限到来のフラッシュカード",
    response_description="nextReviewAt の昇順に並んだ復習対象カードと次ページのカーソル",
)
def get_due_flashcards(
    deck_id: str | None = Query(default=None, alias="deckId"),
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
) -> Page[DueFlashcard]:
    return service.get_due_items(user_id, deck_id=deck_id, limit=limit, cursor=cursor)


@router.get("/{flashcard_id}/interaction", response_model=InteractionRecord)
def get_interaction(
    flashcard_id: str,
    user_id: str = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
) -> InteractionRecord:
    """学習状態を返す。まだ一度も触れていないカードは 404。"""
    record = service.get_stats(user_id, flashcard_id)
    if record is None:
        raise NotFoundError("Interaction not found", details={"flashcardId": flashcard_id})
    return record


@router.put("/{flashcard_id}/interaction", response_model=InteractionRecord)
def ensure_interaction(
    flashcard_id: str,
    deck_id: str | None = Query(default=None, alias="deckId"),
    user_id: str = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
) -> InteractionRecord:
    """学習状態を取得し、無ければ初期状態で作成する。"""
    return service.get_or_create(user_id, flashcard_id, deck_id=deck_id)


@router.post(
    "/{flashcard_id}/review",
    response_model=InteractionRecord,
    summary="フラッシュカードのレビューを記録",
)
def record_review(
    flashcard_id: str,
    payload: ReviewSubmission,
    user_id: str = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
) -> InteractionRecord:
    return service.record_review(
        user_id,
        flashcard_id,
        payload.deck_id,
        payload.quality,
        study_time=payload.study_time,
        notes=payload.notes,
    )


@router.post("/{flashcard_id}/reset", response_model=InteractionRecord)
def reset_progress(
    flashcard_id: str,
    payload: ResetRequest | None = None,
    user_id: str = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
) -> InteractionRecord:
    deck_id = payload.deck_id if payload is not None else None
    return service.reset_progress(user_id, flashcard_id, deck_id=deck_id)
