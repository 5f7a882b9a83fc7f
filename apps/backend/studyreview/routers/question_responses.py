from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from ..auth import get_current_user
from ..dependencies import get_due_queue_resolver, get_review_delegation_adapter
from ..flows.due_queue import DueQueueResolver
from ..flows.question_reviews import ReviewDelegationAdapter
from ..models.common import Page
from ..models.question_response import (
    QuestionResponseStats,
    QuestionReviewSubmission,
    UserResponse,
    UserResponseCreate,
    UserResponseUpdate,
)

router = APIRouter(tags=["question-responses"])


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="問題への回答を保存",
    response_description="nextReviewDate があれば復習予定も作成される",
)
def create_response(
    payload: UserResponseCreate,
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> UserResponse:
    return adapter.create_response(user_id, payload)


@router.get("", response_model=Page[UserResponse])
def list_responses(
    is_correct: bool | None = Query(default=None, alias="isCorrect"),
    question_id: str | None = Query(default=None, alias="questionId"),
    question_list_id: str | None = Query(default=None, alias="questionListId"),
    order_by: str = Query(default="createdAt", alias="orderBy"),
    order_direction: str = Query(default="desc", alias="orderDirection", pattern="^(asc|desc)$"),
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> Page[UserResponse]:
    return adapter.list_responses(
        user_id,
        is_correct=is_correct,
        question_id=question_id,
        question_list_id=question_list_id,
        order_by=order_by,
        descending=order_direction == "desc",
        limit=limit,
        cursor=cursor,
    )


@router.get("/stats", response_model=QuestionResponseStats)
def get_stats(
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> QuestionResponseStats:
    return adapter.get_stats(user_id)


@router.get("/due", response_model=Page[UserResponse])
def get_due_responses(
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(get_current_user),
    resolver: DueQueueResolver = Depends(get_due_queue_resolver),
) -> Page[UserResponse]:
    return resolver.get_due_question_responses(user_id, limit=limit, cursor=cursor)


@router.get("/{response_id}", response_model=UserResponse)
def get_response(
    response_id: str,
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> UserResponse:
    return adapter.get_response(response_id, user_id)


@router.patch("/{response_id}", response_model=UserResponse)
def update_response(
    response_id: str,
    payload: UserResponseUpdate,
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> UserResponse:
    return adapter.update_response(response_id, user_id, payload)


@router.delete("/{response_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_response(
    response_id: str,
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> Response:
    """回答を削除する。紐づく復習予定の削除失敗はログのみで 204 を返す。"""
    adapter.delete_response(response_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{response_id}/review", response_model=UserResponse)
def record_question_review(
    response_id: str,
    payload: QuestionReviewSubmission,
    user_id: str = Depends(get_current_user),
    adapter: ReviewDelegationAdapter = Depends(get_review_delegation_adapter),
) -> UserResponse:
    return adapter.record_review(response_id, payload.quality, user_id)
