from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from .common import CamelModel


class UserResponse(CamelModel):
    """A user's answer to a question, optionally backed by a programmed review.

    `programmedReviewId` は弱参照。参照先が削除されている可能性があるため、
    利用のたびに存在を確認する。
    """

    id: str
    user_id: str
    question_id: str
    question_list_id: str | None = None
    is_correct: bool
    selected_answer: str | None = None
    review_count: int = 0
    next_review_date: datetime | None = None
    last_review_date: datetime | None = None
    srs_interval: int | None = None
    programmed_review_id: str | None = None
    created_at: datetime
    updated_at: datetime


class UserResponseCreate(CamelModel):
    question_id: str = Field(min_length=1)
    question_list_id: str | None = None
    is_correct: bool
    selected_answer: str | None = None
    review_count: int = Field(default=0, ge=0)
    next_review_date: datetime | None = None


class UserResponseUpdate(CamelModel):
    """Fields a caller may edit directly; SRS fields are owned by the adapter."""

    selected_answer: str | None = None
    is_correct: bool | None = None
    question_list_id: str | None = None

    @field_validator("is_correct")
    @classmethod
    def _reject_null_is_correct(cls, value: bool | None) -> bool:
        # 省略は「変更なし」、null は必須項目の削除になるため拒否する
        if value is None:
            raise ValueError("isCorrect cannot be null")
        return value


class QuestionReviewSubmission(CamelModel):
    quality: int


class QuestionResponseStats(CamelModel):
    total_responses: int = 0
    correct_responses: int = 0
    incorrect_responses: int = 0
    accuracy_rate: float = 0.0
    pending_reviews: int = 0
