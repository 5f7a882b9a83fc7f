from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, ValidationInfo, field_validator

from ..recurrence import Frequency
from ..srs import INITIAL_EASE_FACTOR, SrsState
from .common import CamelModel

_REMINDER_TIME_REGEX = r"^([01]\d|2[0-3]):([0-5]\d)$"


class ContentType(str, Enum):
    FLASHCARD_DECK = "FLASHCARD_DECK"
    QUESTION = "QUESTION"


class ReviewStatus(str, Enum):
    """PENDING からは COMPLETED / SKIPPED へのみ遷移し、終端状態は戻らない。"""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class DeckSnapshot(CamelModel):
    """Deck metadata copied onto a review at scheduling time."""

    id: str
    title: str = ""
    description: str | None = None
    card_count: int = 0
    cover_image_url: str | None = None


class ProgrammedReview(CamelModel):
    """Calendar-anchored review stored in `programmedReviews`.

    FLASHCARD_DECK はカレンダー上の学習予定、QUESTION は回答（UserResponse）
    の SRS スケジュールを表す。`scheduledDate` と `nextReviewAt` は常に同じ値。
    """

    id: str
    user_id: str
    content_id: str
    content_type: ContentType
    deck_id: str | None = None
    deck: DeckSnapshot | None = None
    title: str | None = None
    description: str | None = None
    scheduled_date: datetime
    next_review_at: datetime
    interval_days: int = 1
    ease_factor: float = INITIAL_EASE_FACTOR
    repetitions: int = 0
    lapses: int = 0
    fail_streak: int = 0
    is_learning: bool = True
    last_reviewed_at: datetime | None = None
    status: ReviewStatus = ReviewStatus.PENDING
    reminder_enabled: bool = True
    reminder_time: str | None = None
    original_answer_correct: bool | None = None
    notes: str | None = None
    completed_at: datetime | None = None
    skipped_at: datetime | None = None
    score: float | None = None
    time_spent: int | None = None
    cards_reviewed: int | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_pending(self) -> bool:
        return self.status is ReviewStatus.PENDING

    def srs_state(self) -> SrsState:
        return SrsState(
            ease_factor=self.ease_factor,
            interval=self.interval_days,
            repetitions=self.repetitions,
            fail_streak=self.fail_streak,
        )


class ProgrammedReviewCreate(CamelModel):
    deck_id: str = Field(min_length=1)
    scheduled_date: datetime
    title: str | None = Field(default=None, min_length=3, max_length=100)
    description: str | None = None
    reminder_enabled: bool = True
    reminder_time: str | None = Field(default=None, pattern=_REMINDER_TIME_REGEX)


class ProgrammedReviewUpdate(CamelModel):
    scheduled_date: datetime | None = None
    title: str | None = Field(default=None, min_length=3, max_length=100)
    description: str | None = None
    reminder_enabled: bool | None = None
    reminder_time: str | None = Field(default=None, pattern=_REMINDER_TIME_REGEX)

    @field_validator("scheduled_date", "reminder_enabled")
    @classmethod
    def _reject_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class ProgrammedReviewComplete(CamelModel):
    score: float | None = Field(default=None, ge=0, le=100)
    time_spent: int | None = Field(default=None, ge=0)
    cards_reviewed: int | None = Field(default=None, ge=0)


class ProgrammedReviewReschedule(CamelModel):
    scheduled_date: datetime


class ProgrammedReviewBatchCreate(CamelModel):
    deck_id: str = Field(min_length=1)
    start_date: datetime
    end_date: datetime
    frequency: Frequency
    days_of_week: list[int] | None = None
    title: str | None = Field(default=None, min_length=3, max_length=100)
    description: str | None = None
    reminder_enabled: bool = True
    reminder_time: str | None = Field(default=None, pattern=_REMINDER_TIME_REGEX)


class QualitySubmission(CamelModel):
    """Body of an SRS review on a programmed review (quality is range-checked by the flow)."""

    quality: int
    notes: str | None = Field(default=None, max_length=2000)


class ProgrammedReviewStatistics(CamelModel):
    total: int = 0
    pending: int = 0
    completed: int = 0
    skipped: int = 0
    completion_rate: float = 0.0
    average_score: float | None = None
    total_time_spent: int = 0
    total_cards_reviewed: int = 0
