from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from ..srs import INITIAL_EASE_FACTOR, ReviewOutcome, SrsState
from .common import CamelModel


class InteractionRecord(CamelModel):
    """Per (user, flashcard) learning state stored in `userFlashcardInteractions`."""

    id: str
    user_id: str
    item_id: str
    deck_id: str | None = None
    ease_factor: float = INITIAL_EASE_FACTOR
    interval: int = 0
    repetitions: int = 0
    fail_streak: int = 0
    is_leech: bool = False
    is_learning: bool = True
    last_review_quality: int = 0
    last_reviewed_at: datetime
    next_review_at: datetime
    created_at: datetime
    updated_at: datetime
    # 直近のレビューで送られた任意情報
    study_time: int | None = None
    review_notes: str | None = None

    @classmethod
    def fresh(
        cls,
        *,
        record_id: str,
        user_id: str,
        item_id: str,
        deck_id: str | None,
        now: datetime,
    ) -> "InteractionRecord":
        return cls(
            id=record_id,
            user_id=user_id,
            item_id=item_id,
            deck_id=deck_id,
            last_reviewed_at=now,
            next_review_at=now,
            created_at=now,
            updated_at=now,
        )

    def srs_state(self) -> SrsState:
        return SrsState(
            ease_factor=self.ease_factor,
            interval=self.interval,
            repetitions=self.repetitions,
            fail_streak=self.fail_streak,
        )

    def with_outcome(
        self,
        outcome: ReviewOutcome,
        *,
        study_time: int | None = None,
        review_notes: str | None = None,
    ) -> "InteractionRecord":
        return self.model_copy(
            update={
                "ease_factor": outcome.ease_factor,
                "interval": outcome.interval,
                "repetitions": outcome.repetitions,
                "fail_streak": outcome.fail_streak,
                "is_leech": outcome.is_leech,
                "is_learning": outcome.is_learning,
                "last_review_quality": outcome.quality,
                "last_reviewed_at": outcome.reviewed_at,
                "next_review_at": outcome.next_review_at,
                "updated_at": outcome.reviewed_at,
                "study_time": study_time if study_time is not None else self.study_time,
                "review_notes": review_notes if review_notes is not None else self.review_notes,
            }
        )


class ReviewSubmission(CamelModel):
    """Body of a flashcard review request.

    quality の範囲チェックはフロー側で InvalidQuality として行う。
    """

    quality: int
    deck_id: str | None = None
    study_time: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=2000)


class ResetRequest(CamelModel):
    deck_id: str | None = None


class DueFlashcard(CamelModel):
    """A due flashcard hydrated with its content document."""

    flashcard: dict[str, Any]
    interaction: InteractionRecord
