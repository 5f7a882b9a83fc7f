"""Programmed review scheduling flow.

カレンダー上の「この日にこのデッキを復習する」予定と、回答に紐づく
QUESTION 復習の SRS 進行をまとめて扱う。

状態遷移:
- PENDING → COMPLETED / SKIPPED（終端）
- PENDING → PENDING（日付変更・SRS による前進）
- 終端 → 再スケジュール時は新しい PENDING レコードを作成し、元は変更しない
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Any

from ..config import settings
from ..errors import ConflictError, NotFoundError, OwnershipError, ValidationError
from ..id_factory import generate_document_id
from ..logging import logger
from ..models.common import Page, to_utc
from ..models.programmed_review import (
    ContentType,
    DeckSnapshot,
    ProgrammedReview,
    ProgrammedReviewStatistics,
    ProgrammedReviewUpdate,
    ReviewStatus,
)
from ..recurrence import Frequency, expand_recurrence
from ..srs import INITIAL_EASE_FACTOR, apply_review, validate_quality
from ..store.common import is_visible_to
from ..store.firestore_store import AppFirestoreStore
from ..store.query import QuerySpec
from . import Clock, merge_validated, resolve_limit, utc_now

SORTABLE_FIELDS = {
    "scheduled_date": "scheduledDate",
    "scheduledDate": "scheduledDate",
    "created_at": "createdAt",
    "createdAt": "createdAt",
    "updated_at": "updatedAt",
    "updatedAt": "updatedAt",
}


def _day_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Return the UTC calendar-day window containing ``value``."""

    moment = to_utc(value)
    return (
        datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo),
        datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo),
    )


class ProgrammedReviewScheduler:
    def __init__(self, store: AppFirestoreStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    # --- lookups ---
    def _require(self, review_id: str) -> ProgrammedReview:
        review = self._store.programmed_reviews.get(review_id)
        if review is None:
            raise NotFoundError("Programmed review not found", details={"reviewId": review_id})
        return review

    def _require_owned(self, review_id: str, user_id: str) -> ProgrammedReview:
        review = self._require(review_id)
        if review.user_id != user_id:
            raise OwnershipError(
                "You do not have permission to access this programmed review",
                details={"reviewId": review_id},
            )
        return review

    def _require_pending(self, review: ProgrammedReview) -> None:
        if not review.is_pending:
            raise ValidationError(
                "Programmed review is already completed or skipped",
                details={"reviewId": review.id, "status": review.status.value},
            )

    def _require_deck(self, deck_id: str, user_id: str) -> dict[str, Any]:
        deck = self._store.decks.get(deck_id)
        if deck is None:
            raise NotFoundError("Deck not found", details={"deckId": deck_id})
        if not is_visible_to(deck, user_id):
            raise OwnershipError(
                "You do not have permission to access this deck",
                details={"deckId": deck_id},
            )
        return deck

    def _ensure_no_conflict(
        self,
        user_id: str,
        content_id: str,
        scheduled_date: datetime,
        *,
        exclude_id: str | None = None,
    ) -> None:
        day_start, day_end = _day_bounds(scheduled_date)
        existing = self._store.programmed_reviews.find_pending_on_day(
            user_id=user_id,
            content_id=content_id,
            day_start=day_start,
            day_end=day_end,
            exclude_id=exclude_id,
        )
        if existing is not None:
            raise ConflictError(
                "A programmed review already exists for this deck on this date",
                details={
                    "existingReviewId": existing.id,
                    "date": day_start.date().isoformat(),
                },
            )

    # --- creation ---
    def _create_for_deck(
        self,
        user_id: str,
        deck: dict[str, Any],
        scheduled_date: datetime,
        *,
        title: str | None,
        description: str | None,
        reminder_enabled: bool,
        reminder_time: str | None,
    ) -> ProgrammedReview:
        scheduled = to_utc(scheduled_date)
        self._ensure_no_conflict(user_id, deck["id"], scheduled)
        snapshot = DeckSnapshot(
            id=deck["id"],
            title=str(deck.get("title") or ""),
            description=deck.get("description"),
            card_count=int(deck.get("cardCount") or 0),
            cover_image_url=deck.get("coverImageUrl"),
        )
        return self.create_for_content(
            user_id,
            deck["id"],
            ContentType.FLASHCARD_DECK,
            scheduled,
            deck_id=deck["id"],
            deck=snapshot,
            title=title or f"Review: {snapshot.title}",
            description=description or "",
            reminder_enabled=reminder_enabled,
            reminder_time=reminder_time or settings.default_reminder_time,
        )

    def create(
        self,
        user_id: str,
        deck_id: str,
        scheduled_date: datetime,
        title: str | None = None,
        description: str | None = None,
        reminder_enabled: bool = True,
        reminder_time: str | None = None,
    ) -> ProgrammedReview:
        """Schedule a deck review on a calendar date.

        デッキは存在し、本人所有か公開である必要がある。同じデッキ・同じ日に
        PENDING の予定があれば ConflictError。
        """

        if not isinstance(scheduled_date, datetime):
            raise ValidationError("scheduledDate must be a valid datetime")
        deck = self._require_deck(deck_id, user_id)
        review = self._create_for_deck(
            user_id,
            deck,
            scheduled_date,
            title=title,
            description=description,
            reminder_enabled=reminder_enabled,
            reminder_time=reminder_time,
        )
        logger.info(
            "programmed_review_created",
            user_id=user_id,
            review_id=review.id,
            deck_id=deck_id,
            scheduled_date=review.scheduled_date.isoformat(),
        )
        return review

    def create_for_content(
        self,
        user_id: str,
        content_id: str,
        content_type: ContentType,
        next_review_at: datetime,
        *,
        deck_id: str | None = None,
        deck: DeckSnapshot | None = None,
        title: str | None = None,
        description: str | None = None,
        interval_days: int = 1,
        repetitions: int = 0,
        ease_factor: float = INITIAL_EASE_FACTOR,
        original_answer_correct: bool | None = None,
        notes: str | None = None,
        reminder_enabled: bool = True,
        reminder_time: str | None = None,
    ) -> ProgrammedReview:
        """Persist a PENDING review without deck lookup or date conflict checks."""

        if not user_id or not content_id:
            raise ValidationError("userId and contentId are required")
        now = self._clock()
        scheduled = to_utc(next_review_at)
        review = ProgrammedReview(
            id=generate_document_id(),
            user_id=user_id,
            content_id=content_id,
            content_type=ContentType(content_type),
            deck_id=deck_id,
            deck=deck,
            title=title,
            description=description,
            scheduled_date=scheduled,
            next_review_at=scheduled,
            interval_days=max(1, int(interval_days or 1)),
            ease_factor=ease_factor,
            repetitions=max(0, int(repetitions or 0)),
            original_answer_correct=original_answer_correct,
            notes=notes,
            reminder_enabled=reminder_enabled,
            reminder_time=reminder_time,
            created_at=now,
            updated_at=now,
        )
        self._store.programmed_reviews.save(review)
        return review

    def create_batch(
        self,
        user_id: str,
        deck_id: str,
        start_date: datetime,
        end_date: datetime,
        frequency: Frequency | str,
        days_of_week: list[int] | None = None,
        title: str | None = None,
        description: str | None = None,
        reminder_enabled: bool = True,
        reminder_time: str | None = None,
    ) -> list[ProgrammedReview]:
        """Expand a recurrence rule and create one review per generated date.

        日付ごとの ConflictError はログに残してスキップし、作成できたものだけを返す。
        """

        deck = self._require_deck(deck_id, user_id)
        start = to_utc(start_date)
        end = to_utc(end_date)
        if start <= self._clock():
            raise ValidationError("startDate must be in the future")
        dates = expand_recurrence(start, end, frequency, days_of_week)

        created: list[ProgrammedReview] = []
        for scheduled in dates:
            try:
                review = self._create_for_deck(
                    user_id,
                    deck,
                    scheduled,
                    title=title,
                    description=description,
                    reminder_enabled=reminder_enabled,
                    reminder_time=reminder_time,
                )
            except ConflictError as exc:
                logger.info(
                    "programmed_review_batch_conflict_skipped",
                    user_id=user_id,
                    deck_id=deck_id,
                    scheduled_date=scheduled.isoformat(),
                    existing_review_id=(exc.details or {}).get("existingReviewId"),
                )
                continue
            created.append(review)

        logger.info(
            "programmed_review_batch_created",
            user_id=user_id,
            deck_id=deck_id,
            frequency=str(Frequency(frequency).value),
            requested=len(dates),
            created=len(created),
        )
        return created

    # --- reads ---
    def get(self, review_id: str, user_id: str) -> ProgrammedReview:
        return self._require_owned(review_id, user_id)

    def list_reviews(
        self,
        user_id: str,
        status: ReviewStatus | None = None,
        deck_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        sort_by: str = "scheduledDate",
        sort_order: str = "asc",
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[ProgrammedReview]:
        order_field = SORTABLE_FIELDS.get(sort_by)
        if order_field is None:
            raise ValidationError(
                "sortBy must be one of scheduledDate, createdAt, updatedAt",
                details={"sortBy": sort_by},
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be asc or desc", details={"sortOrder": sort_order})

        spec = QuerySpec().where("userId", "==", user_id)
        if status is not None:
            spec = spec.where("status", "==", ReviewStatus(status).value)
        if deck_id:
            spec = spec.where("deckId", "==", deck_id)
        if start_date is not None:
            spec = spec.where("scheduledDate", ">=", to_utc(start_date))
        if end_date is not None:
            spec = spec.where("scheduledDate", "<=", to_utc(end_date))
        spec = (
            spec.order_by(order_field, descending=sort_order == "desc")
            .with_limit(resolve_limit(limit))
            .after(cursor)
        )
        return self._store.programmed_reviews.page(spec)

    def get_statistics(
        self,
        user_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> ProgrammedReviewStatistics:
        """Aggregate counts by scanning the user's reviews in the date range."""

        spec = QuerySpec().where("userId", "==", user_id)
        if start_date is not None:
            spec = spec.where("scheduledDate", ">=", to_utc(start_date))
        if end_date is not None:
            spec = spec.where("scheduledDate", "<=", to_utc(end_date))
        reviews = self._store.programmed_reviews.query(spec)

        stats = ProgrammedReviewStatistics(total=len(reviews))
        scores: list[float] = []
        for review in reviews:
            if review.status is ReviewStatus.PENDING:
                stats.pending += 1
            elif review.status is ReviewStatus.COMPLETED:
                stats.completed += 1
                if review.score is not None:
                    scores.append(review.score)
            elif review.status is ReviewStatus.SKIPPED:
                stats.skipped += 1
            stats.total_time_spent += review.time_spent or 0
            stats.total_cards_reviewed += review.cards_reviewed or 0
        if stats.total:
            stats.completion_rate = round(stats.completed / stats.total * 100, 2)
        if scores:
            stats.average_score = round(sum(scores) / len(scores), 2)
        return stats

    # --- mutations ---
    def update(
        self,
        review_id: str,
        user_id: str,
        changes: ProgrammedReviewUpdate,
    ) -> ProgrammedReview:
        review = self._require_owned(review_id, user_id)
        self._require_pending(review)

        update = changes.model_dump(exclude_unset=True)
        scheduled = update.pop("scheduled_date", None)
        if scheduled is not None:
            scheduled = to_utc(scheduled)
            self._ensure_no_conflict(user_id, review.content_id, scheduled, exclude_id=review.id)
            update["scheduled_date"] = scheduled
            update["next_review_at"] = scheduled
        update["updated_at"] = self._clock()
        updated = merge_validated(review, update)
        self._store.programmed_reviews.save(updated)
        logger.info("programmed_review_updated", user_id=user_id, review_id=review_id, fields=sorted(update))
        return updated

    def delete(self, review_id: str, user_id: str) -> None:
        self._require_owned(review_id, user_id)
        self._store.programmed_reviews.delete(review_id)
        logger.info("programmed_review_deleted", user_id=user_id, review_id=review_id)

    def complete(
        self,
        review_id: str,
        user_id: str,
        score: float | None = None,
        time_spent: int | None = None,
        cards_reviewed: int | None = None,
    ) -> ProgrammedReview:
        if score is not None and not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100", details={"score": score})
        if time_spent is not None and time_spent < 0:
            raise ValidationError("timeSpent must not be negative", details={"timeSpent": time_spent})
        if cards_reviewed is not None and cards_reviewed < 0:
            raise ValidationError(
                "cardsReviewed must not be negative", details={"cardsReviewed": cards_reviewed}
            )
        review = self._require_owned(review_id, user_id)
        self._require_pending(review)

        now = self._clock()
        completed = review.model_copy(
            update={
                "status": ReviewStatus.COMPLETED,
                "completed_at": now,
                "score": score,
                "time_spent": time_spent,
                "cards_reviewed": cards_reviewed,
                "updated_at": now,
            }
        )
        self._store.programmed_reviews.save(completed)
        logger.info("programmed_review_completed", user_id=user_id, review_id=review_id, score=score)
        return completed

    def skip(self, review_id: str, user_id: str) -> ProgrammedReview:
        review = self._require_owned(review_id, user_id)
        self._require_pending(review)

        now = self._clock()
        skipped = review.model_copy(
            update={"status": ReviewStatus.SKIPPED, "skipped_at": now, "updated_at": now}
        )
        self._store.programmed_reviews.save(skipped)
        logger.info("programmed_review_skipped", user_id=user_id, review_id=review_id)
        return skipped

    def reschedule(self, review_id: str, user_id: str, new_date: datetime) -> ProgrammedReview:
        """Move a PENDING review, or clone a finished one onto a new date."""

        review = self._require_owned(review_id, user_id)
        scheduled = to_utc(new_date)
        if scheduled <= self._clock():
            raise ValidationError("Reschedule date must be in the future")
        self._ensure_no_conflict(user_id, review.content_id, scheduled, exclude_id=review.id)

        if review.is_pending:
            moved = review.model_copy(
                update={
                    "scheduled_date": scheduled,
                    "next_review_at": scheduled,
                    "updated_at": self._clock(),
                }
            )
            self._store.programmed_reviews.save(moved)
            logger.info("programmed_review_rescheduled", user_id=user_id, review_id=review_id)
            return moved

        clone = self.create_for_content(
            user_id,
            review.content_id,
            review.content_type,
            scheduled,
            deck_id=review.deck_id,
            deck=review.deck,
            title=review.title,
            description=review.description,
            reminder_enabled=review.reminder_enabled,
            reminder_time=review.reminder_time,
        )
        logger.info(
            "programmed_review_recreated",
            user_id=user_id,
            review_id=clone.id,
            source_review_id=review_id,
        )
        return clone

    def advance(self, review_id: str, quality: int, notes: str | None = None) -> ProgrammedReview:
        """Apply one SRS review to a PENDING review in place.

        失敗（quality < 3）のときは lapses を 1 増やす。スケジュール日と
        nextReviewAt は常に同じ値へ更新する。
        """

        quality = validate_quality(quality)
        review = self._require(review_id)
        self._require_pending(review)

        outcome = apply_review(
            review.srs_state(),
            quality,
            now=self._clock(),
            max_interval_days=settings.srs_max_interval_days,
            leech_threshold=settings.srs_leech_threshold,
        )
        update: dict[str, Any] = {
            "scheduled_date": outcome.next_review_at,
            "next_review_at": outcome.next_review_at,
            "last_reviewed_at": outcome.reviewed_at,
            "interval_days": outcome.interval,
            "ease_factor": outcome.ease_factor,
            "repetitions": outcome.repetitions,
            "fail_streak": outcome.fail_streak,
            "is_learning": outcome.is_learning,
            "lapses": review.lapses + (0 if outcome.passed else 1),
            "updated_at": outcome.reviewed_at,
        }
        if notes is not None:
            update["notes"] = notes
        advanced = review.model_copy(update=update)
        self._store.programmed_reviews.save(advanced)
        logger.info(
            "programmed_review_advanced",
            review_id=review_id,
            quality=quality,
            interval_days=advanced.interval_days,
            lapses=advanced.lapses,
        )
        return advanced
