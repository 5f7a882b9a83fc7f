from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pydantic
import pytest

from studyreview.errors import ConflictError, NotFoundError, OwnershipError, ValidationError
from studyreview.flows.programmed_reviews import ProgrammedReviewScheduler
from studyreview.models.programmed_review import (
    ContentType,
    ProgrammedReviewUpdate,
    ReviewStatus,
)
from studyreview.recurrence import Frequency
from studyreview.store.firestore_store import DECKS_COLLECTION, PROGRAMMED_REVIEWS_COLLECTION

# 2026-03-15 は日曜日（固定時計 2026-03-10 から見て未来）
SUNDAY = datetime(2026, 3, 15, 9, 0, tzinfo=UTC)


@pytest.fixture()
def scheduler(store, clock) -> ProgrammedReviewScheduler:
    return ProgrammedReviewScheduler(store, clock=clock)


@pytest.fixture(autouse=True)
def decks(fake_client) -> None:
    fake_client.seed(DECKS_COLLECTION, "deck-1", {"userId": "user-1", "title": "Verbs", "cardCount": 12})
    fake_client.seed(DECKS_COLLECTION, "deck-public", {"userId": "other", "title": "Shared", "isPublic": True})
    fake_client.seed(DECKS_COLLECTION, "deck-private", {"userId": "other", "title": "Secret"})


def test_create_snapshots_deck_and_applies_defaults(scheduler, fake_client):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    assert review.status is ReviewStatus.PENDING
    assert review.content_type is ContentType.FLASHCARD_DECK
    assert review.content_id == "deck-1"
    assert review.deck is not None and review.deck.card_count == 12
    assert review.title == "Review: Verbs"
    assert review.reminder_time == "09:00"
    assert review.scheduled_date == review.next_review_at == SUNDAY
    stored = fake_client.documents(PROGRAMMED_REVIEWS_COLLECTION)[review.id]
    assert stored["status"] == "PENDING"
    assert stored["contentType"] == "FLASHCARD_DECK"
    assert stored["deck"]["title"] == "Verbs"


def test_create_normalises_timezones_to_utc(scheduler):
    tokyo_morning = datetime.fromisoformat("2026-03-16T08:00:00+09:00")

    review = scheduler.create("user-1", "deck-1", tokyo_morning)

    assert review.scheduled_date == datetime(2026, 3, 15, 23, 0, tzinfo=UTC)


def test_same_deck_same_day_conflicts(scheduler):
    """同じデッキ・同じ UTC 日に PENDING の予定があれば 409。"""

    first = scheduler.create("user-1", "deck-1", SUNDAY)

    with pytest.raises(ConflictError) as exc_info:
        scheduler.create("user-1", "deck-1", SUNDAY.replace(hour=20))

    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"existingReviewId": first.id, "date": "2026-03-15"}
    scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=1))


def test_finished_reviews_do_not_conflict(scheduler):
    first = scheduler.create("user-1", "deck-1", SUNDAY)
    scheduler.complete(first.id, "user-1")

    second = scheduler.create("user-1", "deck-1", SUNDAY.replace(hour=18))

    assert second.id != first.id


def test_deck_access_rules(scheduler):
    with pytest.raises(NotFoundError):
        scheduler.create("user-1", "deck-missing", SUNDAY)
    with pytest.raises(OwnershipError):
        scheduler.create("user-1", "deck-private", SUNDAY)

    review = scheduler.create("user-1", "deck-public", SUNDAY, title="My shared review")

    assert review.title == "My shared review"


def test_create_rejects_non_datetime(scheduler):
    with pytest.raises(ValidationError):
        scheduler.create("user-1", "deck-1", "2026-03-15")  # type: ignore[arg-type]


def test_batch_creates_one_review_per_generated_date(scheduler):
    created = scheduler.create_batch(
        "user-1", "deck-1", SUNDAY, SUNDAY + timedelta(days=13), Frequency.weekly, [1, 3, 5]
    )

    assert [review.scheduled_date.day for review in created] == [16, 18, 20, 23, 25, 27]


def test_batch_skips_conflicting_dates(scheduler):
    """既存予定と衝突する日付だけをスキップし、残りは作成する。"""

    existing = scheduler.create("user-1", "deck-1", datetime(2026, 3, 18, 7, 0, tzinfo=UTC))

    created = scheduler.create_batch(
        "user-1", "deck-1", SUNDAY, SUNDAY + timedelta(days=13), "weekly", [1, 3, 5]
    )

    assert [review.scheduled_date.day for review in created] == [16, 20, 23, 25, 27]
    assert existing.id not in {review.id for review in created}


def test_batch_requires_future_start(scheduler, clock):
    with pytest.raises(ValidationError):
        scheduler.create_batch(
            "user-1", "deck-1", clock.now - timedelta(days=1), clock.now + timedelta(days=5), "daily"
        )


def test_batch_requires_weekdays_for_weekly(scheduler):
    with pytest.raises(ValidationError):
        scheduler.create_batch("user-1", "deck-1", SUNDAY, SUNDAY + timedelta(days=7), "weekly")


def test_get_checks_ownership(scheduler):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    assert scheduler.get(review.id, "user-1") == review
    with pytest.raises(OwnershipError):
        scheduler.get(review.id, "user-2")
    with pytest.raises(NotFoundError):
        scheduler.get("missing", "user-1")


def test_update_changes_fields_and_moves_date(scheduler, clock):
    review = scheduler.create("user-1", "deck-1", SUNDAY)
    clock.now += timedelta(minutes=5)

    updated = scheduler.update(
        review.id,
        "user-1",
        ProgrammedReviewUpdate(title="Evening review", scheduled_date=SUNDAY.replace(hour=20)),
    )

    assert updated.title == "Evening review"
    assert updated.scheduled_date == updated.next_review_at == SUNDAY.replace(hour=20)
    assert updated.updated_at == clock.now
    assert updated.reminder_time == review.reminder_time


def test_update_detects_conflict_with_other_review(scheduler):
    scheduler.create("user-1", "deck-1", SUNDAY)
    other = scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=1))

    with pytest.raises(ConflictError):
        scheduler.update(other.id, "user-1", ProgrammedReviewUpdate(scheduled_date=SUNDAY))


def test_update_requires_pending(scheduler):
    review = scheduler.create("user-1", "deck-1", SUNDAY)
    scheduler.skip(review.id, "user-1")

    with pytest.raises(ValidationError):
        scheduler.update(review.id, "user-1", ProgrammedReviewUpdate(title="Too late"))


def test_update_rejects_null_for_required_fields(scheduler, store):
    """reminderEnabled や scheduledDate の null は「変更なし」ではなく入力エラーにする。"""

    with pytest.raises(pydantic.ValidationError):
        ProgrammedReviewUpdate.model_validate({"reminderEnabled": None})
    with pytest.raises(pydantic.ValidationError):
        ProgrammedReviewUpdate.model_validate({"scheduledDate": None})

    review = scheduler.create("user-1", "deck-1", SUNDAY, reminder_enabled=False)
    with pytest.raises(ValidationError):
        scheduler.update(review.id, "user-1", ProgrammedReviewUpdate.model_construct(reminder_enabled=None))

    assert store.programmed_reviews.get(review.id).reminder_enabled is False


def test_update_null_clears_optional_fields(scheduler):
    review = scheduler.create("user-1", "deck-1", SUNDAY, description="Chapter 3")

    updated = scheduler.update(
        review.id, "user-1", ProgrammedReviewUpdate.model_validate({"description": None})
    )

    assert updated.description is None
    assert scheduler.get(review.id, "user-1").description is None


def test_complete_records_results_once(scheduler, clock):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    completed = scheduler.complete(review.id, "user-1", score=85, time_spent=300, cards_reviewed=12)

    assert completed.status is ReviewStatus.COMPLETED
    assert completed.completed_at == clock.now
    assert completed.score == 85
    with pytest.raises(ValidationError):
        scheduler.complete(review.id, "user-1")
    with pytest.raises(ValidationError):
        scheduler.skip(review.id, "user-1")


@pytest.mark.parametrize(
    "kwargs",
    [{"score": 101}, {"score": -1}, {"time_spent": -5}, {"cards_reviewed": -1}],
)
def test_complete_validates_ranges(scheduler, kwargs):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    with pytest.raises(ValidationError):
        scheduler.complete(review.id, "user-1", **kwargs)


def test_skip_marks_review_terminal(scheduler, clock):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    skipped = scheduler.skip(review.id, "user-1")

    assert skipped.status is ReviewStatus.SKIPPED
    assert skipped.skipped_at == clock.now
    with pytest.raises(ValidationError):
        scheduler.complete(review.id, "user-1")


def test_reschedule_pending_moves_in_place(scheduler):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    moved = scheduler.reschedule(review.id, "user-1", SUNDAY + timedelta(days=2))

    assert moved.id == review.id
    assert moved.scheduled_date == moved.next_review_at == SUNDAY + timedelta(days=2)


def test_reschedule_finished_review_creates_new_pending(scheduler, store):
    """完了済みの予定を再スケジュールすると元は残したまま新しい予定を作る。"""

    review = scheduler.create("user-1", "deck-1", SUNDAY)
    scheduler.complete(review.id, "user-1", score=70)

    clone = scheduler.reschedule(review.id, "user-1", SUNDAY + timedelta(days=3))

    assert clone.id != review.id
    assert clone.status is ReviewStatus.PENDING
    assert clone.content_id == "deck-1"
    assert clone.title == review.title
    original = store.programmed_reviews.get(review.id)
    assert original.status is ReviewStatus.COMPLETED
    assert original.scheduled_date == SUNDAY


def test_reschedule_rejects_past_dates_and_conflicts(scheduler, clock):
    review = scheduler.create("user-1", "deck-1", SUNDAY)
    scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=1))

    with pytest.raises(ValidationError):
        scheduler.reschedule(review.id, "user-1", clock.now - timedelta(hours=1))
    with pytest.raises(ConflictError):
        scheduler.reschedule(review.id, "user-1", SUNDAY + timedelta(days=1, hours=3))


def test_advance_applies_sm2_and_counts_lapses(scheduler, clock):
    review = scheduler.create_for_content("user-1", "resp-1", ContentType.QUESTION, clock.now)

    passed = scheduler.advance(review.id, 5, notes="remembered")

    assert passed.repetitions == 1
    assert passed.interval_days == 1
    assert passed.scheduled_date == passed.next_review_at == clock.now + timedelta(days=1)
    assert passed.last_reviewed_at == clock.now
    assert passed.lapses == 0
    assert passed.notes == "remembered"

    failed = scheduler.advance(review.id, 2)

    assert failed.repetitions == 0
    assert failed.lapses == 1
    assert failed.fail_streak == 1
    assert failed.status is ReviewStatus.PENDING


def test_advance_requires_pending_review(scheduler):
    review = scheduler.create("user-1", "deck-1", SUNDAY)
    scheduler.skip(review.id, "user-1")

    with pytest.raises(ValidationError):
        scheduler.advance(review.id, 4)
    with pytest.raises(NotFoundError):
        scheduler.advance("missing", 4)


def test_statistics_aggregate_statuses(scheduler):
    first = scheduler.create("user-1", "deck-1", SUNDAY)
    second = scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=1))
    third = scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=2))
    scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=3))
    scheduler.create("user-2", "deck-public", SUNDAY)
    scheduler.complete(first.id, "user-1", score=80, time_spent=100, cards_reviewed=10)
    scheduler.complete(second.id, "user-1", score=90, time_spent=50, cards_reviewed=5)
    scheduler.skip(third.id, "user-1")

    stats = scheduler.get_statistics("user-1")

    assert stats.total == 4
    assert (stats.pending, stats.completed, stats.skipped) == (1, 2, 1)
    assert stats.completion_rate == 50.0
    assert stats.average_score == 85.0
    assert stats.total_time_spent == 150
    assert stats.total_cards_reviewed == 15

    ranged = scheduler.get_statistics("user-1", start_date=SUNDAY + timedelta(days=2))
    assert ranged.total == 2


def test_statistics_for_new_user_are_zero(scheduler):
    stats = scheduler.get_statistics("nobody")

    assert stats.total == 0
    assert stats.completion_rate == 0.0
    assert stats.average_score is None


def test_list_reviews_filters_and_sorts(scheduler):
    first = scheduler.create("user-1", "deck-1", SUNDAY)
    second = scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=1))
    third = scheduler.create("user-1", "deck-1", SUNDAY + timedelta(days=2))
    scheduler.skip(second.id, "user-1")

    pending = scheduler.list_reviews("user-1", status=ReviewStatus.PENDING)
    newest_first = scheduler.list_reviews("user-1", sort_order="desc", limit=2)

    assert [r.id for r in pending.items] == [first.id, third.id]
    assert [r.id for r in newest_first.items] == [third.id, second.id]
    assert newest_first.next_cursor == second.id


@pytest.mark.parametrize("kwargs", [{"sort_by": "title"}, {"sort_order": "sideways"}])
def test_list_reviews_rejects_unknown_sort(scheduler, kwargs):
    with pytest.raises(ValidationError):
        scheduler.list_reviews("user-1", **kwargs)


def test_delete_removes_review(scheduler, store):
    review = scheduler.create("user-1", "deck-1", SUNDAY)

    with pytest.raises(OwnershipError):
        scheduler.delete(review.id, "user-2")
    scheduler.delete(review.id, "user-1")

    assert store.programmed_reviews.get(review.id) is None
