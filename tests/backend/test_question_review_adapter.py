from __future__ import annotations

from datetime import timedelta

import pydantic
import pytest
from structlog.testing import capture_logs

from studyreview.errors import InvalidQuality, MissingSchedule, NotFoundError, SchedulingError, UserMismatch, ValidationError
from studyreview.flows.programmed_reviews import ProgrammedReviewScheduler
from studyreview.flows.question_reviews import (
    CompensatingAction,
    ReviewDelegationAdapter,
    run_compensations,
)
from studyreview.models.programmed_review import ContentType
from studyreview.models.question_response import UserResponseCreate, UserResponseUpdate
from studyreview.store.firestore_store import (
    PROGRAMMED_REVIEWS_COLLECTION,
    QUESTION_RESPONSES_COLLECTION,
)


@pytest.fixture()
def scheduler(store, clock) -> ProgrammedReviewScheduler:
    return ProgrammedReviewScheduler(store, clock=clock)


@pytest.fixture()
def adapter(store, scheduler, clock) -> ReviewDelegationAdapter:
    return ReviewDelegationAdapter(store, scheduler=scheduler, clock=clock)


def _answer(clock, *, due_in: timedelta | None = timedelta(days=1), is_correct: bool = False, **extra):
    return UserResponseCreate(
        question_id=extra.pop("question_id", "q-1"),
        is_correct=is_correct,
        next_review_date=None if due_in is None else clock.now + due_in,
        **extra,
    )


def test_create_response_links_question_review(adapter, store, clock):
    """nextReviewDate 付きの回答は QUESTION 型の予定を作成して弱参照で結ぶ。"""

    response = adapter.create_response("user-1", _answer(clock))

    assert response.programmed_review_id is not None
    review = store.programmed_reviews.get(response.programmed_review_id)
    assert review.content_type is ContentType.QUESTION
    assert review.content_id == response.id
    assert review.next_review_at == clock.now + timedelta(days=1)
    assert review.original_answer_correct is False
    stored = store.question_responses.get(response.id)
    assert stored.programmed_review_id == review.id


def test_create_response_without_review_date_has_no_schedule(adapter, fake_client, clock):
    response = adapter.create_response("user-1", _answer(clock, due_in=None, is_correct=True))

    assert response.programmed_review_id is None
    assert fake_client.documents(PROGRAMMED_REVIEWS_COLLECTION) == {}


def test_schedule_failure_keeps_response(adapter, scheduler, store, clock, monkeypatch):
    def _fail(*args, **kwargs):
        raise SchedulingError("calendar unavailable")

    monkeypatch.setattr(scheduler, "create_for_content", _fail)

    with capture_logs() as logs:
        response = adapter.create_response("user-1", _answer(clock))

    assert response.programmed_review_id is None
    assert store.question_responses.get(response.id) is not None
    assert any(entry["event"] == "question_review_schedule_failed" for entry in logs)


def test_record_review_copies_srs_result_back(adapter, clock):
    response = adapter.create_response("user-1", _answer(clock))
    clock.now += timedelta(days=1)

    updated = adapter.record_review(response.id, 5, "user-1")

    assert updated.srs_interval == 1
    assert updated.review_count == 1
    assert updated.next_review_date == clock.now + timedelta(days=1)
    assert updated.last_review_date == clock.now


def test_record_review_without_schedule_is_missing_schedule(adapter, clock):
    response = adapter.create_response("user-1", _answer(clock, due_in=None))

    with pytest.raises(MissingSchedule) as exc_info:
        adapter.record_review(response.id, 4, "user-1")

    assert exc_info.value.status_code == 422


def test_record_review_with_deleted_schedule_is_missing_schedule(adapter, store, clock):
    """参照先の予定が消えていれば弱参照切れとして MissingSchedule を返す。"""

    response = adapter.create_response("user-1", _answer(clock))
    store.programmed_reviews.delete(response.programmed_review_id)

    with pytest.raises(MissingSchedule) as exc_info:
        adapter.record_review(response.id, 4, "user-1")

    assert exc_info.value.details["programmedReviewId"] == response.programmed_review_id


@pytest.mark.parametrize("close", ["complete", "skip"])
def test_record_review_after_schedule_closed_is_missing_schedule(adapter, scheduler, clock, close):
    """予定側で完了・スキップ済みなら、回答側のレビューも MissingSchedule で返す。"""

    response = adapter.create_response("user-1", _answer(clock))
    getattr(scheduler, close)(response.programmed_review_id, "user-1")

    with pytest.raises(MissingSchedule) as exc_info:
        adapter.record_review(response.id, 4, "user-1")

    assert exc_info.value.status_code == 422
    assert exc_info.value.details["status"] in {"COMPLETED", "SKIPPED"}


def test_record_review_checks_owner_and_quality(adapter, clock):
    response = adapter.create_response("user-1", _answer(clock))

    with pytest.raises(UserMismatch):
        adapter.record_review(response.id, 4, "user-2")
    with pytest.raises(InvalidQuality):
        adapter.record_review(response.id, 9, "user-1")
    with pytest.raises(NotFoundError):
        adapter.record_review("missing", 4, "user-1")


def test_update_response_edits_plain_fields(adapter, clock):
    response = adapter.create_response("user-1", _answer(clock))
    clock.now += timedelta(minutes=1)

    updated = adapter.update_response(
        response.id, "user-1", UserResponseUpdate(selected_answer="B", is_correct=True)
    )

    assert updated.selected_answer == "B"
    assert updated.is_correct is True
    assert updated.programmed_review_id == response.programmed_review_id
    assert updated.updated_at == clock.now


def test_update_response_rejects_null_is_correct(adapter, clock):
    """isCorrect を null で上書きしても、保存済みの回答は読み戻せるままにする。"""

    response = adapter.create_response("user-1", _answer(clock, is_correct=True))

    with pytest.raises(pydantic.ValidationError):
        UserResponseUpdate.model_validate({"isCorrect": None})
    with pytest.raises(ValidationError):
        adapter.update_response(response.id, "user-1", UserResponseUpdate.model_construct(is_correct=None))

    stored = adapter.get_response(response.id, "user-1")
    assert stored.is_correct is True
    adapter.delete_response(response.id, "user-1")
    with pytest.raises(NotFoundError):
        adapter.get_response(response.id, "user-1")


def test_update_response_null_clears_selected_answer(adapter, clock):
    response = adapter.create_response("user-1", _answer(clock, selected_answer="A"))

    adapter.update_response(response.id, "user-1", UserResponseUpdate.model_validate({"selectedAnswer": None}))

    assert adapter.get_response(response.id, "user-1").selected_answer is None


def test_delete_response_removes_linked_review(adapter, fake_client, clock):
    response = adapter.create_response("user-1", _answer(clock))

    adapter.delete_response(response.id, "user-1")

    assert fake_client.documents(QUESTION_RESPONSES_COLLECTION) == {}
    assert fake_client.documents(PROGRAMMED_REVIEWS_COLLECTION) == {}


def test_delete_response_survives_compensation_failure(adapter, fake_client, clock):
    """予定の連動削除が失敗しても、回答の削除は成功扱いのままログだけ残す。"""

    response = adapter.create_response("user-1", _answer(clock))
    fake_client.fail_deletes_in[PROGRAMMED_REVIEWS_COLLECTION] = RuntimeError("backend unavailable")

    with capture_logs() as logs:
        adapter.delete_response(response.id, "user-1")

    assert fake_client.documents(QUESTION_RESPONSES_COLLECTION) == {}
    assert response.programmed_review_id in fake_client.documents(PROGRAMMED_REVIEWS_COLLECTION)
    failures = [entry for entry in logs if entry["event"] == "question_review_compensation_failed"]
    assert failures and failures[0]["action"] == "delete_programmed_review"


def test_delete_response_requires_owner(adapter, clock):
    response = adapter.create_response("user-1", _answer(clock))

    with pytest.raises(UserMismatch):
        adapter.delete_response(response.id, "user-2")


def test_run_compensations_continues_after_failure():
    calls: list[str] = []

    def _boom():
        raise RuntimeError("boom")

    failed = run_compensations(
        [
            CompensatingAction("first", _boom),
            CompensatingAction("second", lambda: calls.append("second")),
        ],
        user_id="user-1",
    )

    assert failed == ["first"]
    assert calls == ["second"]


def test_list_responses_filters_and_orders(adapter, clock):
    first = adapter.create_response("user-1", _answer(clock, due_in=None, is_correct=True))
    clock.now += timedelta(minutes=1)
    second = adapter.create_response("user-1", _answer(clock, due_in=None, question_id="q-2"))
    clock.now += timedelta(minutes=1)
    adapter.create_response("user-2", _answer(clock, due_in=None))

    newest = adapter.list_responses("user-1")
    correct = adapter.list_responses("user-1", is_correct=True)
    by_question = adapter.list_responses("user-1", question_id="q-2", descending=False)

    assert [r.id for r in newest.items] == [second.id, first.id]
    assert [r.id for r in correct.items] == [first.id]
    assert [r.id for r in by_question.items] == [second.id]


def test_list_responses_rejects_unknown_order(adapter):
    with pytest.raises(ValidationError):
        adapter.list_responses("user-1", order_by="selectedAnswer")


def test_stats_count_accuracy_and_pending(adapter, clock):
    adapter.create_response("user-1", _answer(clock, due_in=-timedelta(hours=1), is_correct=True))
    adapter.create_response("user-1", _answer(clock, due_in=timedelta(days=2), is_correct=True))
    adapter.create_response("user-1", _answer(clock, due_in=None))
    adapter.create_response("user-2", _answer(clock, due_in=None, is_correct=True))

    stats = adapter.get_stats("user-1")

    assert stats.total_responses == 3
    assert stats.correct_responses == 2
    assert stats.incorrect_responses == 1
    assert stats.accuracy_rate == 66.67
    assert stats.pending_reviews == 1


def test_stats_for_user_without_responses(adapter):
    stats = adapter.get_stats("nobody")

    assert stats.total_responses == 0
    assert stats.accuracy_rate == 0.0
