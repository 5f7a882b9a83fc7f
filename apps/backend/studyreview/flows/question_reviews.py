"""Question response flow delegating SRS scheduling to programmed reviews.

回答（UserResponse）自体は SRS 状態を持たず、QUESTION 型の
ProgrammedReview を `programmedReviewId` で弱参照する。レビュー結果は
ProgrammedReviewScheduler.advance で計算し、回答側へコピーする。
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from google.api_core.exceptions import GoogleAPIError

from ..errors import MissingSchedule, NotFoundError, ServiceError, UserMismatch, ValidationError
from ..id_factory import generate_document_id
from ..logging import logger
from ..models.common import Page, to_utc
from ..models.programmed_review import ContentType
from ..models.question_response import (
    QuestionResponseStats,
    UserResponse,
    UserResponseCreate,
    UserResponseUpdate,
)
from ..srs import validate_quality
from ..store.common import normalize_non_negative_int
from ..store.firestore_store import AppFirestoreStore
from ..store.query import QuerySpec
from . import Clock, merge_validated, resolve_limit, utc_now
from .programmed_reviews import ProgrammedReviewScheduler

LISTABLE_FIELDS = ("createdAt", "updatedAt", "nextReviewDate")


@dataclass(frozen=True)
class CompensatingAction:
    """Follow-up cleanup executed after a primary write; failures are only logged."""

    name: str
    run: Callable[[], object]


def run_compensations(actions: list[CompensatingAction], **context: object) -> list[str]:
    """Run every action in order and return the names of the ones that failed."""

    failed: list[str] = []
    for action in actions:
        try:
            action.run()
        except Exception as exc:
            failed.append(action.name)
            logger.warning(
                "question_review_compensation_failed",
                action=action.name,
                error=str(exc),
                error_class=exc.__class__.__name__,
                **context,
            )
    return failed


class ReviewDelegationAdapter:
    def __init__(
        self,
        store: AppFirestoreStore,
        *,
        scheduler: ProgrammedReviewScheduler | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._scheduler = scheduler or ProgrammedReviewScheduler(store, clock=clock)

    def _require_owned(self, response_id: str, user_id: str) -> UserResponse:
        response = self._store.question_responses.get(response_id)
        if response is None:
            raise NotFoundError("Question response not found", details={"responseId": response_id})
        if response.user_id != user_id:
            raise UserMismatch(
                "Question response belongs to another user",
                details={"responseId": response_id},
            )
        return response

    def create_response(self, user_id: str, payload: UserResponseCreate) -> UserResponse:
        """Persist a response and, when it carries a next review date, schedule it.

        スケジュール作成に失敗しても回答そのものは保存済みとして返す。
        """

        now = self._clock()
        response = UserResponse(
            id=generate_document_id(),
            user_id=user_id,
            question_id=payload.question_id,
            question_list_id=payload.question_list_id,
            is_correct=payload.is_correct,
            selected_answer=payload.selected_answer,
            review_count=payload.review_count,
            next_review_date=to_utc(payload.next_review_date) if payload.next_review_date else None,
            created_at=now,
            updated_at=now,
        )
        self._store.question_responses.save(response)

        if response.next_review_date is None:
            return response

        try:
            review = self._scheduler.create_for_content(
                user_id,
                response.id,
                ContentType.QUESTION,
                response.next_review_date,
                interval_days=response.review_count or 1,
                repetitions=response.review_count or 0,
                original_answer_correct=response.is_correct,
            )
            response = response.model_copy(
                update={"programmed_review_id": review.id, "updated_at": self._clock()}
            )
            self._store.question_responses.save(response)
        except (ServiceError, GoogleAPIError) as exc:
            logger.warning(
                "question_review_schedule_failed",
                user_id=user_id,
                response_id=response.id,
                error=str(exc),
                error_class=exc.__class__.__name__,
            )
        return response

    def get_response(self, response_id: str, user_id: str) -> UserResponse:
        return self._require_owned(response_id, user_id)

    def update_response(
        self,
        response_id: str,
        user_id: str,
        changes: UserResponseUpdate,
    ) -> UserResponse:
        response = self._require_owned(response_id, user_id)
        update = changes.model_dump(exclude_unset=True)
        update["updated_at"] = self._clock()
        updated = merge_validated(response, update)
        self._store.question_responses.save(updated)
        return updated

    def record_review(self, response_id: str, quality: int, user_id: str) -> UserResponse:
        """Forward a review to the linked programmed review and copy the result back."""

        quality = validate_quality(quality)
        response = self._require_owned(response_id, user_id)
        review_id = response.programmed_review_id
        if not review_id:
            raise MissingSchedule(
                "Question response has no programmed review",
                details={"responseId": response_id},
            )
        linked = self._store.programmed_reviews.get(review_id)
        if linked is not None and not linked.is_pending:
            # /programmed-reviews 側で完了・スキップ済みの予定はもう進められない
            raise MissingSchedule(
                "Programmed review linked to this response is no longer pending",
                details={
                    "responseId": response_id,
                    "programmedReviewId": review_id,
                    "status": linked.status.value,
                },
            )
        try:
            review = self._scheduler.advance(review_id, quality)
        except NotFoundError as exc:
            # 参照先が消えていた場合は弱参照切れとして扱う
            raise MissingSchedule(
                "Programmed review linked to this response no longer exists",
                details={"responseId": response_id, "programmedReviewId": review_id},
            ) from exc

        updated = response.model_copy(
            update={
                "srs_interval": review.interval_days,
                "next_review_date": review.next_review_at,
                "last_review_date": review.last_reviewed_at,
                "review_count": normalize_non_negative_int(response.review_count) + 1,
                "updated_at": self._clock(),
            }
        )
        self._store.question_responses.save(updated)
        logger.info(
            "question_review_recorded",
            user_id=user_id,
            response_id=response_id,
            programmed_review_id=review_id,
            quality=quality,
            srs_interval=updated.srs_interval,
        )
        return updated

    def delete_response(self, response_id: str, user_id: str) -> None:
        """Delete the response, then try to delete its programmed review.

        連動削除は補償アクションとして扱い、失敗してもログに残すだけで
        本体の削除結果は変えない。
        """

        response = self._require_owned(response_id, user_id)
        actions: list[CompensatingAction] = []
        if response.programmed_review_id:
            review_id = response.programmed_review_id
            actions.append(
                CompensatingAction(
                    name="delete_programmed_review",
                    run=lambda: self._store.programmed_reviews.delete(review_id),
                )
            )

        self._store.question_responses.delete(response_id)
        logger.info("question_response_deleted", user_id=user_id, response_id=response_id)
        run_compensations(actions, user_id=user_id, response_id=response_id)

    def list_responses(
        self,
        user_id: str,
        is_correct: bool | None = None,
        question_id: str | None = None,
        question_list_id: str | None = None,
        order_by: str = "createdAt",
        descending: bool = True,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[UserResponse]:
        if order_by not in LISTABLE_FIELDS:
            raise ValidationError(
                "orderBy must be one of createdAt, updatedAt, nextReviewDate",
                details={"orderBy": order_by},
            )
        spec = QuerySpec().where("userId", "==", user_id)
        if is_correct is not None:
            spec = spec.where("isCorrect", "==", is_correct)
        if question_id:
            spec = spec.where("questionId", "==", question_id)
        if question_list_id:
            spec = spec.where("questionListId", "==", question_list_id)
        spec = (
            spec.order_by(order_by, descending=descending)
            .with_limit(resolve_limit(limit))
            .after(cursor)
        )
        return self._store.question_responses.page(spec)

    def get_stats(self, user_id: str) -> QuestionResponseStats:
        responses = self._store.question_responses
        base = QuerySpec().where("userId", "==", user_id)
        total = responses.count(base)
        correct = responses.count(base.where("isCorrect", "==", True))
        pending = responses.count(base.where("nextReviewDate", "<=", self._clock()))
        return QuestionResponseStats(
            total_responses=total,
            correct_responses=correct,
            incorrect_responses=total - correct,
            accuracy_rate=round(correct / total * 100, 2) if total else 0.0,
            pending_reviews=pending,
        )
