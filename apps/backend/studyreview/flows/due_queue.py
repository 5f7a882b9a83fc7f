"""Due queue resolution.

Firestore には JOIN が無いため、期限到来のレコードを先に取得し、
参照先のコンテンツ本体を `in` クエリでまとめて取り直してから
元の並び順へ戻す。
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Any

from ..config import settings
from ..logging import logger
from ..models.common import Page, to_utc, utc_now
from ..models.interaction import DueFlashcard, InteractionRecord
from ..models.programmed_review import ContentType, ProgrammedReview, ReviewStatus
from ..models.question_response import UserResponse
from ..store.common import ContentLookup, is_owned_by
from ..store.firestore_store import AppFirestoreStore
from ..store.query import QuerySpec
from . import Clock, resolve_limit


def _chunks(ids: list[str], width: int) -> list[list[str]]:
    return [ids[start : start + width] for start in range(0, len(ids), width)]


class DueQueueResolver:
    """Answers "what is due now" for flashcards, question responses and programmed reviews."""

    def __init__(self, store: AppFirestoreStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def hydrate(self, lookup: ContentLookup, content_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch content for the given ids in chunks of `firestore_in_query_max`."""

        unique_ids = list(dict.fromkeys(content_ids))
        width = settings.firestore_in_query_max
        hydrated: dict[str, dict[str, Any]] = {}
        for chunk in _chunks(unique_ids, width):
            hydrated.update(lookup.get_many(chunk))
        return hydrated

    def get_due_flashcards(
        self,
        user_id: str,
        deck_id: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[DueFlashcard]:
        """Return one page of due flashcards ordered by nextReviewAt.

        nextCursor はハイドレーション前のインタラクション側ページから決めるため、
        削除済みカードを落としたページでも次ページへ進める。
        """

        now = self._clock()
        spec = QuerySpec().where("userId", "==", user_id)
        if deck_id:
            spec = spec.where("deckId", "==", deck_id)
        spec = (
            spec.where("nextReviewAt", "<=", now)
            .order_by("nextReviewAt")
            .with_limit(resolve_limit(limit))
            .after(cursor)
        )
        records_page: Page[InteractionRecord] = self._store.interactions.page(spec)
        records = records_page.items
        if not records:
            return Page[DueFlashcard](items=[], next_cursor=records_page.next_cursor)

        contents = self.hydrate(self._store.flashcards, [record.item_id for record in records])
        due: list[DueFlashcard] = []
        dropped = 0
        for record in records:
            content = contents.get(record.item_id)
            # 削除済み、または他ユーザーへ移ったカードは返さない
            if content is None or not is_owned_by(content, user_id):
                dropped += 1
                continue
            due.append(DueFlashcard(flashcard=content, interaction=record))
        if dropped:
            logger.info(
                "due_flashcards_dropped",
                user_id=user_id,
                deck_id=deck_id,
                dropped=dropped,
            )
        return Page[DueFlashcard](items=due, next_cursor=records_page.next_cursor)

    def get_due_question_responses(
        self,
        user_id: str,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[UserResponse]:
        spec = (
            QuerySpec()
            .where("userId", "==", user_id)
            .where("nextReviewDate", "<=", self._clock())
            .order_by("nextReviewDate")
            .with_limit(resolve_limit(limit))
            .after(cursor)
        )
        return self._store.question_responses.page(spec)

    def _pending_between(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        *,
        limit: int | None,
        cursor: str | None,
    ) -> Page[ProgrammedReview]:
        spec = (
            QuerySpec()
            .where("userId", "==", user_id)
            .where("status", "==", ReviewStatus.PENDING.value)
            .where("scheduledDate", ">=", start)
            .where("scheduledDate", "<=", end)
            .order_by("scheduledDate")
            .with_limit(limit)
            .after(cursor)
        )
        return self._store.programmed_reviews.page(spec)

    def get_today_reviews(self, user_id: str) -> list[ProgrammedReview]:
        """PENDING reviews scheduled within the current UTC calendar day."""

        now = to_utc(self._clock())
        day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        day_end = datetime.combine(now.date(), time.max, tzinfo=now.tzinfo)
        return self._pending_between(user_id, day_start, day_end, limit=None, cursor=None).items

    def get_upcoming_reviews(
        self,
        user_id: str,
        days: int | None = None,
        limit: int | None = 10,
        cursor: str | None = None,
    ) -> Page[ProgrammedReview]:
        now = self._clock()
        window = max(1, int(days or settings.upcoming_review_days))
        return self._pending_between(
            user_id,
            now,
            now + timedelta(days=window),
            limit=resolve_limit(limit, 10),
            cursor=cursor,
        )

    def get_due_programmed_reviews(
        self,
        user_id: str,
        content_type: ContentType | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[ProgrammedReview]:
        spec = (
            QuerySpec()
            .where("userId", "==", user_id)
            .where("status", "==", ReviewStatus.PENDING.value)
        )
        if content_type is not None:
            spec = spec.where("contentType", "==", ContentType(content_type).value)
        spec = (
            spec.where("nextReviewAt", "<=", self._clock())
            .order_by("nextReviewAt")
            .with_limit(resolve_limit(limit))
            .after(cursor)
        )
        return self._store.programmed_reviews.page(spec)
