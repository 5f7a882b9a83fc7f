"""Flashcard interaction flow.

(user, flashcard) ごとの学習状態を SM-2 で進める。レビューの記録だけは
Firestore トランザクションで読み書きし、並行レビューでの更新消失を防ぐ。
"""

from __future__ import annotations

from ..config import settings
from ..id_factory import interaction_document_id
from ..logging import logger
from ..models.common import Page
from ..models.interaction import DueFlashcard, InteractionRecord
from ..srs import apply_review, validate_quality
from ..store.firestore_store import AppFirestoreStore
from . import Clock, utc_now
from .due_queue import DueQueueResolver


class InteractionService:
    def __init__(
        self,
        store: AppFirestoreStore,
        *,
        resolver: DueQueueResolver | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._resolver = resolver or DueQueueResolver(store, clock=clock)

    def get_or_create(
        self,
        user_id: str,
        item_id: str,
        deck_id: str | None = None,
    ) -> InteractionRecord:
        """Return the stored record, persisting a default one on first access."""

        record_id = interaction_document_id(user_id, item_id)
        existing = self._store.interactions.get(record_id)
        if existing is not None:
            return existing

        record = InteractionRecord.fresh(
            record_id=record_id,
            user_id=user_id,
            item_id=item_id,
            deck_id=deck_id,
            now=self._clock(),
        )
        if self._store.interactions.create(record):
            logger.info("interaction_created", user_id=user_id, item_id=item_id, deck_id=deck_id)
            return record
        # 並行リクエストが先に作成した場合はそちらを正とする
        winner = self._store.interactions.get(record_id)
        return winner if winner is not None else record

    def record_review(
        self,
        user_id: str,
        item_id: str,
        deck_id: str | None,
        quality: int,
        study_time: int | None = None,
        notes: str | None = None,
    ) -> InteractionRecord:
        """Apply one review to the (user, item) record inside a transaction.

        入力検証はトランザクション開始前に行い、不正な quality では
        何も書き込まない。レコードが無ければ同じトランザクション内で作る。
        """

        quality = validate_quality(quality)
        record_id = interaction_document_id(user_id, item_id)

        def _mutate(current: InteractionRecord | None) -> InteractionRecord:
            now = self._clock()
            base = current or InteractionRecord.fresh(
                record_id=record_id,
                user_id=user_id,
                item_id=item_id,
                deck_id=deck_id,
                now=now,
            )
            if deck_id and base.deck_id != deck_id:
                base = base.model_copy(update={"deck_id": deck_id})
            outcome = apply_review(
                base.srs_state(),
                quality,
                now=now,
                max_interval_days=settings.srs_max_interval_days,
                leech_threshold=settings.srs_leech_threshold,
            )
            return base.with_outcome(outcome, study_time=study_time, review_notes=notes)

        updated = self._store.interactions.transact(record_id, _mutate)
        logger.info(
            "interaction_review_recorded",
            user_id=user_id,
            item_id=item_id,
            quality=quality,
            interval=updated.interval,
            repetitions=updated.repetitions,
            is_leech=updated.is_leech,
        )
        return updated

    def reset_progress(
        self,
        user_id: str,
        item_id: str,
        deck_id: str | None = None,
    ) -> InteractionRecord:
        """Return the record to its initial state, keeping createdAt and carried fields."""

        record_id = interaction_document_id(user_id, item_id)
        existing = self._store.interactions.get(record_id)
        now = self._clock()
        reset = InteractionRecord.fresh(
            record_id=record_id,
            user_id=user_id,
            item_id=item_id,
            deck_id=deck_id or (existing.deck_id if existing else None),
            now=now,
        )
        if existing is not None:
            reset = reset.model_copy(
                update={
                    "created_at": existing.created_at,
                    "study_time": existing.study_time,
                    "review_notes": existing.review_notes,
                }
            )
        self._store.interactions.save(reset)
        logger.info("interaction_progress_reset", user_id=user_id, item_id=item_id)
        return reset

    def get_stats(self, user_id: str, item_id: str) -> InteractionRecord | None:
        return self._store.interactions.get(interaction_document_id(user_id, item_id))

    def get_due_items(
        self,
        user_id: str,
        deck_id: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[DueFlashcard]:
        return self._resolver.get_due_flashcards(user_id, deck_id=deck_id, limit=limit, cursor=cursor)
