from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore
from google.cloud.firestore_v1.field_path import FieldPath
from pydantic import BaseModel

from ..config import FIRESTORE_IN_QUERY_HARD_LIMIT
from ..logging import logger
from ..models.common import Page
from ..models.interaction import InteractionRecord
from ..models.programmed_review import ProgrammedReview, ReviewStatus
from ..models.question_response import UserResponse
from .common import coerce_firestore_snapshot, extract_count_from_aggregation
from .query import QuerySpec, apply_query, fetch_page

INTERACTIONS_COLLECTION = "userFlashcardInteractions"
PROGRAMMED_REVIEWS_COLLECTION = "programmedReviews"
QUESTION_RESPONSES_COLLECTION = "userQuestionResponses"
FLASHCARDS_COLLECTION = "flashcards"
DECKS_COLLECTION = "decks"
QUESTIONS_COLLECTION = "questions"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _snapshot_to_model(model: type[ModelT], snapshot: Any) -> ModelT:
    """Validate a snapshot payload into a model, taking the id from the snapshot."""

    payload = dict(snapshot.to_dict() or {})
    payload["id"] = snapshot.id
    return model.model_validate(payload)


class FirestoreBaseStore:
    """Firestore クライアント共通のヘルパー。"""

    def __init__(self, client: firestore.Client):
        self._client = client


class FirestoreModelStore(FirestoreBaseStore):
    """単一コレクションを 1 つの pydantic モデルとして読み書きするストア。"""

    collection_name: str = ""
    model: type[BaseModel] = BaseModel

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._collection = client.collection(self.collection_name)

    def _parse(self, snapshot: Any) -> Any:
        return _snapshot_to_model(self.model, snapshot)

    def document(self, document_id: str) -> Any:
        return self._collection.document(document_id)

    def get(self, document_id: str) -> Any | None:
        snapshot = self._collection.document(document_id).get()
        if not snapshot.exists:
            return None
        return self._parse(snapshot)

    def save(self, item: Any) -> None:
        """Write the full document (no merge) so removed optional fields disappear."""

        self._collection.document(item.id).set(item.to_document())

    def delete(self, document_id: str) -> bool:
        doc_ref = self._collection.document(document_id)
        snapshot = doc_ref.get()
        if not snapshot.exists:
            return False
        doc_ref.delete()
        return True

    def query(self, spec: QuerySpec) -> list[Any]:
        return [self._parse(snapshot) for snapshot in apply_query(self._collection, spec).stream()]

    def page(self, spec: QuerySpec) -> Page[Any]:
        return fetch_page(self._collection, spec, self._parse)

    def count(self, spec: QuerySpec) -> int:
        """Count matching documents with a server-side aggregation query."""

        query = apply_query(self._collection, spec)
        return extract_count_from_aggregation(query.count(alias="count").get())


class FirestoreInteractionStore(FirestoreModelStore):
    """`userFlashcardInteractions` を管理する。ID は `{userId}_{itemId}` 固定。"""

    collection_name = INTERACTIONS_COLLECTION
    model = InteractionRecord

    def create(self, record: InteractionRecord) -> bool:
        """Create the record unless it already exists; returns False on a lost race."""

        try:
            self._collection.document(record.id).create(record.to_document())
        except AlreadyExists:
            logger.info("interaction_create_conflict", record_id=record.id)
            return False
        return True

    def transact(
        self,
        record_id: str,
        mutate: Callable[[InteractionRecord | None], InteractionRecord],
    ) -> InteractionRecord:
        """Read, mutate and write one record inside a Firestore transaction.

        なぜ: 同じカードへのレビューが並行しても更新が失われないよう、
        読み出しと書き込みを 1 トランザクションにまとめる。コミット時に競合が
        検出されると `firestore.transactional` が mutate を再実行する。
        """

        doc_ref = self._collection.document(record_id)

        @firestore.transactional
        def _apply(transaction: firestore.Transaction) -> InteractionRecord:
            snapshot = coerce_firestore_snapshot(transaction.get(doc_ref))
            current = None
            if snapshot is not None and snapshot.exists:
                current = _snapshot_to_model(InteractionRecord, snapshot)
            updated = mutate(current)
            transaction.set(doc_ref, updated.to_document())
            return updated

        return _apply(self._client.transaction())


class FirestoreProgrammedReviewStore(FirestoreModelStore):
    """`programmedReviews` を管理する。"""

    collection_name = PROGRAMMED_REVIEWS_COLLECTION
    model = ProgrammedReview

    def find_pending_on_day(
        self,
        *,
        user_id: str,
        content_id: str,
        day_start: datetime,
        day_end: datetime,
        exclude_id: str | None = None,
    ) -> ProgrammedReview | None:
        """Return a PENDING review of the same content scheduled within [day_start, day_end]."""

        spec = (
            QuerySpec()
            .where("userId", "==", user_id)
            .where("contentId", "==", content_id)
            .where("status", "==", ReviewStatus.PENDING.value)
            .where("scheduledDate", ">=", day_start)
            .where("scheduledDate", "<=", day_end)
        )
        for review in self.query(spec):
            if review.id != exclude_id:
                return review
        return None


class FirestoreQuestionResponseStore(FirestoreModelStore):
    """`userQuestionResponses` を管理する。"""

    collection_name = QUESTION_RESPONSES_COLLECTION
    model = UserResponse


class FirestoreContentStore(FirestoreBaseStore):
    """Read-only lookups into content collections owned by other services."""

    def __init__(self, client: firestore.Client, collection_name: str):
        super().__init__(client)
        self.collection_name = collection_name
        self._collection = client.collection(collection_name)

    def get(self, content_id: str) -> dict[str, Any] | None:
        snapshot = self._collection.document(content_id).get()
        if not snapshot.exists:
            return None
        return {**(snapshot.to_dict() or {}), "id": snapshot.id}

    def get_many(self, content_ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch one `in` chunk of documents by id.

        Firestore の `in` 演算子は 30 件までしか受け付けないため、分割は
        呼び出し側（DueQueueResolver）が行う。
        """

        ids = list(dict.fromkeys(content_ids))
        if not ids:
            return {}
        if len(ids) > FIRESTORE_IN_QUERY_HARD_LIMIT:
            raise ValueError(
                f"at most {FIRESTORE_IN_QUERY_HARD_LIMIT} ids can be fetched per query"
            )
        refs = [self._collection.document(content_id) for content_id in ids]
        query = self._collection.where(FieldPath.document_id(), "in", refs)
        return {
            snapshot.id: {**(snapshot.to_dict() or {}), "id": snapshot.id}
            for snapshot in query.stream()
        }


class AppFirestoreStore:
    """アプリ全体で使う Firestore ストア群の入れ物。"""

    def __init__(self, *, client: firestore.Client) -> None:
        self.client = client
        self.interactions = FirestoreInteractionStore(client)
        self.programmed_reviews = FirestoreProgrammedReviewStore(client)
        self.question_responses = FirestoreQuestionResponseStore(client)
        self.flashcards = FirestoreContentStore(client, FLASHCARDS_COLLECTION)
        self.decks = FirestoreContentStore(client, DECKS_COLLECTION)
        self.questions = FirestoreContentStore(client, QUESTIONS_COLLECTION)


__all__ = [
    "AppFirestoreStore",
    "FirestoreContentStore",
    "FirestoreInteractionStore",
    "FirestoreProgrammedReviewStore",
    "FirestoreQuestionResponseStore",
    "INTERACTIONS_COLLECTION",
    "PROGRAMMED_REVIEWS_COLLECTION",
    "QUESTION_RESPONSES_COLLECTION",
]
