from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any, Protocol

from google.cloud import firestore


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する。

    Firestore 上のカウンタ（reviewCount など）は古いクライアントが文字列や
    負値を書き込んでいる可能性があるため、読み出し時にゼロ以上へ矯正する。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def coerce_firestore_snapshot(
    candidate: Any,
) -> firestore.DocumentSnapshot | None:
    """Normalize Firestore transaction.get results (snapshot or generator) into a snapshot."""

    if candidate is None:
        return None
    if hasattr(candidate, "exists"):
        return candidate  # type: ignore[return-value]
    if isinstance(candidate, Iterator):
        return next(candidate, None)
    if isinstance(candidate, Iterable) and not isinstance(candidate, (str, bytes, Mapping)):
        iterator = iter(candidate)
        return next(iterator, None)
    return None


class ContentLookup(Protocol):
    """Read-only access to content owned by other services (flashcards, decks, questions)."""

    def get(self, content_id: str) -> dict[str, Any] | None: ...

    def get_many(self, content_ids: Sequence[str]) -> dict[str, dict[str, Any]]: ...


def is_visible_to(content: Mapping[str, Any], user_id: str) -> bool:
    """Content is usable when the user owns it or it is marked public."""

    owner = content.get("userId") or content.get("ownerId")
    return owner == user_id or bool(content.get("isPublic"))


def is_owned_by(content: Mapping[str, Any], user_id: str) -> bool:
    return (content.get("userId") or content.get("ownerId")) == user_id


def extract_count_from_aggregation(
    aggregation: Sequence[Any] | None,
) -> int:
    """Extracts the numeric count from Firestore aggregation results."""

    if not aggregation:
        return 0
    result = aggregation[0]
    if isinstance(result, Sequence) and not isinstance(result, (str, bytes)):
        # 新しいクライアントは [[AggregationResult]] の入れ子で返す
        result = result[0] if result else None
    if result is None:
        return 0
    count_value: Any | None = None
    aggregate_fields = getattr(result, "aggregate_fields", None)
    if isinstance(aggregate_fields, Mapping):
        count_value = aggregate_fields.get("count")
    if count_value is None and getattr(result, "alias", None) == "count":
        count_value = getattr(result, "value", None)
    return normalize_non_negative_int(count_value)
