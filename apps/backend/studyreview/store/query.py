"""Typed query descriptions translated onto Firestore queries.

フロー層は Firestore の Query オブジェクトを直接組み立てず、QuerySpec
（フィルタ・並び順・件数・カーソル）を渡す。これによりフェイククライアントでも
本番クライアントでも同じ組み立て処理を通る。
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

from google.cloud import firestore

from ..errors import ValidationError
from ..models.common import Page

T = TypeVar("T")

SUPPORTED_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "array_contains"})


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in SUPPORTED_OPERATORS:
            raise ValueError(f"unsupported operator: {self.op}")


@dataclass(frozen=True)
class Ordering:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class QuerySpec:
    """Immutable description of a single-collection query."""

    filters: tuple[Condition, ...] = field(default_factory=tuple)
    orderings: tuple[Ordering, ...] = field(default_factory=tuple)
    limit: int | None = None
    cursor: str | None = None

    def where(self, field_path: str, op: str, value: Any) -> "QuerySpec":
        return replace(self, filters=self.filters + (Condition(field_path, op, value),))

    def order_by(self, field_path: str, *, descending: bool = False) -> "QuerySpec":
        return replace(self, orderings=self.orderings + (Ordering(field_path, descending),))

    def with_limit(self, limit: int | None) -> "QuerySpec":
        return replace(self, limit=None if limit is None else max(0, int(limit)))

    def after(self, cursor: str | None) -> "QuerySpec":
        return replace(self, cursor=cursor or None)


def apply_query(collection: Any, spec: QuerySpec) -> Any:
    """Translate a QuerySpec onto a Firestore collection reference.

    カーソルはドキュメント ID で受け取り、スナップショットへ解決してから
    `start_after` に渡す。存在しない ID は不正なカーソルとして 400 にする。
    """

    query = collection
    for condition in spec.filters:
        query = query.where(condition.field, condition.op, condition.value)
    for ordering in spec.orderings:
        direction = firestore.Query.DESCENDING if ordering.descending else firestore.Query.ASCENDING
        query = query.order_by(ordering.field, direction=direction)
    if spec.cursor:
        snapshot = collection.document(spec.cursor).get()
        if not snapshot.exists:
            raise ValidationError("Invalid pagination cursor", details={"cursor": spec.cursor})
        query = query.start_after(snapshot)
    if spec.limit is not None:
        query = query.limit(spec.limit)
    return query


def fetch_page(
    collection: Any,
    spec: QuerySpec,
    parse: Callable[[Any], T],
) -> Page[T]:
    """Run the query and wrap the result in a Page.

    next_cursor は取得件数が limit と一致したときだけ最後のドキュメント ID を返す。
    """

    snapshots = list(apply_query(collection, spec).stream())
    items = [parse(snapshot) for snapshot in snapshots]
    next_cursor = None
    if spec.limit and snapshots and len(snapshots) == spec.limit:
        next_cursor = snapshots[-1].id
    return Page(items=items, next_cursor=next_cursor)


__all__ = [
    "Condition",
    "Ordering",
    "QuerySpec",
    "SUPPORTED_OPERATORS",
    "apply_query",
    "fetch_page",
]
