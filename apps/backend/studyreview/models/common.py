from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def _plain(value: Any) -> Any:
    """Enum を Firestore が直接エンコードできる素の値へ落とす。"""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


class CamelModel(BaseModel):
    """Base model whose wire/Firestore field names are camelCase.

    Firestore 上の既存ドキュメントは camelCase のフィールド名で保存されて
    いるため、Python 側は snake_case のまま alias で橋渡しする。
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Serialise into a Firestore payload, dropping unset optional fields."""

        return _plain(self.model_dump(by_alias=True, exclude_none=True))


class Page(CamelModel, Generic[T]):
    """One page of query results plus the cursor for the next page."""

    items: list[T]
    next_cursor: str | None = None


def to_utc(value: datetime) -> datetime:
    """Normalise a datetime to timezone-aware UTC (naive values are taken as UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)
