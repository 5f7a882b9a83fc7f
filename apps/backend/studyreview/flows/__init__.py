"""Flow 層の共通ユーティリティ。

各 Flow はストアと時計を注入で受け取り、HTTP には依存しない。
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import pydantic

from ..config import settings
from ..errors import ValidationError
from ..models.common import CamelModel, utc_now
from ..store.common import normalize_non_negative_int

Clock = Callable[[], datetime]
ModelT = TypeVar("ModelT", bound=CamelModel)


def resolve_limit(limit: int | None, default: int | None = None) -> int:
    """Clamp a requested page size into [1, settings.max_page_limit]."""

    fallback = default if default is not None else settings.default_due_limit
    if limit is None:
        return min(fallback, settings.max_page_limit)
    value = normalize_non_negative_int(limit) or fallback
    return min(value, settings.max_page_limit)


def merge_validated(current: ModelT, update: dict[str, Any]) -> ModelT:
    """Apply ``update`` to ``current`` and re-validate the merged record.

    なぜ: `model_copy(update=...)` は検証を通らないため、必須項目を null で
    上書きすると保存後に読み戻せないドキュメントができてしまう。
    """

    try:
        return type(current).model_validate({**current.model_dump(), **update})
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Update would leave the record invalid",
            details={"fields": sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})},
        ) from exc


__all__ = ["Clock", "merge_validated", "resolve_limit", "utc_now"]
