"""ID 生成ユーティリティ。

Firestore のドキュメント ID は `/` を含められないため、自動採番は UUID の
hex だけで構成する。インタラクションは (user, item) ごとに 1 件なので、
ID を決定的に組み立てて重複作成を防ぐ。
"""

from __future__ import annotations

import uuid

from .errors import ValidationError


def generate_document_id() -> str:
    """ProgrammedReview / UserResponse の新規 ID を生成する。"""

    return uuid.uuid4().hex


def interaction_document_id(user_id: str, item_id: str) -> str:
    """Build the deterministic `{userId}_{itemId}` id of an interaction record."""

    user = (user_id or "").strip()
    item = (item_id or "").strip()
    if not user or not item:
        raise ValidationError("userId and itemId are required")
    if "/" in user or "/" in item:
        raise ValidationError(
            "userId and itemId must not contain '/'",
            details={"userId": user, "itemId": item},
        )
    return f"{user}_{item}"
