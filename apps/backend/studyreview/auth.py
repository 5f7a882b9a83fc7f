"""Caller identity resolution.

認証そのものは外部のプラットフォームが担い、このサービスには検証済みの
ユーザー ID がヘッダで渡される前提とする。ヘッダ名は USER_ID_HEADER で変更できる。
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from .config import settings
from .logging import logger


def get_current_user(request: Request) -> str:
    """Return the authenticated user id or raise 401 when the header is absent."""

    user_id = (request.headers.get(settings.user_id_header) or "").strip()
    if not user_id:
        logger.info(
            "auth_missing_user_header",
            path=request.url.path,
            header=settings.user_id_header,
            request_id=getattr(request.state, "request_id", None),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    request.state.user_id = user_id
    return user_id
