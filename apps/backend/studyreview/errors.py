"""Domain exceptions raised by the review scheduling flows.

フロー層は HTTP を知らないため、ここで定義した例外だけを送出する。
HTTP ステータスへの変換は ``main`` の例外ハンドラが ``status_code`` /
``error_code`` を読み取って一括で行う。
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base exception carrying an HTTP status and a machine readable code."""

    status_code: int = 500
    error_code: str = "service_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details


class ValidationError(ServiceError):
    """Malformed input: quality out of range, past dates, missing recurrence fields."""

    status_code = 400
    error_code = "validation_error"


class InvalidQuality(ValidationError):
    error_code = "invalid_quality"

    def __init__(self, quality: Any) -> None:
        super().__init__(
            "Review quality must be an integer between 0 and 5",
            details={"quality": quality},
        )


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class OwnershipError(ServiceError):
    """The caller does not own (or may not access) the resource."""

    status_code = 403
    error_code = "forbidden"


class UserMismatch(OwnershipError):
    error_code = "user_mismatch"


class ConflictError(ServiceError):
    """A PENDING programmed review already exists for the same content and day."""

    status_code = 409
    error_code = "conflict"


class SchedulingError(ServiceError):
    status_code = 422
    error_code = "scheduling_error"


class MissingSchedule(SchedulingError):
    """Question review requested but no programmed review backs the response."""

    error_code = "missing_schedule"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidQuality",
    "NotFoundError",
    "OwnershipError",
    "UserMismatch",
    "ConflictError",
    "SchedulingError",
    "MissingSchedule",
]
