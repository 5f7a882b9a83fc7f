from __future__ import annotations

import string
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from .config import settings
from .logging import logger
from .metrics import registry

__all__ = [
    "AccessLogAndMetricsMiddleware",
    "RequestIDMiddleware",
    "parse_cloud_trace_header",
]

_REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 128


def _accept_request_id(raw: str | None) -> str | None:
    """Reuse an upstream request id only when it is short printable ASCII."""

    value = (raw or "").strip()
    if not value or len(value) > _MAX_REQUEST_ID_LENGTH:
        return None
    if any(ch not in string.printable or ch in "\r\n\t " for ch in value):
        return None
    return value


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID to each incoming request and expose it in headers.

    - Sets `request.state.request_id`
    - Adds `X-Request-ID` to the response headers
    - 上流（ロードバランサ等）が付与した ID があればそれを引き継ぐ
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        request_id = _accept_request_id(request.headers.get(_REQUEST_ID_HEADER)) or str(uuid.uuid4())
        request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog_contextvars.unbind_contextvars("request_id")
        response.headers[_REQUEST_ID_HEADER] = request_id
        return response


def parse_cloud_trace_header(raw_header: str | None) -> dict[str, object]:
    """Parse `X-Cloud-Trace-Context` and shape it for Cloud Logging.

    なぜ: Cloud Run のリクエストログとアプリケーションログを関連付けるためには、
    `trace`/`spanId`/`trace_sampled` をログに含める必要がある。
    """

    if not raw_header or not settings.gcp_project_id:
        return {}

    trace_span_part, _, option_part = raw_header.partition(";")
    trace_id, separator, span_part = trace_span_part.partition("/")
    if not separator or not trace_id:
        return {}

    trace_id = trace_id.strip()
    if len(trace_id) != 32 or any(ch not in string.hexdigits for ch in trace_id):
        return {}

    span_id: str | None = None
    cleaned_span = span_part.strip()
    if cleaned_span:
        try:
            # Cloud Trace の spanId は 64bit 整数。桁あふれや文字列混入を避ける。
            span_int = int(cleaned_span, 10)
            if 0 <= span_int < 2**64:
                span_id = str(span_int)
        except ValueError:
            span_id = None

    trace_sampled = False
    if option_part:
        for opt in option_part.split(";"):
            key, _, value = opt.partition("=")
            if key.strip() == "o":
                trace_sampled = value.strip() == "1"

    trace_field = f"projects/{settings.gcp_project_id}/traces/{trace_id}"
    trace_context: dict[str, object] = {"trace": trace_field, "trace_sampled": trace_sampled}
    if span_id is not None:
        trace_context["spanId"] = span_id
    return trace_context


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or request.url.path


class AccessLogAndMetricsMiddleware(BaseHTTPMiddleware):
    """Emit structured request logs and capture latency/metrics for each call.

    なぜ: 全リクエストに `request_id` とユーザー ID を付けて構造化ログへ残し、
    ルート単位の遅延・エラー件数をメトリクスへ記録することで、復習 API の
    劣化をすぐに追跡できるようにする。
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        start = time.perf_counter()
        method = request.method
        trace_log_fields = parse_cloud_trace_header(request.headers.get("x-cloud-trace-context"))
        if trace_log_fields:
            structlog_contextvars.bind_contextvars(**trace_log_fields)
        is_error = False
        status_code: int | None = None
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            is_error = True
            status_code = 500
            error_type = exc.__class__.__name__
            raise
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            route = _route_template(request)
            registry.record(route, latency_ms, status_code=status_code, is_error=is_error)
            # Cloud Logging で失敗リクエストを拾えるよう、エラー時は severity=ERROR にする
            log_method = logger.error if is_error else logger.info
            log_method(
                "request_complete",
                path=request.url.path,
                route=route,
                method=method,
                status_code=status_code,
                latency_ms=round(latency_ms, 2),
                is_error=is_error,
                error_type=error_type,
                request_id=getattr(request.state, "request_id", None),
                user_id=getattr(request.state, "user_id", None),
            )
            if trace_log_fields:
                structlog_contextvars.unbind_contextvars(*trace_log_fields.keys())
