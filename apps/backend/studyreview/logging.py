"""structlog setup for the review scheduling service.

出力は 1 行 1 JSON。復習メモ（notes）や回答本文は学習者の自由記述なので
値を一切残さず、認証系の値は先頭と末尾だけ残して突合できるようにする。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars
from .config import settings


_CREDENTIAL_KEYWORDS = ("token", "secret", "authorization", "password", "cookie")
# 学習者の自由記述。部分表示もしない
_FREE_TEXT_KEYWORDS = ("notes", "selected_answer", "selectedanswer")
_MASK_PLACEHOLDER = "***"
_TRACE_CONTEXT_KEYS = ("trace", "spanId", "trace_sampled")


def _mask_credential(raw: object) -> str:
    """Keep the first and last four characters of long credentials, hide the rest."""

    text = "" if raw is None else str(raw).strip()
    if len(text) <= 8:
        return _MASK_PLACEHOLDER
    return f"{text[:4]}…{text[-4:]}"


def _mask_for_key(key: str, value: Any) -> Any:
    lowered = key.lower()
    if any(keyword in lowered for keyword in _FREE_TEXT_KEYWORDS):
        return _MASK_PLACEHOLDER
    if any(keyword in lowered for keyword in _CREDENTIAL_KEYWORDS):
        return _mask_credential(value)
    return value


def _sanitize_event_dict(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask review notes and credentials, descending into nested dicts (headers etc.)."""

    def _sanitize(key: str, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): _sanitize(str(k), v) for k, v in value.items()}
        return _mask_for_key(key, value)

    for key, value in list(event_dict.items()):
        event_dict[key] = _sanitize(str(key), value)
    return event_dict


def _merge_trace_context(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    # ミドルウェアが contextvars に積んだ Cloud Trace 情報をフロー層のログにも付ける
    context = structlog_contextvars.get_contextvars()
    for key in _TRACE_CONTEXT_KEYS:
        if key in context and key not in event_dict:
            event_dict[key] = context[key]
    return event_dict


def configure_logging() -> None:
    """Route stdlib logging and structlog through one JSON renderer.

    SENTRY_DSN があれば ERROR 以上のログを Sentry イベントとして送る。
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog_contextvars.merge_contextvars,
            _merge_trace_context,
            _sanitize_event_dict,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

    if settings.sentry_dsn:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        )


logger = structlog.get_logger()
