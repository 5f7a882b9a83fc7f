from __future__ import annotations

import inspect
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import settings
from .errors import ServiceError
from .logging import configure_logging, logger
from .middleware import AccessLogAndMetricsMiddleware, RequestIDMiddleware
from .routers import flashcards, health, programmed_reviews, question_responses


# uvicorn のバージョンによって引数名が異なる
_PROXY_MIDDLEWARE_PARAM = (
    "forwarded_allow_ips"
    if "forwarded_allow_ips" in inspect.signature(ProxyHeadersMiddleware.__init__).parameters
    else "trusted_hosts"
)


def _error_body(error: str, message: str, details: Any = None) -> dict[str, Any]:
    return {"error": error, "message": message, "details": details}


async def _handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
    """Translate domain exceptions raised by flows into JSON responses."""

    log_method = logger.error if exc.status_code >= 500 else logger.info
    log_method(
        "service_error",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
        error_message=exc.message,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.error_code, exc.message, exc.details),
    )


_HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Keep framework-raised HTTP errors (401 from auth, unknown routes) in the same shape."""

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(_HTTP_ERROR_CODES.get(exc.status_code, "http_error"), str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies/params with the same shape as ValidationError."""

    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=_error_body("validation_error", "Request validation failed", details),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log with stack trace and hide internals from clients."""

    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        error_class=exc.__class__.__name__,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "Internal server error"),
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    app = FastAPI(title="Study Review API", version="0.1.0")

    configured_origins = list(settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]

    # なぜ: ワイルドカード許可時は資格情報を無効化し、明示設定時のみ許可する。
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Starlette では後から追加したミドルウェアが外側で実行される。
    # RequestID → AccessLog の順に内側へ入り、AccessLog は採番済みの ID を記録する。
    app.add_middleware(AccessLogAndMetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)
    # Cloud Run のロードバランサ越しでも client IP / scheme を正しく復元する
    app.add_middleware(
        ProxyHeadersMiddleware,
        **{_PROXY_MIDDLEWARE_PARAM: list(settings.trusted_proxy_ips) or ["127.0.0.1"]},
    )

    app.add_exception_handler(ServiceError, _handle_service_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected_error)

    app.include_router(health.router)
    app.include_router(flashcards.router, prefix="/api/flashcards")
    app.include_router(programmed_reviews.router, prefix="/api/programmed-reviews")
    app.include_router(question_responses.router, prefix="/api/question-responses")

    logger.info("app_created", environment=settings.environment)
    return app


app = create_app()
