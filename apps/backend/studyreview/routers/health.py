from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..metrics import registry

router = APIRouter(tags=["health"])


@router.get("/healthz")
def health_check() -> dict[str, str]:
    """Simple health check endpoint.

    ライブネス/レディネス確認用の簡易エンドポイント。Firestore には触れない。
    """
    return {"status": "ok"}


@router.get("/metrics")
def metrics() -> JSONResponse:
    """Return in-memory metrics snapshot.

    p95/エラー件数/ステータス別件数をルート別に返す簡易メトリクス。
    """
    return JSONResponse(content={"routes": registry.snapshot()})
