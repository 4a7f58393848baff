"""
FastAPI アプリケーションのメインエントリポイント
"""
import logging
from datetime import datetime
from functools import lru_cache

import pytz
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth import get_current_user
from .cache import create_store
from .cost import CostEstimator
from .errors import InsightError, ValidationError
from .formatter import EntryFormatter
from .freshness import FreshnessPolicy
from .insight_client import InsightClient
from .orchestrator import InsightOrchestrator
from .settings import Settings

settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Journal Insights API", version="1.0.0")

ALLOWED_ORIGINS = settings.allowed_origins
CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Credentials": "true",
}


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """
    手動 CORS ミドルウェア
    すべてのレスポンス（エラーを含む）に CORS ヘッダーを追加
    """
    origin = request.headers.get("origin")

    if request.method == "OPTIONS":
        # プリフライトリクエスト
        if origin in ALLOWED_ORIGINS:
            return JSONResponse(
                content={},
                status_code=200,
                headers={**CORS_HEADERS, "Access-Control-Allow-Origin": origin,
                         "Access-Control-Max-Age": "3600"},
            )
        return JSONResponse(content={"error": "Forbidden"}, status_code=403)

    response = await call_next(request)

    # モバイルアプリは Origin ヘッダーを送らないため、ある場合のみ付与
    if origin in ALLOWED_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value

    return response


@app.exception_handler(InsightError)
async def insight_error_handler(request: Request, exc: InsightError):
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError(ValidationError.INVALID_JSON, "Invalid JSON body")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "Failed to generate insights. Please try again.",
        },
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> InsightOrchestrator:
    """キャッシュストアと Bedrock クライアントを組み立てる（初回のみ）"""
    client = InsightClient(
        model_id=settings.model_id,
        cost_estimator=CostEstimator(),
        timeout_seconds=settings.bedrock_timeout_seconds,
        region_name=settings.aws_region,
    )
    return InsightOrchestrator(
        store=create_store(settings),
        client=client,
        formatter=EntryFormatter(
            min_entries=settings.min_entries,
            max_entries=settings.max_entries,
            max_content_length=settings.max_content_length,
        ),
        freshness=FreshnessPolicy(
            ttl_hours=settings.cache_ttl_hours,
            stale_hours=settings.cache_stale_hours,
        ),
    )


@app.get("/health")
def health_check():
    """ヘルスチェックエンドポイント"""
    return {"status": "ok", "timestamp": datetime.now(pytz.utc).isoformat()}


@app.post("/insights")
@app.post("/generate-insights")
def generate_insights(
    payload: dict,
    user_id: str = Depends(get_current_user),
    orchestrator: InsightOrchestrator = Depends(get_orchestrator),
):
    """
    日記エントリからインサイトを生成

    - 認証必須
    - 7日以内のキャッシュがあればそれを返す（forceRefresh で再生成）
    """
    force_refresh = payload.get("forceRefresh", payload.get("force_refresh", False)) is True
    date_range = None
    if payload.get("dateRangeStart") or payload.get("dateRangeEnd"):
        date_range = (payload.get("dateRangeStart"), payload.get("dateRangeEnd"))

    response = orchestrator.handle(
        user_id,
        payload.get("entries"),
        force_refresh=force_refresh,
        date_range=date_range,
    )
    return response.to_dict()
