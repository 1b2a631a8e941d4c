"""Health and readiness endpoints.

  /health  liveness plus dependency status; always 200, ``status`` says
           "ok" or "degraded"
  /ready   503 when the learner record store is configured but unreachable

Redis only backs the watchlist cache and the AI backend only serves the
/v1/ai proxy, so losing either degrades /health but never fails readiness.
The database holds learner records, so it does.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from app.db import engine as db_engine
from app.db import redis as db_redis
from app.services import ai_client as ai_client_module
from app.services.ai_client import AIBackendError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if db_redis.redis_pool is None:
        return "not_configured"
    try:
        await db_redis.redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis ping failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        async with db_engine.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_ai_backend() -> str:
    try:
        await ai_client_module.ai_client.check_health()
    except AIBackendError:
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {
        "redis": await _check_redis(),
        "database": await _check_database(),
        "ai_backend": await _check_ai_backend(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
