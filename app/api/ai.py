"""Proxies to the AI generation backend.

The watchlist service stores nothing here; it authenticates the learner,
validates the request and forwards it.  Backend failures surface as 502.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import require_user
from app.models.principal import Principal
from app.services import ai_client as ai_client_module
from app.services.ai_client import (
    AIBackendError,
    QuizRequest,
    SummaryRequest,
    TranslationRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ai", tags=["ai"])


def _bad_gateway(exc: AIBackendError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.post("/quiz")
async def generate_quiz(
    body: QuizRequest,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict[str, Any]:
    logger.info(
        "Quiz generation user=%s videos=%d", principal.user_id, len(body.video_urls)
    )
    try:
        return await ai_client_module.ai_client.generate_quiz(body)
    except AIBackendError as exc:
        raise _bad_gateway(exc) from None


@router.post("/translate")
async def generate_translation(
    body: TranslationRequest,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict[str, Any]:
    logger.info(
        "Translation user=%s language=%s", principal.user_id, body.target_language
    )
    try:
        return await ai_client_module.ai_client.generate_translation(body)
    except AIBackendError as exc:
        raise _bad_gateway(exc) from None


@router.post("/summary")
async def generate_summary(
    body: SummaryRequest,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict[str, Any]:
    logger.info("Summary user=%s type=%s", principal.user_id, body.summary_type)
    try:
        return await ai_client_module.ai_client.generate_summary(body)
    except AIBackendError as exc:
        raise _bad_gateway(exc) from None
