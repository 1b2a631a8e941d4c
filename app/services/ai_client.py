"""Client for the external AI generation backend.

The backend is stateless: each POST takes a list of video URLs and returns
generated quizzes, translations or summaries.  We only consume its
request/response contract:

  POST /quiz/generate       -> {"success": true, "quizzes": [...]}
  POST /translate/generate  -> {"success": true, "translations": [...]}
  POST /summary/generate    -> {"success": true, "summaries": [...]}
  GET  /health
"""

from __future__ import annotations

import logging
import time
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field, field_validator

from app.core.config import SETTINGS
from app.core.metrics import AI_BACKEND_DURATION, AI_BACKEND_REQUESTS

logger = logging.getLogger(__name__)

LANGUAGE_CODES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "pt": "Portuguese",
    "it": "Italian",
    "ru": "Russian",
    "ar": "Arabic",
    "hi": "Hindi",
    "nl": "Dutch",
}

QuestionType = Literal["multiple_choice", "true_false", "short_answer"]
SummaryType = Literal["notes", "summary", "outline", "key_points"]


class AIBackendError(Exception):
    """The AI backend was unreachable or answered with an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QuizRequest(BaseModel):
    video_urls: list[str] = Field(min_length=1)
    num_questions: int = Field(default=3, ge=1, le=20)
    question_types: list[QuestionType] = Field(
        default_factory=lambda: ["multiple_choice"]
    )


class TranslationRequest(BaseModel):
    video_urls: list[str] = Field(min_length=1)
    target_language: str = "es"
    include_timestamps: bool = False

    @field_validator("target_language")
    @classmethod
    def _known_language(cls, value: str) -> str:
        if value not in LANGUAGE_CODES:
            raise ValueError(
                f"target_language must be one of {', '.join(LANGUAGE_CODES)}"
            )
        return value


class SummaryRequest(BaseModel):
    video_urls: list[str] = Field(min_length=1)
    summary_type: SummaryType = "notes"
    max_length: int = Field(default=500, ge=50, le=5000)


class AIBackendClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        # tests pass an httpx.MockTransport here
        self._transport = transport

    async def generate_quiz(self, request: QuizRequest) -> dict[str, Any]:
        return await self._generate("/quiz/generate", request, "quizzes")

    async def generate_translation(
        self, request: TranslationRequest
    ) -> dict[str, Any]:
        return await self._generate("/translate/generate", request, "translations")

    async def generate_summary(self, request: SummaryRequest) -> dict[str, Any]:
        return await self._generate("/summary/generate", request, "summaries")

    async def check_health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def _generate(
        self, path: str, request: BaseModel, items_key: str
    ) -> dict[str, Any]:
        data = await self._request("POST", path, json=request.model_dump())
        ok = isinstance(data, dict) and data.get("success") and data.get(items_key)
        if not ok:
            raise AIBackendError(f"AI backend returned no {items_key} for {path}")
        return data

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        start = time.monotonic()
        outcome = "error"
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json)
            if response.status_code >= 400:
                logger.warning(
                    "AI backend %s %s -> %d", method, path, response.status_code
                )
                raise AIBackendError(
                    f"API Error: {response.status_code} - {response.text}",
                    status_code=response.status_code,
                )
            try:
                data = response.json()
            except ValueError:
                raise AIBackendError(f"AI backend sent non-JSON for {path}") from None
            outcome = "ok"
            return data
        except httpx.HTTPError as exc:
            logger.warning("AI backend %s %s failed: %s", method, path, exc)
            raise AIBackendError(f"AI backend unreachable: {exc}") from exc
        finally:
            AI_BACKEND_REQUESTS.labels(endpoint=path, outcome=outcome).inc()
            AI_BACKEND_DURATION.labels(endpoint=path).observe(time.monotonic() - start)


ai_client = AIBackendClient(
    SETTINGS.ai_backend_url,
    timeout_seconds=SETTINGS.ai_backend_timeout_seconds,
)
