"""AI proxy tests.  The backend is faked with httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from app.services import ai_client as ai_client_module
from app.services.ai_client import (
    AIBackendClient,
    AIBackendError,
    QuizRequest,
    SummaryRequest,
    TranslationRequest,
)
from tests.conftest import auth

VIDEO = "https://cdn.example.com/v1.mp4"


def _backend(handler) -> AIBackendClient:
    return AIBackendClient(
        "http://ai.test", timeout_seconds=5, transport=httpx.MockTransport(handler)
    )


@pytest.fixture
def seen_requests(monkeypatch: pytest.MonkeyPatch) -> list[httpx.Request]:
    """Install a healthy fake backend and record what it receives."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        key = {
            "/quiz/generate": "quizzes",
            "/translate/generate": "translations",
            "/summary/generate": "summaries",
        }[request.url.path]
        return httpx.Response(200, json={"success": True, key: [{"video": VIDEO}]})

    monkeypatch.setattr(ai_client_module, "ai_client", _backend(handler))
    return seen


def test_quiz_proxy_requires_token(client: TestClient) -> None:
    resp = client.post("/v1/ai/quiz", json={"video_urls": [VIDEO]})
    assert resp.status_code == 401


def test_quiz_proxy_forwards_defaults(
    client: TestClient, token: str, seen_requests: list[httpx.Request]
) -> None:
    resp = client.post("/v1/ai/quiz", json={"video_urls": [VIDEO]}, headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["quizzes"] == [{"video": VIDEO}]

    sent = json.loads(seen_requests[0].content)
    assert sent == {
        "video_urls": [VIDEO],
        "num_questions": 3,
        "question_types": ["multiple_choice"],
    }


def test_translate_proxy(
    client: TestClient, token: str, seen_requests: list[httpx.Request]
) -> None:
    resp = client.post(
        "/v1/ai/translate",
        json={"video_urls": [VIDEO], "target_language": "fr"},
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert json.loads(seen_requests[0].content)["target_language"] == "fr"


def test_summary_proxy(
    client: TestClient, token: str, seen_requests: list[httpx.Request]
) -> None:
    resp = client.post(
        "/v1/ai/summary",
        json={"video_urls": [VIDEO], "summary_type": "outline"},
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert seen_requests[0].url.path == "/summary/generate"


def test_request_validation(
    client: TestClient, token: str, seen_requests: list[httpx.Request]
) -> None:
    bad_bodies = [
        ("/v1/ai/quiz", {"video_urls": []}),
        ("/v1/ai/quiz", {"video_urls": [VIDEO], "num_questions": 50}),
        ("/v1/ai/translate", {"video_urls": [VIDEO], "target_language": "xx"}),
        ("/v1/ai/summary", {"video_urls": [VIDEO], "max_length": 10}),
    ]
    for path, body in bad_bodies:
        assert client.post(path, json=body, headers=auth(token)).status_code == 422
    assert seen_requests == []


def test_backend_error_becomes_502(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        ai_client_module,
        "ai_client",
        _backend(lambda request: httpx.Response(500, text="model crashed")),
    )
    resp = client.post("/v1/ai/quiz", json={"video_urls": [VIDEO]}, headers=auth(token))
    assert resp.status_code == 502
    assert "API Error: 500 - model crashed" in resp.json()["detail"]


def test_unreachable_backend_becomes_502(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    monkeypatch.setattr(ai_client_module, "ai_client", _backend(handler))
    resp = client.post(
        "/v1/ai/summary", json={"video_urls": [VIDEO]}, headers=auth(token)
    )
    assert resp.status_code == 502


# ---- client-level behaviour ----


def test_client_rejects_unsuccessful_payload() -> None:
    client = _backend(lambda request: httpx.Response(200, json={"success": False}))
    with pytest.raises(AIBackendError, match="no quizzes"):
        asyncio.run(client.generate_quiz(QuizRequest(video_urls=[VIDEO])))


def test_client_rejects_non_json_body() -> None:
    client = _backend(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(AIBackendError, match="non-JSON"):
        asyncio.run(
            client.generate_translation(TranslationRequest(video_urls=[VIDEO]))
        )


def test_client_error_keeps_status_code() -> None:
    client = _backend(lambda request: httpx.Response(429, text="slow down"))
    with pytest.raises(AIBackendError) as exc_info:
        asyncio.run(client.generate_summary(SummaryRequest(video_urls=[VIDEO])))
    assert exc_info.value.status_code == 429


def test_client_counts_outcomes() -> None:
    labels = {"endpoint": "/health", "outcome": "ok"}
    before = REGISTRY.get_sample_value("ai_backend_requests_total", labels) or 0.0
    client = _backend(lambda request: httpx.Response(200, json={"status": "ok"}))
    assert asyncio.run(client.check_health()) == {"status": "ok"}
    after = REGISTRY.get_sample_value("ai_backend_requests_total", labels)
    assert after == before + 1
