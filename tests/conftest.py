from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import user_record_repo
from app.main import app
from app.services import ai_client as ai_client_module
from app.services import token_service
from app.services.ai_client import AIBackendClient
from app.services.cache import cache_service

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_user_records() -> None:
    """Clear learner records between tests."""
    user_record_repo._store.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def healthy_ai_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    """Answer AI backend health checks without the network."""
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"status": "healthy"})
    )
    monkeypatch.setattr(
        ai_client_module,
        "ai_client",
        AIBackendClient("http://ai.test", transport=transport),
    )


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def other_token() -> str:
    """A second learner, for isolation checks."""
    return mint_token(username="other-user")
