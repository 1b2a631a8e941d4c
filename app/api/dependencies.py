from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.core.config import SETTINGS
from app.db.engine import async_session_factory, get_async_session
from app.middleware.request_context import user_id_var
from app.models.principal import Principal
from app.repos.pg_user_record_repo import PgUserRecordRepo
from app.repos.user_record_repo import InMemoryUserRecordRepo
from app.services import token_service
from app.services.cache import cache_service
from app.services.watchlist_service import WatchlistService

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# Used when DATABASE_URL is not configured (dev, tests).
user_record_repo = InMemoryUserRecordRepo()


async def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Validate the bearer token and return the learner behind it."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    user_id_var.set(principal.user_id)
    return principal


async def get_watchlist_service() -> AsyncGenerator[WatchlistService, None]:
    """Request-scoped WatchlistService over the configured record store."""
    if async_session_factory is None:
        yield WatchlistService(
            user_record_repo,
            cache_service,
            cache_ttl_seconds=SETTINGS.watchlist_cache_ttl_seconds,
        )
        return

    async for session in get_async_session():
        yield WatchlistService(
            PgUserRecordRepo(session),
            cache_service,
            cache_ttl_seconds=SETTINGS.watchlist_cache_ttl_seconds,
        )
