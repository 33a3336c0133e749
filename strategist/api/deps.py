# =============================================================================
# API Dependencies — Authentication & Orchestration Services
# =============================================================================
#
# get_current_user()            — resolve the Bearer token to a RequestUser
# get_orchestration_services()  — collaborators for one orchestration run
#
# DESIGN DECISION: FastAPI dependencies (not middleware) for auth. Each
# endpoint opts in via Depends(...), and tests swap either dependency
# through app.dependency_overrides.
#
# DESIGN DECISION: HTTPBearer(auto_error=False) so a missing header is not
# an error while auth is disabled. With auth disabled every request acts as
# the configured default user.
# =============================================================================

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from strategist.agents.orchestrator import OrchestrationServices, default_services
from strategist.agents.schemas import RequestUser
from strategist.config import settings
from strategist.db.engine import get_async_session
from strategist.db.models import ApiKey
from strategist.services.auth import ApiKeyRejected, hash_api_key, validate_api_key

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI docs (shows "Authorize" button in Swagger UI)
_bearer_scheme = HTTPBearer(auto_error=False)


def default_user() -> RequestUser:
    return RequestUser(
        email=settings.default_user_email,
        full_name=settings.default_user_name,
        role=settings.default_user_role,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> RequestUser:
    """
    Raises:
        HTTPException 401: Missing or unknown API key
        HTTPException 403: Key inactive, expired or without 'orchestrate' scope
    """
    if not settings.auth_enabled:
        return default_user()

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide 'Authorization: Bearer <key>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    key_hash = hash_api_key(credentials.credentials)
    result = await session.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
    api_key = result.scalar_one_or_none()

    if api_key is None:
        logger.warning("Rejected unknown API key")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = validate_api_key(api_key)
    except ApiKeyRejected as e:
        logger.warning("Rejected API key %s: %s", api_key.key_prefix, e.reason)
        raise HTTPException(status_code=403, detail=e.reason) from e

    api_key.last_used_at = datetime.now(UTC)
    return user


def get_orchestration_services() -> OrchestrationServices:
    """
    Raises:
        HTTPException 503: No LLM provider is configured.
    """
    try:
        return default_services()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
