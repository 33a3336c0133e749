# =============================================================================
# Auth Service — API Key Generation, Hashing & Validation
# =============================================================================
#
# Pure functions for API key management. No FastAPI dependency, so this
# module is shared by the auth dependency, provisioning scripts and tests.
#
# DESIGN DECISION: SHA-256 hashing (not bcrypt). Keys are 32-byte random
# tokens; a fast deterministic digest is enough for high-entropy secrets
# and allows a direct indexed lookup by hash.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from strategist.agents.schemas import RequestUser

if TYPE_CHECKING:
    from strategist.db.models import ApiKey

ORCHESTRATE_SCOPE = "orchestrate"


class ApiKeyRejected(Exception):
    """The key exists but may not be used. `reason` is safe to show callers."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def generate_api_key() -> tuple[str, str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_prefix, key_hash):
        - raw_key: Full key to return to the user (only visible once)
        - key_prefix: First 8 chars for identification in logs
        - key_hash: SHA-256 hex digest for storage in the database
    """
    raw_key = f"sk-{secrets.token_hex(32)}"
    return raw_key, raw_key[:8], hash_api_key(raw_key)


def hash_api_key(raw_key: str) -> str:
    """Hash an API key using SHA-256. Returns 64-char hex digest."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def has_scope(scopes: list[str] | None, required_scope: str) -> bool:
    """Null or empty scopes grant everything."""
    return not scopes or required_scope in scopes


def validate_api_key(
    api_key: ApiKey,
    required_scope: str = ORCHESTRATE_SCOPE,
    now: datetime | None = None,
) -> RequestUser:
    """
    Resolve a stored key to the user it acts for.

    Raises:
        ApiKeyRejected: Key is inactive, expired or lacks the scope.
    """
    now = now or datetime.now(UTC)
    if not api_key.is_active:
        raise ApiKeyRejected("API key has been deactivated.")
    if api_key.expires_at and api_key.expires_at < now:
        raise ApiKeyRejected("API key has expired.")
    if not has_scope(api_key.scopes, required_scope):
        raise ApiKeyRejected(f"API key does not have '{required_scope}' scope.")
    return RequestUser(
        email=api_key.user_email,
        full_name=api_key.user_full_name,
        role=api_key.user_role,
    )
