"""Security utilities for JWT session tokens.

Tokens are issued by the external auth service; this API only verifies them
and trusts the membership claims they carry (org, role, family group).
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from cabin_rotation.core.config import settings


def create_session_token(
    user_id: UUID,
    org_id: UUID,
    role: str,
    family_group_id: UUID | None = None,
) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET). Used by the CLI and tests;
    production tokens come from the auth service with the same claims.
    """
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "role": role,
        "family_group_id": str(family_group_id) if family_group_id else None,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore[misc]
