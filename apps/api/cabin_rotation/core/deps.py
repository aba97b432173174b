"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from cabin_rotation.core.security import decode_session_token
from cabin_rotation.db.enums import Role
from cabin_rotation.db.session import SessionLocal
from cabin_rotation.schemas.auth import TokenPayload, UserSession


# Cookie and header names
COOKIE_NAME = "cabin_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _session_token(request: Request) -> str | None:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def get_current_session(request: Request) -> UserSession:
    """
    Get full session context: user_id, org_id, role, family group.

    This is the PRIMARY auth dependency for most endpoints. The token comes
    from the session cookie or an `Authorization: Bearer` header.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Unknown role
    """
    token = _session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = TokenPayload(**decode_session_token(token))
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(payload.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{payload.role}'. Contact administrator."
        )

    return UserSession(
        user_id=payload.sub,
        org_id=payload.org_id,
        role=Role(payload.role),
        family_group_id=payload.family_group_id,
    )


def require_roles(allowed_roles):
    """
    Dependency factory for role-based authorization.

    Uses enum values (not strings) to prevent drift.

    Usage:
        @router.post("/reset", dependencies=[Depends(require_roles([Role.ADMIN]))])
    """
    def dependency(session: UserSession = Depends(get_current_session)) -> UserSession:
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{session.role.value}' not authorized for this action"
            )
        return session
    return dependency


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PUT, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )
