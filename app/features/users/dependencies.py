"""
FastAPI dependencies for authentication.

The bearer token is an opaque session token issued by the auth service; it is
looked up in the sessions table and turned into an ActorContext.
"""
from typing import Annotated, Optional
from datetime import datetime, timezone
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.context import ActorContext
from app.features.permissions.exceptions import AuthenticationRequired, AuthorizationLookupError
from app.features.users.models import User, UserSession
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_ban_active(user: User, now: Optional[datetime] = None) -> bool:
    if not user.banned:
        return False
    if user.ban_expires is None:
        return True
    return as_utc(user.ban_expires) > (now or datetime.now(timezone.utc))


async def get_current_session(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> UserSession:
    """
    Resolve the unexpired session behind the bearer token.
    
    Raises:
        AuthenticationRequired: missing, unknown or expired token, or banned user
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired()
    
    now = datetime.now(timezone.utc)
    stmt = select(UserSession).where(
        UserSession.token == credentials.credentials,
        UserSession.expires_at > now,
    )
    try:
        session = (await db.execute(stmt)).scalar_one_or_none()
    except SQLAlchemyError as e:
        log.error(f"Session lookup failed: {e}")
        raise AuthorizationLookupError("Could not load session") from e
    
    if session is None:
        log.debug("Rejected unknown or expired session token")
        raise AuthenticationRequired("Session is invalid or expired")
    
    if is_ban_active(session.user, now):
        log.info(f"Rejected session of banned user {session.user_id}")
        raise AuthenticationRequired("User is banned")
    
    return session


async def get_current_actor(
    session: Annotated[UserSession, Depends(get_current_session)]
) -> ActorContext:
    """
    Build the ActorContext for the request.
    
    Usage:
        @router.get("/whoami")
        async def whoami(actor: ActorContext = Depends(get_current_actor)):
            return {"id": actor.id, "role": actor.role}
    """
    return ActorContext(
        id=session.user_id,
        role=session.user.role,
        active_organization_id=session.active_organization_id,
    )


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
