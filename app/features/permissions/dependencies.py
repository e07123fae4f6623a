"""
FastAPI dependencies for route protection.

Routes declare the operation they perform; require_operation() looks it up in
OPERATIONS when the route module is imported, so a typo fails at startup
instead of at request time.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.context import ActorContext
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.guard import get_operation
from app.features.users.dependencies import get_current_actor


async def get_engine(db: Annotated[AsyncSession, Depends(get_db)]) -> AuthorizationEngine:
    """Authorization engine bound to the request's database session."""
    return AuthorizationEngine.from_session(db)


def require_operation(name: str):
    """
    FastAPI dependency to authorize a named operation.
    
    Usage:
        @router.post("/{user_id}/ban")
        async def ban_user(
            user_id: str,
            actor: ActorContext = Depends(require_operation("users.ban"))
        ):
            # Actor holds user:ban and, unless admin, has an active organization
            pass
    
    Args:
        name: Key in OPERATIONS
    
    Returns:
        Dependency function that returns the current actor once authorized
    
    Raises:
        KeyError: unknown operation name, at route definition time
    """
    get_operation(name)
    
    async def operation_dependency(
        actor: Annotated[ActorContext, Depends(get_current_actor)],
        engine: Annotated[AuthorizationEngine, Depends(get_engine)]
    ) -> ActorContext:
        await engine.authorize_operation(name, actor)
        return actor
    
    return operation_dependency
