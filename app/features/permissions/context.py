"""
Per-request actor context.
"""
from dataclasses import dataclass
from typing import Optional

from app.features.permissions.registry import ADMIN_ROLE


@dataclass(frozen=True)
class ActorContext:
    """The authenticated caller, rebuilt from session state on every request."""
    id: str
    role: str
    active_organization_id: Optional[str] = None
    
    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE
