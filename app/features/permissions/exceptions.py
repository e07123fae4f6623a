"""
Authorization errors.

Every denial is an AuthorizationError subclass carrying a stable code and the
HTTP status the request layer answers with. AuthorizationLookupError is kept
outside that hierarchy: it means the engine could not reach a decision, not that
it denied one.
"""
from typing import Any, Dict, List, Optional


class AuthorizationError(Exception):
    """Base class for authorization denials."""
    code = "forbidden"
    status_code = 403
    default_message = "Not authorized"
    
    def __init__(self, message: Optional[str] = None, target_user_id: Optional[str] = None):
        self.message = message or self.default_message
        self.target_user_id = target_user_id
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.target_user_id is not None:
            body["target_user_id"] = self.target_user_id
        return body


class AuthenticationRequired(AuthorizationError):
    code = "authentication_required"
    status_code = 401
    default_message = "Authentication required"


class PermissionDenied(AuthorizationError):
    code = "permission_denied"
    default_message = "Missing required permissions"
    
    def __init__(
        self,
        missing: List[str],
        message: Optional[str] = None,
        target_user_id: Optional[str] = None,
    ):
        self.missing = list(missing)
        super().__init__(
            message or f"Missing required permissions: {', '.join(self.missing)}",
            target_user_id=target_user_id,
        )
    
    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["missing"] = self.missing
        return body


class OrgScopeRequired(AuthorizationError):
    code = "organization_required"
    default_message = "An active organization is required for this action"


class NotInOrganization(AuthorizationError):
    code = "not_in_organization"
    default_message = "Target user is not a member of the active organization"


class RoleEscalationDenied(AuthorizationError):
    code = "role_escalation_denied"
    default_message = "Cannot act on a role at or above your own"


class SelfActionDenied(AuthorizationError):
    code = "self_action_denied"
    default_message = "This action cannot be performed on your own account"


class TargetNotFound(AuthorizationError):
    code = "target_not_found"
    status_code = 404
    default_message = "User not found"


class AuthorizationLookupError(Exception):
    """A catalog, membership or user lookup failed; no decision was made."""
    code = "authorization_lookup_failed"
    status_code = 503
    
    def __init__(self, message: str = "Authorization data is unavailable"):
        self.message = message
        super().__init__(message)
    
    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}
