"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Getting the current caller from a bearer token
- Role-based access control for the admin surface (fail closed)
"""
from dataclasses import dataclass
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from core.config import settings
from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import decode_access_token

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in settings.ADMIN_ROLES


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Get the current caller from the JWT bearer token.

    Raises UnauthorizedError if the token is missing, invalid or has no subject.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")

    return CurrentUser(id=str(user_id), role=str(payload.get("role") or "user"))


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin-only")
        def admin_endpoint(user: CurrentUser = Depends(require_role(["admin"]))):
            ...
    """
    def role_checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise ForbiddenError(f"Access denied. Required roles: {allowed_roles}")
        return current_user

    return role_checker


def require_admin(
    current_user: CurrentUser = Depends(require_role(settings.ADMIN_ROLES))
) -> CurrentUser:
    """Require admin or owner role."""
    return current_user
