"""Role-based access dependencies"""
import logging

from fastapi import Depends, HTTPException, status

from app.api.v1.auth import get_current_user
from app.models.user import ELEVATED_ROLES, User, UserRole

logger = logging.getLogger(__name__)


def require_role(*roles: UserRole):
    """
    Dependency factory: allow only users holding one of `roles`.

    Usage:
        current_user: User = Depends(require_role(UserRole.ADMIN))

    Raises:
        HTTPException: 403 before the route body runs
    """
    allowed = set(roles)

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            logger.warning(
                "Permission denied",
                extra={
                    "event_type": "permission_denied",
                    "user_id": current_user.id,
                    "role": getattr(current_user.role, "value", current_user.role),
                    "required_roles": sorted(r.value for r in allowed),
                },
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return dependency


def require_elevated():
    """Manager, admin or superadmin."""
    return require_role(*ELEVATED_ROLES)
