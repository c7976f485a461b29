"""Authentication dependencies (bearer tokens issued by the tenant/auth layer)"""
import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.user import User
from app.utils.jwt import TokenError, bearer_token, decode_access_token

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Resolve the acting user from the bearer token.

    The user is looked up inside the token's tenant, so a token can never
    resolve to another tenant's user. The verified tenant and user are kept
    on request.state for the request completion log; the logging context
    itself is bound by RequestLoggingMiddleware.

    Raises:
        HTTPException: 401 for a missing, invalid or expired token, an
            unknown user or a disabled account
    """
    token = bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise _unauthorized("Not authenticated")

    try:
        claims = decode_access_token(token)
    except TokenError as e:
        raise _unauthorized(str(e))

    user = (
        db.query(User)
        .filter(User.id == claims["user_id"], User.tenant_id == claims["tenant_id"])
        .first()
    )
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        logger.warning(
            "Disabled account presented a token",
            extra={"event_type": "auth_disabled_user", "user_id": user.id},
        )
        raise _unauthorized("User account disabled")

    request.state.user_id = user.id
    request.state.tenant_id = user.tenant_id
    return user
