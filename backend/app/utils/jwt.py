"""Bearer token helpers for the tenant-scoped access tokens mobile clients present"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.core.config import settings

logger = logging.getLogger(__name__)

# Claims a token must carry to identify an actor within a tenant
REQUIRED_CLAIMS = ("sub", "tenant_id")


class TokenError(Exception):
    """Raised when a bearer token cannot be used to identify an actor"""


def create_access_token(user_id: str, tenant_id: str, role: Optional[str] = None) -> str:
    """
    Issue an access token for a user in a tenant.

    Production tokens come from the tenant/auth layer; this mirrors its claim
    layout for tooling and tests.
    """
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Validate a token and return its actor claims.

    Returns:
        {"user_id", "tenant_id", "role", "exp"}; role is informational only,
        the User row decides capabilities

    Raises:
        TokenError: expired, badly signed, malformed or missing a required claim
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except JWTError as e:
        logger.warning(
            "Rejected bearer token",
            extra={"event_type": "token_rejected", "error_type": type(e).__name__},
        )
        raise TokenError("Invalid token")

    missing = [name for name in REQUIRED_CLAIMS if not claims.get(name)]
    if missing:
        logger.warning(
            "Bearer token lacks actor claims",
            extra={"event_type": "token_rejected", "missing_claims": missing},
        )
        raise TokenError("Invalid token")

    return {
        "user_id": claims["sub"],
        "tenant_id": claims["tenant_id"],
        "role": claims.get("role"),
        "exp": claims.get("exp"),
    }


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Credentials of an "Authorization: Bearer ..." header value, or None."""
    scheme, _, credentials = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def claimed_tenant_id(authorization: Optional[str]) -> Optional[str]:
    """
    Tenant named by a correctly signed, unexpired bearer token.

    Used to tag request logs before the auth dependency runs; it neither logs
    nor raises, rejecting bad tokens is left to decode_access_token.
    """
    token = bearer_token(authorization)
    if token is None:
        return None
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    return claims.get("tenant_id") or None
