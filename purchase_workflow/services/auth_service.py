from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
import structlog

from purchase_workflow.config import settings
from purchase_workflow.schemas.auth import Actor

logger = structlog.get_logger()

ROLE_FLAGS = ("is_approver_a1", "is_approver_a2", "is_buyer", "is_admin")


# ---------- token generation ----------

def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
    **flags: bool,
) -> str:
    """Issue a token the way the identity service does (local tooling and tests)."""
    now = datetime.now(timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
        "type": "access",
    }
    for flag in ROLE_FLAGS:
        claims[flag] = bool(flags.get(flag, False))
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ---------- token verification ----------

def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload


def actor_from_claims(claims: dict) -> Actor:
    """Role flags are taken as asserted; they are not re-derived here."""
    try:
        return Actor(
            id=claims["sub"],
            email=claims.get("email"),
            **{flag: bool(claims.get(flag, False)) for flag in ROLE_FLAGS},
        )
    except (KeyError, ValueError) as e:
        raise JWTError(f"Invalid subject claim: {e}")
