from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from purchase_workflow.schemas.auth import Actor
from purchase_workflow.services.auth_service import actor_from_claims, verify_access_token

logger = structlog.get_logger()

security = HTTPBearer()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """FastAPI dependency: extract and verify JWT, return the acting user."""
    token = credentials.credentials
    try:
        actor = actor_from_claims(verify_access_token(token))
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    structlog.contextvars.bind_contextvars(actor_id=str(actor.id))
    return actor
