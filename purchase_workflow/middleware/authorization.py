from fastapi import Depends, HTTPException, status

from purchase_workflow.middleware.auth import get_current_actor
from purchase_workflow.schemas.auth import Actor


def require_flags(*flags: str):
    """
    FastAPI dependency factory for flag-based access control. The actor needs
    at least one of the given flags.

    Usage:
        @router.post("/config")
        async def create_config(
            actor: Actor = Depends(get_current_actor),
            _auth: None = Depends(require_flags("is_admin")),
        ):
    """
    async def check_flags(actor: Actor = Depends(get_current_actor)):
        if not any(getattr(actor, flag, False) for flag in flags):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": f"This action requires one of: {', '.join(flags)}",
                    }
                },
            )
        return None

    return check_flags
