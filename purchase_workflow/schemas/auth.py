import uuid
from typing import Optional
from pydantic import BaseModel


class Actor(BaseModel):
    """Identity and role flags as asserted by the identity service's token."""

    id: uuid.UUID
    email: Optional[str] = None
    is_approver_a1: bool = False
    is_approver_a2: bool = False
    is_buyer: bool = False
    is_admin: bool = False

    model_config = {"frozen": True}
